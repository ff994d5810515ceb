"""Command-line interface for habitsync."""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Awaitable, Callable, TypeVar

import click

from .config import BaseConfig
from .context import AppContext, create_app_context
from .errors import AuthenticationError, HabitSyncError, ValidationError
from .logging_config import setup_logging
from .models.habit import FREQUENCIES, HabitId
from .services.habits import compute_streak
from .services.periods import current_month_dates, current_week_dates, period_key

T = TypeVar("T")


def _habit_id(value: str) -> HabitId:
    return int(value) if value.isdigit() else value


def _run(ctx: click.Context, action: Callable[[AppContext], Awaitable[T]]) -> T:
    """Build an AppContext, run ``action`` on the event loop, then close it."""

    config: BaseConfig = ctx.obj["config"]

    async def _main() -> T:
        app = create_app_context(config)
        try:
            return await action(app)
        finally:
            await app.aclose()

    try:
        return asyncio.run(_main())
    except ValidationError as exc:
        raise click.BadParameter(str(exc)) from exc
    except AuthenticationError as exc:
        raise click.ClickException(f"Please log in again ({exc}).") from exc
    except KeyError as exc:
        raise click.ClickException(f"No habit with id {exc.args[0]}") from exc
    except HabitSyncError as exc:
        raise click.ClickException(str(exc)) from exc


def _describe(habit: Any) -> str:
    flags = []
    if habit.is_offline:
        flags.append("offline")
    if habit.updated:
        flags.append("edited")
    if habit.deleted:
        flags.append("deleting")
    mark = "x" if habit.completed_today else " "
    suffix = f" ({', '.join(flags)})" if flags else ""
    return (
        f"[{mark}] {habit.id}  {habit.title}  {habit.frequency}  "
        f"streak={habit.streak_count}  tags={','.join(habit.tags)}{suffix}"
    )


@click.group()
@click.option("--quiet", is_flag=True, default=False, help="Only log warnings and errors")
@click.pass_context
def main(ctx: click.Context, quiet: bool) -> None:
    """Track habits offline and reconcile them with the server."""

    config = BaseConfig()
    if quiet:
        config.DEV_MODE = False
    setup_logging(config)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@main.command("habits")
@click.option("--all", "include_deleted", is_flag=True, help="Include habits pending deletion")
@click.pass_context
def list_habits(ctx: click.Context, include_deleted: bool) -> None:
    """List habits from the local cache."""

    async def action(app: AppContext):
        return app.tracker.list_habits(include_deleted=include_deleted)

    habits = _run(ctx, action)
    if not habits:
        click.echo("No habits yet.")
        return
    for habit in habits:
        click.echo(_describe(habit))


@main.command("add")
@click.argument("title")
@click.option("--frequency", type=click.Choice(FREQUENCIES), default="daily", show_default=True)
@click.option("--tag", "tags", multiple=True, required=True, help="Tag (repeatable)")
@click.pass_context
def add_habit(ctx: click.Context, title: str, frequency: str, tags: tuple[str, ...]) -> None:
    """Add a habit."""

    result = _run(ctx, lambda app: app.tracker.add_habit(title, frequency, list(tags)))
    click.echo(_describe(result.habit))
    if result.offline:
        click.echo("Saved offline; it will sync when the server is reachable.")


@main.command("edit")
@click.argument("habit_id")
@click.option("--title", required=True)
@click.option("--frequency", type=click.Choice(FREQUENCIES), required=True)
@click.option("--tag", "tags", multiple=True, required=True, help="Tag (repeatable)")
@click.pass_context
def edit_habit(
    ctx: click.Context, habit_id: str, title: str, frequency: str, tags: tuple[str, ...]
) -> None:
    """Edit a habit. Changing the frequency resets its history on the server."""

    result = _run(
        ctx,
        lambda app: app.tracker.edit_habit(
            _habit_id(habit_id), title=title, frequency=frequency, tags=list(tags)
        ),
    )
    click.echo(_describe(result.habit))
    if result.offline:
        click.echo("Saved offline; it will sync when the server is reachable.")


@main.command("remove")
@click.argument("habit_id")
@click.pass_context
def remove_habit(ctx: click.Context, habit_id: str) -> None:
    """Remove a habit."""

    result = _run(ctx, lambda app: app.tracker.remove_habit(_habit_id(habit_id)))
    click.echo("Removal saved offline." if result.offline and result.habit else "Removed.")


@main.command("done")
@click.argument("habit_id")
@click.option("--on", "on", type=click.DateTime(formats=["%Y-%m-%d"]), default=None)
@click.option("--undo", is_flag=True, help="Clear the completion instead of setting it.")
@click.pass_context
def toggle_done(ctx: click.Context, habit_id: str, on, undo: bool) -> None:
    """Toggle the current period, or mark the period holding --on."""

    day = on.date() if on else None
    completed = False if undo else None
    result = _run(
        ctx,
        lambda app: app.tracker.toggle_completion(_habit_id(habit_id), on=day, completed=completed),
    )
    click.echo(_describe(result.habit))
    if result.offline:
        click.echo("Completion queued; it will sync when the server is reachable.")


@main.command("pending")
@click.pass_context
def show_pending(ctx: click.Context) -> None:
    """Show completions waiting to be synced."""

    async def action(app: AppContext):
        return app.completion_queue.load()

    pending = _run(ctx, action)
    if not pending:
        click.echo("Nothing pending.")
        return
    for entry in pending:
        state = "done" if entry.completed else "undone"
        click.echo(f"{entry.habit_id}  {entry.period_key}  {state}  {entry.frequency or '-'}")


@main.command("sync")
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Run one reconciliation pass (plus a follow-up when needed)."""

    async def action(app: AppContext):
        await app.scheduler.start()
        app.scheduler.request_sync("cli")
        await app.scheduler.drain()
        if app.scheduler.last_error is not None:
            raise app.scheduler.last_error
        return app.scheduler.last_report

    report = _run(ctx, action)
    if report is None:
        click.echo("Sync skipped.")
        return
    if report.aborted:
        raise click.ClickException(f"Sync aborted: {report.error}")
    click.echo(
        f"flushed={report.completions_flushed} deleted={report.deleted} "
        f"updated={report.updated} created={report.created} "
        f"failures={report.failures} refreshed={'yes' if report.refreshed else 'no'}"
    )


@main.command("streak")
@click.argument("habit_id")
@click.pass_context
def streak(ctx: click.Context, habit_id: str) -> None:
    """Recompute a habit's streak from the server's completion history."""

    wanted = _habit_id(habit_id)

    async def action(app: AppContext):
        habits = await app.remote_habits.list_habits()
        habit = next((h for h in habits if h.id == wanted), None)
        if habit is None:
            raise KeyError(wanted)
        rows = [row for row in await app.remote_completions.list_completions() if row.habit_id == wanted]
        return habit, compute_streak(habit.frequency, rows)

    habit, value = _run(ctx, action)
    click.echo(f"{habit.title}: {value} {habit.frequency} period(s) in a row")


@main.command("stats")
@click.argument("habit_id")
@click.pass_context
def stats(ctx: click.Context, habit_id: str) -> None:
    """Show this week's and this month's completions for a habit."""

    result = _run(ctx, lambda app: app.remote_completions.get_stats(_habit_id(habit_id)))
    click.echo(f"{result.habit.title} ({result.habit.frequency})")
    click.echo(f"  this week:  {result.week_completed}/{len(result.week)}")
    click.echo(f"  this month: {result.month_completed}/{len(result.month)}")


@main.command("period")
@click.option("--date", "day", type=click.DateTime(formats=["%Y-%m-%d"]), default=None)
@click.option("--calendar", is_flag=True, help="Also print the week and month calendars")
def period(day, calendar: bool) -> None:
    """Print the period keys for a date (default: today)."""

    today = day.date() if day else date.today()
    for frequency in FREQUENCIES:
        click.echo(f"{frequency}: {period_key(today, frequency)}")
    if calendar:
        click.echo("week:  " + " ".join(current_week_dates(today)))
        month = current_month_dates(today, pad_to_week=True)
        click.echo(
            "month: " + " ".join(d if month.in_focus(d) else f"({d})" for d in month)
        )


if __name__ == "__main__":  # pragma: no cover
    main()
