"""Offline-first reconciliation of the local habit cache against the remote store.

A pass runs five phases in order, each item sequentially:

1. flush queued completions through the idempotent upsert endpoint
2. push deletions of habits flagged ``deleted``
3. push edits of habits flagged ``updated`` (never ones also flagged deleted)
4. create offline habits and swap their temporary ids for server ids
5. replace the cache with the remote's authoritative list

Per-item remote failures are logged and left dirty for the next pass. An
authentication failure aborts the pass and propagates. A storage failure
aborts the pass without raising; the report carries the error.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

from ..domain.repositories import LocalHabitStore, PendingCompletionQueue
from ..errors import AuthenticationError, NotFoundError, RemoteError, StorageError
from ..logging_config import get_logger
from ..models.habit import (
    DEFAULT_FREQUENCY,
    Completion,
    Habit,
    HabitId,
    PendingCompletion,
    is_offline_id,
    parse_tags,
)

logger = get_logger(__name__)


class RemoteHabits(Protocol):
    async def list_habits(self) -> list[Habit]:  # pragma: no cover - interface
        ...

    async def create_habit(self, habit: Habit) -> Habit:  # pragma: no cover - interface
        ...

    async def update_habit(self, habit: Habit) -> Habit:  # pragma: no cover - interface
        ...

    async def delete_habit(self, habit_id: HabitId) -> None:  # pragma: no cover - interface
        ...


class RemoteCompletions(Protocol):
    async def upsert_completion(
        self, entry: PendingCompletion, *, frequency: str
    ) -> Completion:  # pragma: no cover - interface
        ...


class SyncState(enum.Enum):
    IDLE = "idle"
    SYNCING = "syncing"


@dataclass(slots=True)
class SyncReport:
    """Outcome of one reconciliation pass."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    completions_flushed: int = 0
    completions_failed: int = 0
    completions_dropped: int = 0
    deleted: int = 0
    delete_failed: int = 0
    updated: int = 0
    update_failed: int = 0
    created: int = 0
    create_failed: int = 0
    refreshed: bool = False
    aborted: bool = False
    error: Optional[str] = None
    followup_required: bool = False

    @property
    def failures(self) -> int:
        return (
            self.completions_failed + self.delete_failed + self.update_failed + self.create_failed
        )

    @property
    def ok(self) -> bool:
        return not self.aborted and self.refreshed and self.failures == 0

    def as_dict(self) -> dict[str, object]:
        return {
            "completions_flushed": self.completions_flushed,
            "completions_failed": self.completions_failed,
            "completions_dropped": self.completions_dropped,
            "deleted": self.deleted,
            "delete_failed": self.delete_failed,
            "updated": self.updated,
            "update_failed": self.update_failed,
            "created": self.created,
            "create_failed": self.create_failed,
            "refreshed": self.refreshed,
            "aborted": self.aborted,
            "error": self.error,
        }


class _PassAborted(Exception):
    """Internal: a storage failure ends the pass early."""


class SyncEngine:
    """Reconciler for one account's local cache and pending queue."""

    def __init__(
        self,
        habit_store: LocalHabitStore,
        completion_queue: PendingCompletionQueue,
        remote_habits: RemoteHabits,
        remote_completions: RemoteCompletions,
    ):
        self.habit_store = habit_store
        self.completion_queue = completion_queue
        self.remote_habits = remote_habits
        self.remote_completions = remote_completions
        self._state = SyncState.IDLE
        self.last_report: Optional[SyncReport] = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state is SyncState.SYNCING

    async def run_pass(self) -> Optional[SyncReport]:
        """Run one reconciliation pass.

        Returns None without doing anything when a pass is already in flight.
        """
        # Check-and-set with no await in between: atomic under asyncio.
        if self._state is SyncState.SYNCING:
            logger.debug("Sync already in flight; trigger dropped")
            return None
        self._state = SyncState.SYNCING

        report = SyncReport()
        try:
            await self._run_phases(report)
        except _PassAborted:
            pass
        except AuthenticationError:
            logger.error("Sync pass stopped: remote session rejected")
            raise
        finally:
            self._state = SyncState.IDLE
            report.finished_at = datetime.now(timezone.utc)
            self.last_report = report

        level = "info" if report.ok else "warning"
        getattr(logger, level)("Sync pass finished", extra=report.as_dict())
        return report

    async def _run_phases(self, report: SyncReport) -> None:
        habits = self._load_habits(report)
        await self._flush_completions(habits, report)
        habits = await self._push_deletions(habits, report)
        habits = await self._push_updates(habits, report)
        habits = await self._push_creations(habits, report)
        await self._refresh(habits, report)

    # Storage helpers

    def _abort(self, report: SyncReport, exc: StorageError) -> _PassAborted:
        report.aborted = True
        report.error = str(exc)
        logger.error(f"Sync pass aborted: {exc}")
        return _PassAborted()

    def _load_habits(self, report: SyncReport) -> list[Habit]:
        try:
            return self.habit_store.load()
        except StorageError as exc:
            raise self._abort(report, exc) from exc

    def _save_habits(self, habits: list[Habit], report: SyncReport) -> None:
        try:
            self.habit_store.save(habits)
        except StorageError as exc:
            raise self._abort(report, exc) from exc

    def _save_queue(self, pending: list[PendingCompletion], report: SyncReport) -> None:
        try:
            self.completion_queue.save(pending)
        except StorageError as exc:
            raise self._abort(report, exc) from exc

    # Phase 1

    async def _flush_completions(self, habits: list[Habit], report: SyncReport) -> None:
        try:
            pending = self.completion_queue.load()
        except StorageError as exc:
            raise self._abort(report, exc) from exc
        if not pending:
            return

        by_id = {habit.id: habit for habit in habits}
        remaining: list[PendingCompletion] = []
        for entry in pending:
            habit = by_id.get(entry.habit_id)
            if habit is not None and habit.deleted:
                report.completions_dropped += 1
                logger.info(
                    "Dropping queued completion for deleted habit",
                    extra={"habit_id": entry.habit_id, "period_key": entry.period_key},
                )
                continue
            if is_offline_id(entry.habit_id):
                if habit is None:
                    report.completions_dropped += 1
                    continue
                # Remapped once the habit is created in phase 4.
                remaining.append(entry)
                continue

            frequency = entry.frequency or (habit.frequency if habit else None) or DEFAULT_FREQUENCY
            try:
                await self.remote_completions.upsert_completion(entry, frequency=frequency)
            except NotFoundError:
                report.completions_dropped += 1
                logger.warning(
                    "Remote no longer knows habit; dropping queued completion",
                    extra={"habit_id": entry.habit_id, "period_key": entry.period_key},
                )
            except RemoteError as exc:
                report.completions_failed += 1
                remaining.append(entry)
                logger.warning(
                    f"Failed to flush completion: {exc}",
                    extra={"habit_id": entry.habit_id, "period_key": entry.period_key},
                )
            else:
                report.completions_flushed += 1

        if len(remaining) != len(pending):
            self._save_queue(remaining, report)

    # Phase 2

    async def _push_deletions(self, habits: list[Habit], report: SyncReport) -> list[Habit]:
        removed: set[HabitId] = set()
        for habit in habits:
            if not habit.deleted:
                continue
            if habit.is_offline:
                # Never reached the remote; nothing to delete there.
                removed.add(habit.id)
                continue
            try:
                await self.remote_habits.delete_habit(habit.id)
            except NotFoundError:
                removed.add(habit.id)
            except RemoteError as exc:
                report.delete_failed += 1
                logger.warning(
                    f"Failed to delete habit: {exc}",
                    extra={"habit_id": habit.id, "title": habit.title},
                )
                continue
            removed.add(habit.id)
            report.deleted += 1

        if not removed:
            return habits
        habits = [habit for habit in habits if habit.id not in removed]
        self._save_habits(habits, report)
        return habits

    # Phase 3

    async def _push_updates(self, habits: list[Habit], report: SyncReport) -> list[Habit]:
        changed = False
        result: list[Habit] = []
        for habit in habits:
            if not habit.updated or habit.deleted or habit.is_offline:
                result.append(habit)
                continue
            outgoing = Habit(
                id=habit.id,
                title=habit.title,
                frequency=habit.frequency,
                tags=parse_tags(habit.tags),
                created_at=habit.created_at,
                streak_count=habit.streak_count,
                completed_today=habit.completed_today,
                total_completions=habit.total_completions,
            )
            try:
                server_habit = await self.remote_habits.update_habit(outgoing)
            except NotFoundError:
                logger.warning(
                    "Remote no longer knows habit; dropping local edit",
                    extra={"habit_id": habit.id, "title": habit.title},
                )
                changed = True
                continue
            except RemoteError as exc:
                report.update_failed += 1
                logger.warning(
                    f"Failed to update habit: {exc}",
                    extra={"habit_id": habit.id, "title": habit.title},
                )
                result.append(habit)
                continue
            result.append(server_habit.clean())
            report.updated += 1
            changed = True

        if changed:
            self._save_habits(result, report)
        return result

    # Phase 4

    async def _push_creations(self, habits: list[Habit], report: SyncReport) -> list[Habit]:
        result = list(habits)
        for index, habit in enumerate(habits):
            if not habit.is_offline or habit.deleted:
                continue
            outgoing = Habit(
                id=habit.id,
                title=habit.title,
                frequency=habit.frequency,
                tags=parse_tags(habit.tags),
            )
            try:
                created = await self.remote_habits.create_habit(outgoing)
            except RemoteError as exc:
                report.create_failed += 1
                logger.warning(
                    f"Failed to create habit: {exc}",
                    extra={"habit_id": habit.id, "title": habit.title},
                )
                continue

            result[index] = created.clean()
            report.created += 1
            # Persist the id swap right away so a later failure cannot re-create it.
            self._save_habits(result, report)
            if self._remap_pending(habit.id, created.id, report):
                report.followup_required = True
            logger.info(
                "Offline habit created remotely",
                extra={"offline_id": habit.id, "habit_id": created.id},
            )
        return result

    def _remap_pending(self, old_id: HabitId, new_id: HabitId, report: SyncReport) -> bool:
        try:
            pending = self.completion_queue.load()
        except StorageError as exc:
            raise self._abort(report, exc) from exc
        if not any(entry.habit_id == old_id for entry in pending):
            return False
        remapped = [
            PendingCompletion(
                habit_id=new_id,
                period_key=entry.period_key,
                completed=entry.completed,
                frequency=entry.frequency,
            )
            if entry.habit_id == old_id
            else entry
            for entry in pending
        ]
        self._save_queue(remapped, report)
        return True

    # Phase 5

    async def _refresh(self, habits: list[Habit], report: SyncReport) -> None:
        try:
            authoritative = await self.remote_habits.list_habits()
        except RemoteError as exc:
            logger.warning(f"Failed to refresh habits from remote: {exc}")
            return

        # Records still dirty after phases 2-4 keep their retry state.
        still_dirty = {habit.id: habit for habit in habits if habit.is_dirty}
        refreshed: list[Habit] = []
        for remote_habit in authoritative:
            local = still_dirty.pop(remote_habit.id, None)
            refreshed.append(local if local is not None else remote_habit.clean())
        refreshed.extend(habit for habit in still_dirty.values() if habit.is_offline)

        self._save_habits(refreshed, report)
        report.refreshed = True


__all__ = ["RemoteCompletions", "RemoteHabits", "SyncEngine", "SyncReport", "SyncState"]
