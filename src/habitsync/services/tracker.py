"""User-facing habit mutations with offline fallback.

Each mutation validates first, then tries the remote when one is available and
falls back to dirty flags or the pending queue on a recoverable remote failure.
Validation runs on every path, the offline fallback included.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from ..domain.repositories import LocalHabitStore, PendingCompletionQueue
from ..errors import NotFoundError, RemoteError
from ..logging_config import get_logger
from ..models.habit import Habit, HabitId, PendingCompletion, make_offline_id
from .habits import validate_habit
from .periods import period_key
from .sync import RemoteCompletions, RemoteHabits

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class MutationResult:
    """The habit as now cached, and whether the change is only local so far."""

    habit: Optional[Habit]
    offline: bool


class HabitTracker:
    """Optimistic writes against the local cache, backed by the remote when reachable."""

    def __init__(
        self,
        habit_store: LocalHabitStore,
        completion_queue: PendingCompletionQueue,
        remote_habits: Optional[RemoteHabits] = None,
        remote_completions: Optional[RemoteCompletions] = None,
        *,
        clock: Clock = _utcnow,
    ):
        self.habit_store = habit_store
        self.completion_queue = completion_queue
        self.remote_habits = remote_habits
        self.remote_completions = remote_completions
        self.clock = clock

    def list_habits(self, *, include_deleted: bool = False) -> list[Habit]:
        habits = self.habit_store.load()
        if include_deleted:
            return habits
        return [habit for habit in habits if not habit.deleted]

    def _find(self, habits: list[Habit], habit_id: HabitId) -> int:
        for index, habit in enumerate(habits):
            if habit.id == habit_id and not habit.deleted:
                return index
        raise KeyError(habit_id)

    async def add_habit(self, title: str, frequency: str, tags: Any) -> MutationResult:
        habits = self.habit_store.load()
        clean_tags = validate_habit(title, frequency, tags, existing=habits)
        draft = Habit(id=0, title=title.strip(), frequency=frequency, tags=clean_tags)

        if self.remote_habits is not None:
            try:
                created = await self.remote_habits.create_habit(draft)
            except RemoteError as exc:
                logger.info(f"Saving habit offline: {exc}", extra={"title": draft.title})
            else:
                habits.append(created.clean())
                self.habit_store.save(habits)
                return MutationResult(habit=created, offline=False)

        now = self.clock()
        offline = replace(draft, id=make_offline_id(now), created_at=now.isoformat())
        # Two habits added within the same millisecond would share an id.
        while any(habit.id == offline.id for habit in habits):
            offline = replace(offline, id=f"{offline.id}-1")
        habits.append(offline)
        self.habit_store.save(habits)
        return MutationResult(habit=offline, offline=True)

    async def edit_habit(
        self, habit_id: HabitId, *, title: str, frequency: str, tags: Any
    ) -> MutationResult:
        habits = self.habit_store.load()
        index = self._find(habits, habit_id)
        clean_tags = validate_habit(title, frequency, tags, existing=habits, exclude_id=habit_id)
        edited = replace(habits[index], title=title.strip(), frequency=frequency, tags=clean_tags)

        if edited.is_offline:
            # The pending create will carry the latest fields.
            habits[index] = edited
            self.habit_store.save(habits)
            return MutationResult(habit=edited, offline=True)

        if self.remote_habits is not None:
            try:
                server_habit = await self.remote_habits.update_habit(edited.clean())
            except RemoteError as exc:
                logger.info(f"Saving edit offline: {exc}", extra={"habit_id": habit_id})
            else:
                habits[index] = server_habit.clean()
                self.habit_store.save(habits)
                return MutationResult(habit=habits[index], offline=False)

        habits[index] = replace(edited, updated=True)
        self.habit_store.save(habits)
        return MutationResult(habit=habits[index], offline=True)

    async def remove_habit(self, habit_id: HabitId) -> MutationResult:
        habits = self.habit_store.load()
        index = self._find(habits, habit_id)
        habit = habits[index]

        if habit.is_offline:
            del habits[index]
            self.habit_store.save(habits)
            pending = self.completion_queue.load()
            kept = [entry for entry in pending if entry.habit_id != habit_id]
            if len(kept) != len(pending):
                self.completion_queue.save(kept)
            return MutationResult(habit=None, offline=True)

        if self.remote_habits is not None:
            try:
                await self.remote_habits.delete_habit(habit_id)
            except NotFoundError:
                pass
            except RemoteError as exc:
                logger.info(f"Saving removal offline: {exc}", extra={"habit_id": habit_id})
                habits[index] = replace(habit, deleted=True)
                self.habit_store.save(habits)
                return MutationResult(habit=habits[index], offline=True)
            del habits[index]
            self.habit_store.save(habits)
            return MutationResult(habit=None, offline=False)

        habits[index] = replace(habit, deleted=True)
        self.habit_store.save(habits)
        return MutationResult(habit=habits[index], offline=True)

    async def toggle_completion(
        self,
        habit_id: HabitId,
        *,
        on: date | datetime | None = None,
        completed: bool | None = None,
    ) -> MutationResult:
        """Record a completion for the period holding ``on`` (default: now).

        For the current period ``completed`` defaults to the opposite of
        ``completed_today`` and the cached streak moves by one. For any other
        period it defaults to True and the cached display fields are left
        alone, since they describe the current period only.
        """

        habits = self.habit_store.load()
        index = self._find(habits, habit_id)
        habit = habits[index]
        current_key = period_key(self.clock(), habit.frequency)
        key = period_key(on, habit.frequency) if on is not None else current_key
        is_current = key == current_key
        if completed is None:
            completed = not habit.completed_today if is_current else True
        entry = PendingCompletion(
            habit_id=habit.id,
            period_key=key,
            completed=completed,
            frequency=habit.frequency,
        )
        if is_current and completed != habit.completed_today:
            streak = habit.streak_count + 1 if completed else max(habit.streak_count - 1, 0)
            habits[index] = replace(habit, completed_today=completed, streak_count=streak)
            self.habit_store.save(habits)

        if self.remote_completions is not None and not habit.is_offline:
            try:
                await self.remote_completions.upsert_completion(entry, frequency=habit.frequency)
            except RemoteError as exc:
                logger.info(
                    f"Queueing completion offline: {exc}",
                    extra={"habit_id": habit.id, "period_key": entry.period_key},
                )
            else:
                return MutationResult(habit=habits[index], offline=False)

        self.completion_queue.append(entry)
        return MutationResult(habit=habits[index], offline=True)


__all__ = ["HabitTracker", "MutationResult"]
