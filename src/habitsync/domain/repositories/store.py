"""Local store protocols for the habit cache and pending-completion queue."""

from __future__ import annotations

from typing import Protocol, Sequence, TypeVar

from ...models.habit import Habit, PendingCompletion

T = TypeVar("T")


class CollectionStore(Protocol[T]):
    """Whole-collection persistence: read everything, replace everything."""

    def load(self) -> list[T]:
        """Return the stored collection, or an empty list when nothing is stored."""
        ...

    def save(self, items: Sequence[T]) -> None:
        """Replace the stored collection.

        Raises StorageError when the write is not durable.
        """
        ...


class LocalHabitStore(CollectionStore[Habit], Protocol):
    """Cached habits, including dirty flags and offline-created records."""


class PendingCompletionQueue(CollectionStore[PendingCompletion], Protocol):
    """Completions recorded while offline, in the order they were made."""

    def append(self, entry: PendingCompletion) -> None:
        """Queue ``entry``, replacing any queued entry with the same key."""
        ...
