"""Repository protocol definitions for domain layer."""

from .store import CollectionStore, LocalHabitStore, PendingCompletionQueue

__all__ = ["CollectionStore", "LocalHabitStore", "PendingCompletionQueue"]
