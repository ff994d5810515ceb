"""Concrete repository implementations using SQLModel."""

from .store import (
    SQLModelCollectionStore,
    SQLModelHabitStore,
    SQLModelPendingCompletionQueue,
)

__all__ = [
    "SQLModelCollectionStore",
    "SQLModelHabitStore",
    "SQLModelPendingCompletionQueue",
]
