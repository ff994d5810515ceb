"""Record and table exports."""

from .collection import StoredCollection
from .habit import (
    FREQUENCIES,
    Completion,
    CompletionDay,
    Habit,
    HabitStats,
    PendingCompletion,
    is_offline_id,
    make_offline_id,
    parse_tags,
)

__all__ = [
    "FREQUENCIES",
    "Completion",
    "CompletionDay",
    "Habit",
    "HabitStats",
    "PendingCompletion",
    "StoredCollection",
    "is_offline_id",
    "make_offline_id",
    "parse_tags",
]
