"""Habit service helpers: streaks, derived display fields and validation."""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Union

from ..errors import ValidationError
from ..logging_config import get_logger
from ..models.habit import FREQUENCIES, Completion, Habit, HabitId, parse_tags
from .periods import period_key, walk_periods

logger = get_logger(__name__)

CompletionRow = Union[Completion, Mapping[str, Any]]

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def _row_key_and_state(row: CompletionRow) -> tuple[Any, bool]:
    if isinstance(row, Completion):
        return row.period_key, row.completed
    key = row.get("period_key", row.get("date"))
    return key, bool(row.get("completed", False))


def _daily_key(raw: Any) -> str | None:
    """Reduce a daily row's date (possibly a timestamp) to ``YYYY-MM-DD``."""
    if not isinstance(raw, str) or len(raw) < 10:
        return None
    try:
        return date.fromisoformat(raw[:10]).isoformat()
    except ValueError:
        return None


def completed_keys(frequency: str, completions: Iterable[CompletionRow]) -> set[str]:
    """Set of period keys with a ``completed=True`` row."""

    keys: set[str] = set()
    for row in completions:
        raw, completed = _row_key_and_state(row)
        if not completed:
            continue
        if frequency == "daily":
            key = _daily_key(raw)
            if key is None:
                logger.debug("Skipping unparsable completion date", extra={"date": raw})
                continue
            keys.add(key)
        elif isinstance(raw, str):
            keys.add(raw)
    return keys


def compute_streak(
    frequency: str,
    completions: Iterable[CompletionRow],
    *,
    as_of: date | datetime | None = None,
) -> int:
    """Return the current streak: consecutive completed periods ending at ``as_of``.

    Walks backward from the period holding ``as_of`` and stops at the first
    period without a completed row. Older runs past a gap never count.
    """

    as_of = as_of or date.today()
    keys = completed_keys(frequency, completions)
    if not keys:
        return 0

    streak = 0
    for key in walk_periods(as_of, frequency):
        if key not in keys:
            break
        streak += 1
    return streak


def with_derived_fields(
    habit: Habit,
    completions: Iterable[CompletionRow],
    *,
    as_of: date | datetime | None = None,
) -> Habit:
    """Copy of ``habit`` with streak, completed_today and total recomputed from history."""

    as_of = as_of or date.today()
    rows = [
        row
        for row in completions
        if not isinstance(row, Completion) or row.habit_id == habit.id
    ]
    keys = completed_keys(habit.frequency, rows)
    return replace(
        habit,
        streak_count=compute_streak(habit.frequency, rows, as_of=as_of),
        completed_today=period_key(as_of, habit.frequency) in keys,
        total_completions=len(keys),
    )


def normalize_title(title: str) -> str:
    """Comparison form of a title: lower-cased, trimmed, punctuation stripped."""

    stripped = _PUNCTUATION.sub("", title.lower())
    return _WHITESPACE.sub(" ", stripped).strip()


def validate_habit(
    title: str,
    frequency: str,
    tags: Any,
    *,
    existing: Iterable[Habit],
    exclude_id: HabitId | None = None,
) -> list[str]:
    """Validate a habit write and return its normalized tags.

    Raises:
        ValidationError: empty title, unknown frequency, no tags or a title
            that collides with another live habit.
    """

    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Please enter the habit title.")
    if frequency not in FREQUENCIES:
        raise ValidationError(f"Frequency must be one of {', '.join(FREQUENCIES)}.")
    normalized_tags = parse_tags(tags)
    if not normalized_tags:
        raise ValidationError("Select at least one tag.")

    wanted = normalize_title(title)
    for other in existing:
        if other.deleted or (exclude_id is not None and other.id == exclude_id):
            continue
        if normalize_title(other.title) == wanted:
            raise ValidationError(f"A habit named '{other.title}' already exists.")
    return normalized_tags


__all__ = [
    "completed_keys",
    "compute_streak",
    "normalize_title",
    "parse_tags",
    "validate_habit",
    "with_derived_fields",
]
