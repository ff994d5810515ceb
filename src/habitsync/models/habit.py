"""Habit, completion and queue records exchanged between store, remote and engine."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

FREQUENCIES: tuple[str, ...] = ("daily", "weekly", "monthly")
DEFAULT_FREQUENCY = "daily"

OFFLINE_ID_PREFIX = "offline-"

HabitId = Union[int, str]


def parse_tags(value: Any) -> list[str]:
    """Normalize tags arriving as a list or as a JSON-encoded list string."""

    if isinstance(value, (list, tuple)):
        return [tag for tag in value if isinstance(tag, str)]
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            return []
        if isinstance(decoded, list):
            return [tag for tag in decoded if isinstance(tag, str)]
    return []


def make_offline_id(moment: datetime | None = None) -> str:
    """Return a temporary id of the form ``offline-<epoch millis>``."""

    moment = moment or datetime.now(timezone.utc)
    return f"{OFFLINE_ID_PREFIX}{int(moment.timestamp() * 1000)}"


def is_offline_id(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(OFFLINE_ID_PREFIX)


def _coerce_id(value: Any) -> HabitId:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Invalid habit id: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value:
        if value.isdigit():
            return int(value)
        return value
    raise ValueError(f"Invalid habit id: {value!r}")


def _coerce_int(value: Any, name: str) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"Invalid {name}: {value!r}")
    return int(value)


def _coerce_bool(value: Any) -> bool:
    # sqlite-backed servers hand booleans back as 0/1
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


@dataclass(slots=True)
class Habit:
    """A recurring habit as cached locally.

    ``streak_count``, ``completed_today`` and ``total_completions`` are read-time
    values computed from completion history. ``deleted`` and ``updated`` are
    local dirty flags, absent on records freshly pulled from the remote.
    """

    id: HabitId
    title: str
    frequency: str = DEFAULT_FREQUENCY
    tags: list[str] = field(default_factory=list)
    created_at: Optional[str] = None
    streak_count: int = 0
    completed_today: bool = False
    total_completions: int = 0
    deleted: bool = False
    updated: bool = False

    @property
    def is_offline(self) -> bool:
        return is_offline_id(self.id)

    @property
    def is_dirty(self) -> bool:
        return self.deleted or self.updated or self.is_offline

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Habit":
        """Build a habit from a persisted or remote mapping.

        Raises:
            ValueError: when the record lacks an id or a title.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"Habit record must be a mapping, got {type(data).__name__}")
        title = data.get("title")
        if not isinstance(title, str):
            raise ValueError("Habit record has no title")
        return cls(
            id=_coerce_id(data.get("id")),
            title=title,
            frequency=str(data.get("frequency") or DEFAULT_FREQUENCY),
            tags=parse_tags(data.get("tags")),
            created_at=data.get("created_at"),
            streak_count=_coerce_int(data.get("streak_count"), "streak_count"),
            completed_today=_coerce_bool(data.get("completed_today", False)),
            total_completions=_coerce_int(data.get("total_completions"), "total_completions"),
            deleted=_coerce_bool(data.get("deleted", False)),
            updated=_coerce_bool(data.get("updated", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for local persistence; dirty flags only when set."""
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "frequency": self.frequency,
            "tags": list(self.tags),
            "created_at": self.created_at,
            "streak_count": self.streak_count,
            "completed_today": self.completed_today,
            "total_completions": self.total_completions,
        }
        if self.deleted:
            data["deleted"] = True
        if self.updated:
            data["updated"] = True
        return data

    def to_payload(self) -> dict[str, Any]:
        """Body for remote create/update calls; never carries the id."""
        return {"title": self.title, "frequency": self.frequency, "tags": list(self.tags)}

    def clean(self) -> "Habit":
        return replace(self, deleted=False, updated=False)


@dataclass(slots=True)
class Completion:
    """A completion row, unique per ``(habit_id, period_key)``."""

    habit_id: HabitId
    period_key: str
    completed: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Completion":
        period_key = data.get("period_key", data.get("date"))
        if not isinstance(period_key, str) or not period_key:
            raise ValueError("Completion record has no date")
        return cls(
            habit_id=_coerce_id(data.get("habit_id")),
            period_key=period_key,
            completed=_coerce_bool(data.get("completed", False)),
        )

    @property
    def key(self) -> tuple[HabitId, str]:
        return (self.habit_id, self.period_key)


@dataclass(slots=True)
class PendingCompletion:
    """Completion recorded while offline, waiting in the queue.

    ``frequency`` travels with the entry because the habit may only exist in the
    local cache when the queue is flushed.
    """

    habit_id: HabitId
    period_key: str
    completed: bool
    frequency: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PendingCompletion":
        if not isinstance(data, Mapping):
            raise ValueError("Pending completion must be a mapping")
        period_key = data.get("period_key", data.get("date"))
        if not isinstance(period_key, str) or not period_key:
            raise ValueError("Pending completion has no date")
        if "completed" not in data:
            raise ValueError("Pending completion has no completed flag")
        return cls(
            habit_id=_coerce_id(data.get("habit_id")),
            period_key=period_key,
            completed=_coerce_bool(data["completed"]),
            frequency=data.get("frequency") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "habit_id": self.habit_id,
            "date": self.period_key,
            "completed": self.completed,
        }
        if self.frequency:
            data["frequency"] = self.frequency
        return data

    @property
    def key(self) -> tuple[HabitId, str]:
        return (self.habit_id, self.period_key)


@dataclass(slots=True)
class CompletionDay:
    date: str
    completed: bool


@dataclass(slots=True)
class HabitStats:
    """Payload of ``GET /completions/stats/:habitId`` for the stats view."""

    habit: Habit
    week: list[CompletionDay]
    month: list[CompletionDay]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HabitStats":
        def _days(rows: Any) -> list[CompletionDay]:
            return [
                CompletionDay(date=str(row["date"]), completed=_coerce_bool(row.get("completed")))
                for row in rows or []
                if isinstance(row, Mapping) and row.get("date")
            ]

        return cls(
            habit=Habit.from_dict(data.get("habit") or {}),
            week=_days(data.get("week")),
            month=_days(data.get("month")),
        )

    @property
    def week_completed(self) -> int:
        return sum(1 for day in self.week if day.completed)

    @property
    def month_completed(self) -> int:
        return sum(1 for day in self.month if day.completed)
