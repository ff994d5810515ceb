"""Period keys and calendar spans for daily, weekly and monthly habits.

Every boundary (ISO week, calendar month) is computed here so that stored
period keys and the calendar dates shown to the user never drift apart.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator

from ..models.habit import FREQUENCIES


def _as_date(day: date | datetime) -> date:
    if isinstance(day, datetime):
        # naive datetimes are already local; aware ones are converted
        return day.astimezone().date() if day.tzinfo else day.date()
    return day


def _check_frequency(frequency: str) -> None:
    if frequency not in FREQUENCIES:
        raise ValueError(f"Unknown frequency: {frequency!r}")


def week_start(day: date | datetime) -> date:
    """Monday of the ISO week containing ``day``."""
    day = _as_date(day)
    return day - timedelta(days=day.weekday())


def month_start(day: date | datetime) -> date:
    return _as_date(day).replace(day=1)


def iso_week(day: date | datetime) -> tuple[int, int]:
    """Return ``(iso_year, week_number)`` using the Thursday of the week.

    The Thursday decides the year, so 2024-12-30 belongs to 2025-W01 and
    2021-01-03 to 2020-W53.
    """
    day = _as_date(day)
    thursday = day + timedelta(days=3 - day.weekday())
    first_thursday_offset = (thursday - date(thursday.year, 1, 1)).days
    return thursday.year, first_thursday_offset // 7 + 1


def period_key(day: date | datetime, frequency: str) -> str:
    """Canonical identifier of the period ``day`` falls in."""

    _check_frequency(frequency)
    day = _as_date(day)
    if frequency == "weekly":
        year, week = iso_week(day)
        return f"{year}-W{week:02d}"
    if frequency == "monthly":
        return f"{day.year}-{day.month:02d}"
    return day.isoformat()


def previous_period(day: date | datetime, frequency: str) -> date:
    """Return a date inside the period immediately before the one holding ``day``."""

    _check_frequency(frequency)
    day = _as_date(day)
    if frequency == "weekly":
        return day - timedelta(days=7)
    if frequency == "monthly":
        if day.month == 1:
            return date(day.year - 1, 12, 1)
        return date(day.year, day.month - 1, 1)
    return day - timedelta(days=1)


def walk_periods(start: date | datetime, frequency: str) -> Iterator[str]:
    """Yield period keys from ``start`` backward, one period at a time (unbounded)."""

    cursor = _as_date(start)
    while True:
        yield period_key(cursor, frequency)
        cursor = previous_period(cursor, frequency)


@dataclass(frozen=True, slots=True)
class CalendarSpan:
    """Lazy, restartable run of ``YYYY-MM-DD`` strings.

    ``focus_start``/``focus_end`` mark the days that belong to the requested
    week or month; padding days before them only fill a calendar grid.
    """

    start: date
    days: int
    focus_start: date
    focus_end: date

    def __iter__(self) -> Iterator[str]:
        for offset in range(self.days):
            yield (self.start + timedelta(days=offset)).isoformat()

    def __len__(self) -> int:
        return self.days

    def __contains__(self, value: object) -> bool:
        if not isinstance(value, str):
            return False
        try:
            day = date.fromisoformat(value)
        except ValueError:
            return False
        return self.start <= day < self.start + timedelta(days=self.days)

    def in_focus(self, value: str) -> bool:
        day = date.fromisoformat(value)
        return self.focus_start <= day <= self.focus_end


def current_week_dates(today: date | datetime | None = None) -> CalendarSpan:
    """Monday through Sunday of the week containing ``today``."""

    start = week_start(today or date.today())
    return CalendarSpan(start=start, days=7, focus_start=start, focus_end=start + timedelta(days=6))


def current_month_dates(
    today: date | datetime | None = None, *, pad_to_week: bool = False
) -> CalendarSpan:
    """Every day of the month containing ``today``.

    With ``pad_to_week`` the span starts on the Monday of the week holding the
    1st, the layout used by the stats calendar.
    """

    first = month_start(today or date.today())
    length = calendar.monthrange(first.year, first.month)[1]
    last = first + timedelta(days=length - 1)
    start = week_start(first) if pad_to_week else first
    return CalendarSpan(
        start=start,
        days=(last - start).days + 1,
        focus_start=first,
        focus_end=last,
    )


__all__ = [
    "CalendarSpan",
    "current_month_dates",
    "current_week_dates",
    "iso_week",
    "month_start",
    "period_key",
    "previous_period",
    "walk_periods",
    "week_start",
]
