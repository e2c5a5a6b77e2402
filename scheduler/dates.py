"""Calendar-date helpers.

Schedule dates are plain calendar days. They are interpreted as UTC midnight
so that day arithmetic never drifts across a daylight-saving change.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Union

from .errors import InvalidDateError

DAY = timedelta(days=1)

DateLike = Union[date, datetime]


def parse_calendar_date(iso_date: str) -> datetime:
    """Return UTC midnight of a ``YYYY-MM-DD`` string."""
    if not isinstance(iso_date, str):
        raise InvalidDateError(f"Expected an ISO date string, got {iso_date!r}")
    try:
        day = date.fromisoformat(iso_date.strip())
    except ValueError as exc:
        raise InvalidDateError(f"Invalid calendar date '{iso_date}', expected YYYY-MM-DD") from exc
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def inclusive_day_count(start_iso: str, end_iso: str) -> int:
    """Days covered by ``[start, end]``, both ends included; one day minimum for same-day spans."""
    delta = parse_calendar_date(end_iso) - parse_calendar_date(start_iso)
    return round(delta / DAY) + 1


def to_utc_date(value: DateLike) -> date:
    """Calendar day of ``value`` in UTC. Naive datetimes are taken as UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def add_days(value: DateLike, days: int) -> DateLike:
    return value + timedelta(days=days)
