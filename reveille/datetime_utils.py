"""Shared datetime parsing and clock helpers."""

from __future__ import annotations

import re
from datetime import datetime, timedelta

_TIME_KEYWORDS = {
    "noon": (12, 0),
    "midday": (12, 0),
    "midnight": (0, 0),
}

_TIME_PATTERN = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)?$")


def local_now() -> datetime:
    """Get current datetime in local timezone."""
    return datetime.now().astimezone()


def serialize_dt(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()


def deserialize_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def parse_time_of_day(phrase: str | None) -> tuple[int, int] | None:
    """Parse time of day phrase into (hour, minute) tuple. Returns None if invalid."""
    if not phrase:
        return None
    cleaned = phrase.strip().lower()
    if not cleaned:
        return None
    keyword = _TIME_KEYWORDS.get(cleaned)
    if keyword:
        return keyword
    match = _TIME_PATTERN.match(cleaned)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    suffix = match.group(3)
    if suffix:
        if hour > 12 or hour == 0:
            return None
        if hour == 12:
            hour = 0
        if suffix == "pm":
            hour += 12
    if hour >= 24 or minute >= 60:
        return None
    return hour, minute


def parse_time_string(value: str) -> tuple[int, int]:
    """Parse time string into (hour, minute) tuple. Raises ValueError if invalid."""
    result = parse_time_of_day(value)
    if result is None:
        raise ValueError("Invalid time format")
    return result


def normalize_time_string(value: str) -> str:
    """Return the canonical zero-padded ``HH:MM`` form of a time string."""
    hour, minute = parse_time_string(value)
    return f"{hour:02d}:{minute:02d}"


def time_of_day(dt: datetime) -> str:
    """Minute-granularity ``HH:MM`` for a datetime; seconds are dropped."""
    return f"{dt.hour:02d}:{dt.minute:02d}"


def sunday_weekday(dt: datetime) -> int:
    """Weekday index with Sunday as 0 (Python's ``weekday()`` starts on Monday)."""
    return (dt.weekday() + 1) % 7


def calendar_date(dt: datetime) -> str:
    return dt.date().isoformat()


def shift_time_of_day(reference: datetime, minutes: int) -> str:
    """Wall-clock ``HH:MM`` a number of minutes after ``reference``."""
    return time_of_day(reference + timedelta(minutes=minutes))
