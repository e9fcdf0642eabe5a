"""Alarm data model, validation and day-token parsing."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal
from uuid import uuid4

from reveille.datetime_utils import local_now, normalize_time_string, serialize_dt

from .errors import ValidationError

AlarmStatus = Literal["pending", "triggered", "snoozed", "completed"]
RepeatType = Literal["once", "daily", "weekly"]

STATUSES: frozenset[str] = frozenset({"pending", "triggered", "snoozed", "completed"})
REPEAT_TYPES: frozenset[str] = frozenset({"once", "daily", "weekly"})
ACTIVE_STATUSES: frozenset[str] = frozenset({"triggered", "snoozed"})

DEFAULT_LABEL = "Alarm"
SNOOZE_SUFFIX = " (Snoozed)"

LOGGER = logging.getLogger("reveille.alarm")

# Sunday is day 0, matching the weekday indexes stored by the backend.
DAY_NAME_MAP = {
    "sun": 0,
    "sunday": 0,
    "mon": 1,
    "monday": 1,
    "tue": 2,
    "tues": 2,
    "tuesday": 2,
    "wed": 3,
    "wednesday": 3,
    "thu": 4,
    "thur": 4,
    "thurs": 4,
    "thursday": 4,
    "fri": 5,
    "friday": 5,
    "sat": 6,
    "saturday": 6,
}
DAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]

WEEKDAY_SET = {1, 2, 3, 4, 5}
WEEKEND_SET = {0, 6}


def parse_day_tokens(value: str | None) -> list[int] | None:
    """Parse ``"mon,wed"``, ``"weekdays"``, ``"1 3 5"`` style day lists."""
    if not value:
        return None
    lowered = value.strip().lower()
    if lowered in {"weekdays", "weekday"}:
        return sorted(WEEKDAY_SET)
    if lowered in {"weekend", "weekends"}:
        return sorted(WEEKEND_SET)
    if lowered.replace(" ", "") in {"everyday", "alldays"} or lowered in {"daily", "all"}:
        return list(range(7))
    days: set[int] = set()
    for chunk in re.split(r"[,\s]+", lowered):
        if not chunk:
            continue
        if chunk.isdigit():
            idx: int | None = int(chunk) if int(chunk) <= 6 else None
        else:
            idx = DAY_NAME_MAP.get(chunk, DAY_NAME_MAP.get(chunk[:3]))
        if idx is None:
            continue
        days.add(idx)
    if not days:
        return None
    return sorted(days)


def day_indexes_to_names(indexes: list[int] | None) -> list[str]:
    if not indexes:
        return []
    return [DAY_NAMES[i % 7] for i in indexes]


def validate_schedule(
    time_value: str | None,
    repeat_type: str | None,
    repeat_days: list[int] | None,
) -> tuple[str, RepeatType, list[int]]:
    """Validate and normalize the scheduling fields shared by add and edit.

    Returns the canonical ``HH:MM`` time, the repeat type and the sorted day list
    (empty unless the alarm repeats weekly).

    Raises:
        ValidationError: missing or malformed time, unknown repeat type, or a
            weekly alarm without any day selected.
    """
    if not time_value or not str(time_value).strip():
        raise ValidationError("Please select a time for the alarm.")
    try:
        time_str = normalize_time_string(str(time_value))
    except ValueError as exc:
        raise ValidationError(f"Invalid alarm time: {time_value!r}") from exc
    kind = (repeat_type or "once").strip().lower()
    if kind not in REPEAT_TYPES:
        raise ValidationError(f"Unknown repeat type: {repeat_type!r}")
    days: list[int] = []
    if kind == "weekly":
        try:
            days = sorted({int(day) for day in repeat_days or []})
        except (TypeError, ValueError) as exc:
            raise ValidationError("Repeat days must be weekday numbers 0-6.") from exc
        if any(day < 0 or day > 6 for day in days):
            raise ValidationError("Repeat days must be weekday numbers 0-6.")
        if not days:
            raise ValidationError("Please select at least one day for weekly repeat.")
    return time_str, kind, days  # type: ignore[return-value]


@dataclass
class Alarm:
    alarm_id: str
    time: str
    label: str = DEFAULT_LABEL
    enabled: bool = True
    status: AlarmStatus = "pending"
    repeat_type: RepeatType = "once"
    repeat_days: list[int] = field(default_factory=list)
    last_triggered_date: str | None = None
    snooze_count: int = 0
    custom_sound: str | None = None
    custom_sound_name: str | None = None
    created_at: str = ""
    triggered_at: str | None = None
    completed_at: str | None = None
    last_snooze_at: str | None = None
    original_alarm_id: str | None = None

    @classmethod
    def create(
        cls,
        *,
        time: str,
        label: str | None = None,
        repeat_type: str | None = "once",
        repeat_days: list[int] | None = None,
        custom_sound: str | None = None,
        custom_sound_name: str | None = None,
        original_alarm_id: str | None = None,
        now: datetime | None = None,
    ) -> Alarm:
        time_str, kind, days = validate_schedule(time, repeat_type, repeat_days)
        return cls(
            alarm_id=uuid4().hex,
            time=time_str,
            label=(label or "").strip() or DEFAULT_LABEL,
            repeat_type=kind,
            repeat_days=days,
            custom_sound=custom_sound,
            custom_sound_name=custom_sound_name,
            created_at=serialize_dt(now or local_now()),
            original_alarm_id=original_alarm_id,
        )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def repeats(self) -> bool:
        return self.repeat_type != "once"

    def describe_repeat(self) -> str:
        if self.repeat_type == "weekly":
            return "weekly " + ",".join(day_indexes_to_names(self.repeat_days))
        return self.repeat_type

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.alarm_id,
            "time": self.time,
            "label": self.label,
            "enabled": self.enabled,
            "status": self.status,
            "repeatType": self.repeat_type,
            "repeatDays": list(self.repeat_days),
            "lastTriggeredDate": self.last_triggered_date,
            "snoozeCount": self.snooze_count,
            "customSound": self.custom_sound,
            "customSoundName": self.custom_sound_name,
            "createdAt": self.created_at,
            "triggeredAt": self.triggered_at,
            "completedAt": self.completed_at,
            "lastSnoozeAt": self.last_snooze_at,
            "originalAlarmId": self.original_alarm_id,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Alarm:
        """Build an alarm from a stored payload.

        Stored data predates validation, so unknown values are coerced instead of
        rejected: an unknown repeat type becomes ``once`` and a weekly alarm with no
        days left is demoted to ``once``.

        Raises:
            KeyError: the payload has no id.
            ValueError: the stored time cannot be parsed.
        """
        alarm_id = str(payload["id"])
        time_str = normalize_time_string(str(payload.get("time") or ""))
        repeat_type = str(payload.get("repeatType") or "once").lower()
        if repeat_type not in REPEAT_TYPES:
            repeat_type = "once"
        raw_days = payload.get("repeatDays") or []
        days = sorted({int(day) % 7 for day in raw_days if isinstance(day, (int, float))})
        if repeat_type == "weekly" and not days:
            LOGGER.debug("Alarm %s stored as weekly without days; treating as once", alarm_id)
            repeat_type = "once"
        if repeat_type != "weekly":
            days = []
        status = str(payload.get("status") or "pending")
        if status not in STATUSES:
            status = "pending"
        return cls(
            alarm_id=alarm_id,
            time=time_str,
            label=str(payload.get("label") or DEFAULT_LABEL),
            enabled=bool(payload.get("enabled", True)),
            status=status,  # type: ignore[arg-type]
            repeat_type=repeat_type,  # type: ignore[arg-type]
            repeat_days=days,
            last_triggered_date=payload.get("lastTriggeredDate"),
            snooze_count=int(payload.get("snoozeCount") or 0),
            custom_sound=payload.get("customSound"),
            custom_sound_name=payload.get("customSoundName"),
            created_at=payload.get("createdAt") or "",
            triggered_at=payload.get("triggeredAt"),
            completed_at=payload.get("completedAt"),
            last_snooze_at=payload.get("lastSnoozeAt"),
            original_alarm_id=payload.get("originalAlarmId"),
        )
