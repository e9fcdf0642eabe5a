"""Tests for the alarm data model (reveille/clock/alarm.py)."""

from __future__ import annotations

from datetime import datetime

import pytest
from reveille.clock.alarm import (
    Alarm,
    day_indexes_to_names,
    parse_day_tokens,
    validate_schedule,
)
from reveille.clock.errors import ValidationError


def test_create_applies_defaults():
    alarm = Alarm.create(time="7:05", label="   ", now=datetime(2025, 1, 15, 6, 0))

    assert alarm.time == "07:05"
    assert alarm.label == "Alarm"
    assert alarm.status == "pending"
    assert alarm.enabled is True
    assert alarm.repeat_type == "once"
    assert alarm.repeat_days == []
    assert alarm.created_at.startswith("2025-01-15T06:00:00")
    assert len(alarm.alarm_id) == 32


def test_create_rejects_weekly_without_days():
    with pytest.raises(ValidationError, match="at least one day"):
        Alarm.create(time="07:00", repeat_type="weekly", repeat_days=[])


@pytest.mark.parametrize(
    ("time_value", "repeat_type", "days"),
    [
        (None, "once", None),
        ("", "daily", None),
        ("7", "hourly", None),
        ("07:00", "weekly", [7]),
        ("07:00", "weekly", ["mon"]),
    ],
)
def test_validate_schedule_errors(time_value, repeat_type, days):
    with pytest.raises(ValidationError):
        validate_schedule(time_value, repeat_type, days)


def test_validate_schedule_normalizes():
    assert validate_schedule("6:30 pm", "WEEKLY", [5, 1, 1]) == ("18:30", "weekly", [1, 5])
    assert validate_schedule("noon", "daily", [1, 2]) == ("12:00", "daily", [])


def test_json_uses_backend_field_names():
    alarm = Alarm(alarm_id="a1", time="07:00", repeat_type="weekly", repeat_days=[1, 3], original_alarm_id="p1")
    payload = alarm.to_json_dict()

    assert payload["id"] == "a1"
    assert payload["repeatType"] == "weekly"
    assert payload["repeatDays"] == [1, 3]
    assert payload["originalAlarmId"] == "p1"
    assert Alarm.from_dict(payload) == alarm


def test_from_dict_tolerates_legacy_payloads():
    alarm = Alarm.from_dict({"id": 42, "time": "7:00", "repeatType": "weekly", "repeatDays": [], "status": "odd"})

    assert alarm.alarm_id == "42"
    assert alarm.time == "07:00"
    assert alarm.repeat_type == "once"
    assert alarm.status == "pending"
    assert alarm.label == "Alarm"


def test_from_dict_requires_id_and_time():
    with pytest.raises(KeyError):
        Alarm.from_dict({"time": "07:00"})
    with pytest.raises(ValueError):
        Alarm.from_dict({"id": "x", "time": "later"})


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("mon,wed,fri", [1, 3, 5]),
        ("Weekdays", [1, 2, 3, 4, 5]),
        ("weekend", [0, 6]),
        ("daily", [0, 1, 2, 3, 4, 5, 6]),
        ("0 6", [0, 6]),
        ("thursday, tues", [2, 4]),
        ("9, someday", None),
        ("", None),
    ],
)
def test_parse_day_tokens(value, expected):
    assert parse_day_tokens(value) == expected


def test_describe_repeat():
    assert day_indexes_to_names([0, 6]) == ["sun", "sat"]
    alarm = Alarm(alarm_id="a", time="07:00", repeat_type="weekly", repeat_days=[1, 3])
    assert alarm.describe_repeat() == "weekly mon,wed"
    assert alarm.repeats
