"""
Per-second alarm evaluation

The scheduler only decides *that* an alarm fires. Playback and state changes
belong to the alarm service, which it calls through the tick callback.

Matching is minute-granular: every tick inside the trigger minute matches the
time-of-day, and the ``last_triggered_date`` stamp written on trigger is what
keeps later ticks in that minute (and the rest of the day) from firing again.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime

from reveille.datetime_utils import calendar_date, sunday_weekday, time_of_day

from .alarm import ACTIVE_STATUSES, Alarm
from .timers import PeriodicTask

LOGGER = logging.getLogger("reveille.scheduler")

TickHandler = Callable[[], Awaitable[object]]


def should_fire(alarm: Alarm, now: datetime) -> bool:
    """Return True when ``alarm``'s repeat rule matches the minute of ``now``."""
    if not alarm.enabled:
        return False
    if alarm.status == "completed" or alarm.status in ACTIVE_STATUSES:
        return False
    if alarm.time != time_of_day(now):
        return False
    if alarm.last_triggered_date == calendar_date(now):
        return False
    if alarm.repeat_type == "weekly":
        return sunday_weekday(now) in alarm.repeat_days
    return alarm.repeat_type in {"once", "daily"}


def evaluate_tick(now: datetime, alarms: Iterable[Alarm], *, presenting: bool = False) -> Alarm | None:
    """Pick the alarm that fires on this tick, if any.

    At most one alarm is returned (single-flight); the rest stay eligible for
    later ticks once the presented alarm is stopped or snoozed.
    """
    if presenting:
        return None
    for alarm in alarms:
        if should_fire(alarm, now):
            LOGGER.debug("Alarm %s (%s) matches %s", alarm.alarm_id, alarm.time, now.isoformat())
            return alarm
    return None


class ClockTicker:
    """Call the tick handler once per ``interval`` seconds."""

    def __init__(self, on_tick: TickHandler, *, interval: float = 1.0) -> None:
        self._on_tick = on_tick
        self._task = PeriodicTask(self._on_tick, interval, name="reveille-clock-tick")

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> None:
        LOGGER.debug("Starting clock ticker (every %.1fs)", self._task.interval)
        self._task.start()

    def stop(self) -> None:
        self._task.cancel()
