"""
Alarm lifecycle service

Owns the alarm collection for the signed-in user and drives the presentation
state machine:

    pending --tick--> triggered --stop--> completed   (once)
                                 --stop--> pending     (daily / weekly)
                                 --snooze--> as stop + derived once alarm

Only one alarm is presented at a time. Every mutation is persisted through the
repository; persistence failures leave the in-memory state authoritative and
surface as a warning toast.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from reveille.datetime_utils import calendar_date, local_now, serialize_dt, shift_time_of_day, time_of_day
from reveille.sound_library import SoundLibrary

from .alarm import SNOOZE_SUFFIX, Alarm, validate_schedule
from .errors import NotFoundError, PersistenceError, TeardownFailure, ValidationError
from .notifier import AlertSurface, ToastLevel
from .persistence import AlarmRepository
from .playback import AlarmPlayer
from .scheduler import evaluate_tick
from .session import SessionStore, UserSession

LOGGER = logging.getLogger("reveille.alarm_service")

_EDITABLE_FIELDS = frozenset({"time", "label", "repeat_type", "repeat_days", "custom_sound", "custom_sound_name"})

StateListener = Callable[[Sequence[Alarm]], None]
TeardownHandler = Callable[[TeardownFailure], None]


@dataclass(frozen=True)
class AlarmSections:
    active: list[Alarm]
    ringing: list[Alarm]
    inactive: list[Alarm]


class AlarmService:
    def __init__(
        self,
        *,
        repository: AlarmRepository,
        session_store: SessionStore,
        player: AlarmPlayer,
        surface: AlertSurface,
        sound_library: SoundLibrary,
        snooze_minutes: int = 5,
        clock: Callable[[], datetime] = local_now,
        state_listener: StateListener | None = None,
        on_teardown_failure: TeardownHandler | None = None,
    ) -> None:
        self._repository = repository
        self._session_store = session_store
        self._player = player
        self._surface = surface
        self._sounds = sound_library
        self.snooze_minutes = max(1, snooze_minutes)
        self._clock = clock
        self._state_listener = state_listener
        self._on_teardown_failure = on_teardown_failure
        self._user: UserSession | None = None
        self._alarms: list[Alarm] = []
        self._presenting_id: str | None = None
        self._alarm_started = asyncio.Event()
        self._save_lock = asyncio.Lock()

    async def __aenter__(self) -> AlarmService:
        await self.start()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    @property
    def user(self) -> UserSession | None:
        return self._user

    @property
    def alarms(self) -> list[Alarm]:
        return list(self._alarms)

    @property
    def presenting(self) -> Alarm | None:
        if self._presenting_id is None:
            return None
        return self._find(self._presenting_id)

    def get(self, alarm_id: str) -> Alarm:
        alarm = self._find(alarm_id)
        if alarm is None:
            raise NotFoundError(f"Alarm {alarm_id} not found")
        return alarm

    async def start(self) -> bool:
        """Load the signed-in user's alarms. Returns False when nobody is signed in."""
        user = self._session_store.current_user()
        self._user = user
        self._alarms = []
        self._presenting_id = None
        if user is None:
            LOGGER.warning("No signed-in user; alarms will not be loaded or saved")
            self._toast("Not signed in: alarms are disabled", "warning")
            return False
        try:
            alarms = await self._repository.load_alarms(user.user_id)
        except PersistenceError as exc:
            LOGGER.warning("Failed to load alarms for %s: %s", user.user_id, exc)
            self._toast("Could not load alarms", "warning")
            alarms = []
        self._alarms = list(alarms)
        reset = 0
        for alarm in self._alarms:
            if alarm.is_active:
                # no presentation survives a restart
                alarm.status = "pending"
                alarm.triggered_at = None
                reset += 1
        LOGGER.info("Loaded %d alarm(s) for %s", len(self._alarms), user.display_name)
        if reset:
            LOGGER.info("Reset %d alarm(s) left ringing by a previous run", reset)
            await self._persist()
        else:
            self._publish_state()
        return True

    async def close(self) -> None:
        self._player.close()
        await self._repository.close()

    # ------------------------------------------------------------------
    # presentation state machine

    async def tick(self, now: datetime | None = None) -> Alarm | None:
        """One scheduler pass; triggers at most one alarm."""
        now = now or self._clock()
        alarm = evaluate_tick(now, self._alarms, presenting=self._presenting_id is not None)
        if alarm is None:
            return None
        await self.trigger(alarm, now=now)
        return alarm

    async def trigger(self, alarm: Alarm, *, now: datetime | None = None) -> bool:
        if self._presenting_id is not None:
            LOGGER.warning("Alarm %s not triggered: %s is still ringing", alarm.alarm_id, self._presenting_id)
            return False
        now = now or self._clock()
        alarm.status = "triggered"
        alarm.triggered_at = serialize_dt(now)
        alarm.last_triggered_date = calendar_date(now)
        self._presenting_id = alarm.alarm_id
        self._alarm_started.set()
        LOGGER.info("Alarm %s (%s %s) triggered", alarm.alarm_id, alarm.time, alarm.label)
        self._player.start(alarm)
        try:
            self._surface.present_alert(alarm.label, alarm.time)
        except Exception:
            LOGGER.warning("Failed to present alert for %s", alarm.alarm_id, exc_info=True)
        await self._persist()
        return True

    async def stop(self, *, now: datetime | None = None) -> Alarm | None:
        """Dismiss the ringing alarm. Safe to call when nothing is ringing."""
        alarm = self._end_presentation(now or self._clock())
        if alarm is None:
            return None
        await self._persist()
        return alarm

    async def snooze(self, *, now: datetime | None = None) -> Alarm | None:
        """Silence the ringing alarm and schedule a one-time repeat; returns the derived alarm."""
        alarm = self.presenting
        if alarm is None or not alarm.is_active:
            LOGGER.warning("Snooze requested but no alarm is ringing")
            self._toast("No alarm is ringing", "warning")
            return None
        now = now or self._clock()
        alarm.status = "snoozed"
        alarm.snooze_count += 1
        alarm.last_snooze_at = serialize_dt(now)
        self._end_presentation(now)
        label = alarm.label if alarm.label.endswith(SNOOZE_SUFFIX) else f"{alarm.label}{SNOOZE_SUFFIX}"
        derived = Alarm.create(
            time=shift_time_of_day(now, self.snooze_minutes),
            label=label,
            repeat_type="once",
            custom_sound=alarm.custom_sound,
            custom_sound_name=alarm.custom_sound_name,
            original_alarm_id=alarm.alarm_id,
            now=now,
        )
        self._alarms.append(derived)
        LOGGER.info("Alarm %s snoozed until %s (%s)", alarm.alarm_id, derived.time, derived.alarm_id)
        self._toast(f"Snoozed for {self.snooze_minutes} minutes", "info")
        await self._persist()
        return derived

    def _end_presentation(self, now: datetime) -> Alarm | None:
        self._halt_audio()
        alarm = self.presenting
        self._presenting_id = None
        if alarm is None:
            return None
        if alarm.repeat_type == "once":
            alarm.status = "completed"
            alarm.completed_at = serialize_dt(now)
        else:
            alarm.status = "pending"
            alarm.triggered_at = None
        try:
            self._surface.clear_alert()
        except Exception:
            LOGGER.warning("Failed to clear alert", exc_info=True)
        LOGGER.info("Alarm %s stopped (%s)", alarm.alarm_id, alarm.status)
        return alarm

    def _halt_audio(self) -> bool:
        try:
            self._player.stop()
        except TeardownFailure as exc:
            LOGGER.error("Alarm audio could not be stopped: %s", exc)
            self._toast("Alarm sound would not stop. Use the emergency restart.", "error")
            if self._on_teardown_failure:
                self._on_teardown_failure(exc)
            return False
        return True

    # ------------------------------------------------------------------
    # alarm collection

    async def add(
        self,
        time: str | None,
        label: str | None = None,
        repeat_type: str | None = "once",
        repeat_days: list[int] | None = None,
        custom_sound: str | None = None,
        custom_sound_name: str | None = None,
    ) -> Alarm:
        custom_sound_name = self._check_sound(custom_sound, custom_sound_name)
        alarm = Alarm.create(
            time=time or "",
            label=label,
            repeat_type=repeat_type,
            repeat_days=repeat_days,
            custom_sound=custom_sound,
            custom_sound_name=custom_sound_name,
            now=self._clock(),
        )
        self._alarms.append(alarm)
        LOGGER.info("Added alarm %s at %s (%s)", alarm.alarm_id, alarm.time, alarm.describe_repeat())
        await self._persist()
        return alarm

    async def edit(self, alarm_id: str, **fields: Any) -> Alarm:
        """Update an alarm in place; nothing changes unless the merged result validates.

        Raises:
            NotFoundError: unknown id.
            ValidationError: unknown field or an invalid merged schedule.
        """
        alarm = self.get(alarm_id)
        unknown = set(fields) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot edit field(s): {', '.join(sorted(unknown))}")
        repeat_type = fields.get("repeat_type", alarm.repeat_type)
        repeat_days = fields.get("repeat_days", alarm.repeat_days)
        time_str, kind, days = validate_schedule(fields.get("time", alarm.time), repeat_type, repeat_days)
        sound_changed = "custom_sound" in fields and fields["custom_sound"] != alarm.custom_sound
        sound_name = alarm.custom_sound_name
        if sound_changed:
            sound_name = self._check_sound(fields["custom_sound"], fields.get("custom_sound_name"))
        elif "custom_sound_name" in fields:
            sound_name = fields["custom_sound_name"]

        schedule_changed = (time_str, kind, days) != (alarm.time, alarm.repeat_type, alarm.repeat_days)
        previous_sound = alarm.custom_sound
        alarm.time = time_str
        alarm.repeat_type = kind
        alarm.repeat_days = days
        if "label" in fields:
            alarm.label = (fields["label"] or "").strip() or alarm.label
        if sound_changed:
            alarm.custom_sound = fields["custom_sound"]
        alarm.custom_sound_name = sound_name if alarm.custom_sound else None
        if schedule_changed and not alarm.is_active:
            # a new schedule gets a fresh chance to ring today
            alarm.last_triggered_date = None
            if alarm.status == "completed":
                alarm.status = "pending"
                alarm.completed_at = None
        if sound_changed:
            self._release_sound_if_unused(previous_sound)
        LOGGER.info("Updated alarm %s (%s %s)", alarm.alarm_id, alarm.time, alarm.describe_repeat())
        await self._persist()
        return alarm

    async def toggle(self, alarm_id: str) -> Alarm:
        alarm = self.get(alarm_id)
        if alarm.enabled and alarm.alarm_id == self._presenting_id:
            self._end_presentation(self._clock())
        alarm.enabled = not alarm.enabled
        if alarm.enabled and alarm.status == "completed":
            alarm.status = "pending"
            alarm.completed_at = None
        LOGGER.info("Alarm %s %s", alarm.alarm_id, "enabled" if alarm.enabled else "disabled")
        await self._persist()
        return alarm

    async def delete(self, alarm_id: str) -> Alarm:
        alarm = self.get(alarm_id)
        if alarm.alarm_id == self._presenting_id:
            self._halt_audio()
            self._presenting_id = None
            try:
                self._surface.clear_alert()
            except Exception:
                LOGGER.warning("Failed to clear alert", exc_info=True)
        self._alarms = [item for item in self._alarms if item.alarm_id != alarm_id]
        self._release_sound_if_unused(alarm.custom_sound)
        LOGGER.info("Deleted alarm %s", alarm_id)
        await self._persist()
        return alarm

    def list_alarms(self) -> AlarmSections:
        active = sorted(
            (a for a in self._alarms if a.enabled and a.status == "pending"),
            key=lambda a: a.time,
        )
        ringing = [a for a in self._alarms if a.is_active]
        inactive = [a for a in self._alarms if not a.is_active and (not a.enabled or a.status == "completed")]
        return AlarmSections(active=active, ringing=ringing, inactive=inactive)

    # ------------------------------------------------------------------
    # sound checks

    async def test_sound(self, seconds: float = 3.0) -> str | None:
        """Play the default alarm sound briefly; returns the engaged strategy."""
        probe = Alarm(alarm_id="sound-test", time=time_of_day(self._clock()), label="Sound test")
        return await self._audition(probe, seconds)

    async def preview_sound(self, sound_ref: str, seconds: float = 5.0) -> str | None:
        """Play a stored custom sound briefly.

        Raises:
            ValidationError: the reference does not resolve to a stored sound.
        """
        if self._sounds.resolve(sound_ref) is None:
            raise ValidationError(f"Unknown sound: {sound_ref}")
        probe = Alarm(
            alarm_id="sound-preview",
            time=time_of_day(self._clock()),
            label="Sound preview",
            custom_sound=sound_ref,
        )
        engaged = await self._audition(probe, seconds)
        if engaged is not None and engaged != "custom":
            self._toast("Error playing custom sound", "error")
        return engaged

    async def _audition(self, probe: Alarm, seconds: float) -> str | None:
        if self._presenting_id is not None:
            self._toast("An alarm is ringing; stop it first", "warning")
            return None
        self._alarm_started.clear()
        engaged = self._player.start(probe)
        try:
            # a ringing alarm cuts the audition short
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._alarm_started.wait(), timeout=seconds)
        finally:
            # an alarm may have started ringing meanwhile; it owns the audio now
            if self._presenting_id is None:
                self._halt_audio()
        return engaged

    def _check_sound(self, sound_ref: str | None, name: str | None) -> str | None:
        if not sound_ref:
            return None
        if self._sounds.resolve(sound_ref) is None:
            raise ValidationError(f"Unknown sound: {sound_ref}")
        return name or self._sounds.label_for(sound_ref)

    def _release_sound_if_unused(self, sound_ref: str | None) -> None:
        if not sound_ref:
            return
        if any(alarm.custom_sound == sound_ref for alarm in self._alarms):
            return
        self._sounds.release(sound_ref)

    # ------------------------------------------------------------------
    # persistence and notifications

    def _find(self, alarm_id: str) -> Alarm | None:
        for alarm in self._alarms:
            if alarm.alarm_id == alarm_id:
                return alarm
        return None

    async def _persist(self) -> bool:
        user = self._user
        if user is None:
            self._publish_state()
            return False
        async with self._save_lock:
            try:
                await self._repository.save_alarms(user.user_id, list(self._alarms))
            except PersistenceError as exc:
                LOGGER.warning("Failed to save alarms for %s: %s", user.user_id, exc)
                self._toast("Backend unavailable: changes kept locally", "warning")
                saved = False
            else:
                saved = True
        self._publish_state()
        return saved

    def _publish_state(self) -> None:
        if not self._state_listener:
            return
        try:
            self._state_listener(list(self._alarms))
        except Exception:
            LOGGER.debug("Alarm state listener failed", exc_info=True)

    def _toast(self, message: str, level: ToastLevel) -> None:
        try:
            self._surface.toast(message, level)
        except Exception:
            LOGGER.warning("Failed to show notification: %s", message, exc_info=True)
