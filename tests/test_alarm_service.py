"""Tests for the alarm lifecycle service (reveille/clock/alarm_service.py)."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import Mock

import httpx
import pytest
from reveille.clock.alarm import Alarm
from reveille.clock.errors import NotFoundError, ValidationError
from reveille.clock.persistence import AlarmRepository
from reveille.clock.playback import AlarmPlayer
from reveille.clock.session import SessionStore

pytestmark = pytest.mark.anyio


async def _started(make_service, **overrides):
    service = make_service(**overrides)
    assert await service.start() is True
    return service


def _cached(repository: AlarmRepository) -> dict:
    return json.loads(repository.cache_path("user-1").read_text(encoding="utf-8"))


async def test_trigger_updates_state_and_starts_audio(make_service, clock, surface, player, repository):
    service = await _started(make_service)
    alarm = await service.add("07:00", "Wake up")

    clock.set(2025, 1, 15, 7, 0, 0)
    fired = await service.tick()

    assert fired is alarm
    assert alarm.status == "triggered"
    assert alarm.last_triggered_date == "2025-01-15"
    assert alarm.triggered_at is not None
    assert player.engaged == "tone"
    assert surface.alerts == [("Wake up", "07:00")]
    assert _cached(repository)["alarms"][0]["status"] == "triggered"


async def test_daily_scenario_fires_once_then_again_next_day(make_service, clock):
    service = await _started(make_service)
    alarm = await service.add("07:00", repeat_type="daily")  # created at 06:59:58

    clock.set(2025, 1, 15, 7, 0, 0)
    assert await service.tick() is alarm
    clock.set(2025, 1, 15, 7, 0, 1)
    assert await service.tick() is None
    assert alarm.status == "triggered"
    assert alarm.last_triggered_date == "2025-01-15"

    await service.stop()
    clock.set(2025, 1, 15, 7, 0, 30)
    assert await service.tick() is None

    clock.set(2025, 1, 16, 7, 0, 0)
    assert await service.tick() is alarm
    assert alarm.last_triggered_date == "2025-01-16"


async def test_stop_once_alarm_completes(make_service, clock, surface, player):
    service = await _started(make_service)
    alarm = await service.add("07:00")
    clock.set(2025, 1, 15, 7, 0, 0)
    await service.tick()

    stopped = await service.stop()

    assert stopped is alarm
    assert alarm.status == "completed"
    assert alarm.completed_at is not None
    assert not player.playing
    assert surface.cleared == 1


async def test_stop_repeating_alarm_returns_to_pending(make_service, clock):
    service = await _started(make_service)
    alarm = await service.add("07:00", repeat_type="weekly", repeat_days=[3])
    clock.set(2025, 1, 15, 7, 0, 0)
    await service.tick()

    await service.stop()

    assert alarm.status == "pending"
    assert alarm.triggered_at is None
    assert alarm.last_triggered_date == "2025-01-15"


async def test_stop_is_idempotent(make_service, clock, player, strategies):
    service = await _started(make_service)
    alarm = await service.add("07:00")
    clock.set(2025, 1, 15, 7, 0, 0)
    await service.tick()

    await service.stop()
    snapshot = alarm.to_json_dict()
    pending = player.pending_teardowns
    for _ in range(3):
        assert await service.stop() is None

    assert alarm.to_json_dict() == snapshot
    assert player.pending_teardowns == pending
    assert not player.playing
    assert not any(strategy.active for strategy in strategies)


async def test_stop_with_nothing_ringing_is_safe(make_service, surface):
    service = await _started(make_service)
    assert await service.stop() is None
    assert surface.cleared == 0


async def test_snooze_round_trip(make_service, clock, surface):
    service = await _started(make_service)
    parent = await service.add("07:00", "Wake up", repeat_type="daily")
    clock.set(2025, 1, 15, 7, 0, 0)
    await service.tick()

    clock.set(2025, 1, 15, 7, 0, 10)
    derived = await service.snooze()

    assert derived is not None
    assert derived.time == "07:05"
    assert derived.repeat_type == "once"
    assert derived.snooze_count == 0
    assert derived.original_alarm_id == parent.alarm_id
    assert derived.label == "Wake up (Snoozed)"
    assert parent.status == "pending"
    assert parent.snooze_count == 1
    assert parent.last_snooze_at is not None
    assert service.presenting is None

    clock.set(2025, 1, 15, 7, 5, 0)
    assert await service.tick() is derived
    assert derived.status == "triggered"
    assert surface.alerts[-1] == ("Wake up (Snoozed)", "07:05")


async def test_snooze_once_alarm_completes_parent(make_service, clock):
    service = await _started(make_service)
    parent = await service.add("07:00")
    clock.set(2025, 1, 15, 7, 0, 0)
    await service.tick()

    derived = await service.snooze()

    assert parent.status == "completed"
    assert derived is not None and derived.custom_sound == parent.custom_sound


async def test_snooze_without_active_alarm_is_noop(make_service, surface):
    service = await _started(make_service)
    await service.add("07:00")

    assert await service.snooze() is None
    assert len(service.alarms) == 1
    assert surface.toasts[-1] == ("No alarm is ringing", "warning")


async def test_single_flight_with_shared_time(make_service, clock):
    service = await _started(make_service)
    first = await service.add("07:00", "first")
    second = await service.add("07:00", "second")

    clock.set(2025, 1, 15, 7, 0, 0)
    assert await service.tick() is first
    clock.set(2025, 1, 15, 7, 0, 1)
    assert await service.tick() is None
    assert second.status == "pending"

    await service.stop()
    clock.set(2025, 1, 15, 7, 0, 2)
    assert await service.tick() is second
    assert first.status == "completed"


async def test_edit_weekly_without_days_is_rejected(make_service):
    service = await _started(make_service)
    alarm = await service.add("07:00", "Gym", repeat_type="daily")
    before = alarm.to_json_dict()

    with pytest.raises(ValidationError):
        await service.edit(alarm.alarm_id, repeat_type="weekly", repeat_days=[])

    assert alarm.to_json_dict() == before


async def test_edit_unknown_alarm(make_service):
    service = await _started(make_service)
    with pytest.raises(NotFoundError):
        await service.edit("missing", label="x")


async def test_edit_rejects_unknown_field(make_service):
    service = await _started(make_service)
    alarm = await service.add("07:00")
    with pytest.raises(ValidationError):
        await service.edit(alarm.alarm_id, status="completed")
    assert alarm.status == "pending"


async def test_edit_new_time_rearms_completed_alarm(make_service, clock):
    service = await _started(make_service)
    alarm = await service.add("07:00")
    clock.set(2025, 1, 15, 7, 0, 0)
    await service.tick()
    await service.stop()
    assert alarm.status == "completed"

    await service.edit(alarm.alarm_id, time="7:30 am", label="Later")

    assert alarm.time == "07:30"
    assert alarm.label == "Later"
    assert alarm.status == "pending"
    assert alarm.last_triggered_date is None


async def test_add_requires_time(make_service):
    service = await _started(make_service)
    with pytest.raises(ValidationError):
        await service.add("")
    with pytest.raises(ValidationError):
        await service.add("25:00")
    assert service.alarms == []


async def test_add_rejects_unknown_sound(make_service):
    service = await _started(make_service)
    with pytest.raises(ValidationError):
        await service.add("07:00", custom_sound="ghost-1234abcd.mp3")
    assert service.alarms == []


async def test_toggle_flips_enabled(make_service, repository):
    service = await _started(make_service)
    alarm = await service.add("07:00")

    await service.toggle(alarm.alarm_id)
    assert alarm.enabled is False
    assert _cached(repository)["alarms"][0]["enabled"] is False

    await service.toggle(alarm.alarm_id)
    assert alarm.enabled is True


async def test_delete_releases_unreferenced_sound(make_service, sound_library):
    service = await _started(make_service)
    ref = sound_library.store("birds", b"RIFF....", extension=".wav")
    shared = sound_library.store("bells", b"RIFF....", extension=".wav")
    solo = await service.add("07:00", custom_sound=ref)
    first = await service.add("08:00", custom_sound=shared)
    await service.add("09:00", custom_sound=shared)

    await service.delete(solo.alarm_id)
    await service.delete(first.alarm_id)

    assert sound_library.resolve(ref) is None
    assert sound_library.resolve(shared) is not None
    assert len(service.alarms) == 1


async def test_delete_ringing_alarm_stops_audio(make_service, clock, player):
    service = await _started(make_service)
    alarm = await service.add("07:00")
    clock.set(2025, 1, 15, 7, 0, 0)
    await service.tick()

    await service.delete(alarm.alarm_id)

    assert not player.playing
    assert service.presenting is None
    assert service.alarms == []


async def test_persistence_failure_keeps_state_and_warns(make_service, surface, tmp_path: Path):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"success": True, "alarms": []})
        return httpx.Response(503, text="unavailable")

    repository = AlarmRepository(
        cache_dir=tmp_path / "remote-cache",
        api_base_url="http://backend.test/api",
        transport=httpx.MockTransport(handler),
    )
    service = await _started(make_service, repository=repository)

    alarm = await service.add("07:00")

    assert service.alarms == [alarm]
    assert surface.levels()[-1] == "warning"
    cached = repository.read_cache("user-1")
    assert cached is not None and cached.unsynced
    assert [a.alarm_id for a in cached.alarms] == [alarm.alarm_id]


async def test_start_without_session_fails_closed(make_service, tmp_path: Path, repository):
    service = make_service(session_store=SessionStore(tmp_path / "nobody.json"))

    assert await service.start() is False
    assert service.user is None
    await service.add("07:00")
    assert not repository.cache_path("user-1").exists()


async def test_start_resets_alarms_left_ringing(make_service, repository):
    ringing = Alarm(alarm_id="r1", time="07:00", status="triggered", last_triggered_date="2025-01-15")
    repository.write_cache("user-1", [ringing], unsynced=False)

    service = await _started(make_service)

    loaded = service.get("r1")
    assert loaded.status == "pending"
    assert loaded.last_triggered_date == "2025-01-15"
    assert _cached(repository)["alarms"][0]["status"] == "pending"


async def test_teardown_failure_invokes_emergency_handler(make_service, clock, surface, fake_strategy):
    sticky = fake_strategy("tone", sticky=True)
    handler = Mock()
    service = await _started(
        make_service,
        player=AlarmPlayer([sticky, fake_strategy("visual")], teardown_delays=()),
        on_teardown_failure=handler,
    )
    await service.add("07:00")
    clock.set(2025, 1, 15, 7, 0, 0)
    await service.tick()

    await service.stop()

    handler.assert_called_once()
    assert "error" in surface.levels()


async def test_state_listener_receives_snapshots(make_service):
    listener = Mock()
    service = await _started(make_service, state_listener=listener)

    await service.add("07:00")

    snapshot = listener.call_args[0][0]
    assert [alarm.time for alarm in snapshot] == ["07:00"]


async def test_list_alarms_sections(make_service, clock):
    service = await _started(make_service)
    late = await service.add("09:00")
    early = await service.add("06:00")
    disabled = await service.add("08:00")
    await service.toggle(disabled.alarm_id)
    ringing = await service.add("07:00")
    clock.set(2025, 1, 15, 7, 0, 0)
    await service.tick()

    sections = service.list_alarms()

    assert sections.active == [early, late]
    assert sections.ringing == [ringing]
    assert sections.inactive == [disabled]


async def test_test_sound_plays_then_stops(make_service, player):
    service = await _started(make_service)

    engaged = await service.test_sound(seconds=0)

    assert engaged == "tone"
    assert not player.playing


async def test_preview_unknown_sound(make_service):
    service = await _started(make_service)
    with pytest.raises(ValidationError):
        await service.preview_sound("nope-00000000.mp3", seconds=0)


async def test_preview_warns_when_custom_layer_unavailable(make_service, sound_library, surface):
    service = await _started(make_service)
    ref = sound_library.store("birds", b"RIFF....", extension=".wav")

    engaged = await service.preview_sound(ref, seconds=0)

    assert engaged == "tone"
    assert surface.toasts[-1] == ("Error playing custom sound", "error")


async def test_ringing_alarm_cuts_sound_test_short(make_service, clock, player):
    service = await _started(make_service)
    alarm = await service.add("07:00", "Wake", repeat_type="daily")
    audition = asyncio.create_task(service.test_sound(seconds=30))
    await asyncio.sleep(0)

    clock.set(2025, 1, 15, 7, 0, 0)
    assert await service.tick() is alarm
    engaged = await asyncio.wait_for(audition, timeout=1)

    assert engaged == "tone"
    assert service.presenting is alarm
    assert player.playing
    await service.stop()
