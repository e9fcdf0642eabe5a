"""Shared test fixtures for the Reveille test suite.

This module provides reusable fixtures for common test scenarios including:
- Controllable clock
- Recording alert surface
- Fake playback strategies
- A fully wired alarm service backed by a temporary cache directory
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest
from reveille.clock.alarm import Alarm
from reveille.clock.alarm_service import AlarmService
from reveille.clock.config import MqttConfig
from reveille.clock.persistence import AlarmRepository
from reveille.clock.playback import AlarmPlayer, PlaybackStrategy
from reveille.clock.session import SessionStore
from reveille.sound_library import SoundLibrary

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


@pytest.fixture
def mock_logger():
    return Mock(spec=logging.Logger)


# ============================================================================
# Test doubles
# ============================================================================


class FakeClock:
    """Settable wall clock; starts Wednesday 2025-01-15 06:59:58."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2025, 1, 15, 6, 59, 58)

    def __call__(self) -> datetime:
        return self.now

    def set(self, *args: int) -> datetime:
        self.now = datetime(*args)
        return self.now


class RecordingSurface:
    def __init__(self) -> None:
        self.alerts: list[tuple[str, str]] = []
        self.cleared = 0
        self.toasts: list[tuple[str, str]] = []
        self.flashes: list[str | None] = []

    def present_alert(self, label: str, time: str) -> None:
        self.alerts.append((label, time))

    def clear_alert(self) -> None:
        self.cleared += 1

    def toast(self, message: str, level: str = "info") -> None:
        self.toasts.append((message, level))

    def flash(self, color: str | None) -> None:
        self.flashes.append(color)

    def levels(self) -> list[str]:
        return [level for _message, level in self.toasts]


class FakeStrategy(PlaybackStrategy):
    """Playback strategy that records calls instead of making noise."""

    def __init__(self, name: str, *, available: bool = True, sticky: bool = False, explode: bool = False) -> None:
        super().__init__()
        self.name = name
        self.available = available
        self.sticky = sticky
        self.explode = explode
        self.started: list[str] = []
        self.stops = 0
        self._active = False

    def start(self, alarm: Alarm) -> bool:
        self.started.append(alarm.alarm_id)
        if self.explode:
            raise RuntimeError(f"{self.name} exploded")
        if not self.available:
            return False
        self._active = True
        return True

    def stop(self) -> None:
        self.stops += 1
        if not self.sticky:
            self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def fail(self) -> None:
        self._report_failure("simulated player crash")


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def surface() -> RecordingSurface:
    return RecordingSurface()


@pytest.fixture
def fake_strategy() -> type[FakeStrategy]:
    return FakeStrategy


@pytest.fixture
def strategies() -> list[FakeStrategy]:
    return [
        FakeStrategy("custom", available=False),
        FakeStrategy("tone"),
        FakeStrategy("visual"),
    ]


@pytest.fixture
def player(strategies: list[FakeStrategy]) -> AlarmPlayer:
    return AlarmPlayer(strategies, teardown_delays=(0.01, 0.02))


@pytest.fixture
def sound_library(tmp_path: Path) -> SoundLibrary:
    return SoundLibrary(custom_dir=tmp_path / "sounds")


@pytest.fixture
def session_file(tmp_path: Path) -> Path:
    path = tmp_path / "session.json"
    path.write_text(json.dumps({"id": "user-1", "username": "sam", "email": "sam@example.com"}), encoding="utf-8")
    return path


@pytest.fixture
def repository(tmp_path: Path) -> AlarmRepository:
    return AlarmRepository(cache_dir=tmp_path / "cache")


@pytest.fixture
def make_service(
    repository: AlarmRepository,
    session_file: Path,
    player: AlarmPlayer,
    surface: RecordingSurface,
    sound_library: SoundLibrary,
    clock: FakeClock,
):
    """Factory fixture for an alarm service with overridable collaborators.

    Usage:
        service = make_service(repository=other_repo)
        await service.start()
    """

    def _create(**overrides: Any) -> AlarmService:
        kwargs: dict[str, Any] = {
            "repository": repository,
            "session_store": SessionStore(session_file),
            "player": player,
            "surface": surface,
            "sound_library": sound_library,
            "clock": clock,
        }
        kwargs.update(overrides)
        return AlarmService(**kwargs)

    return _create


@pytest.fixture
def mqtt_config():
    return MqttConfig(
        host="localhost",
        port=1883,
        topic_base="reveille/test",
        username=None,
        password=None,
        tls_enabled=False,
        ca_cert=None,
        cert=None,
        key=None,
    )
