"""Configuration helpers for the Reveille alarm clock."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from pathlib import Path

from reveille.audio import DEFAULT_PLAYERS
from reveille.utils import parse_bool, parse_float, parse_float_list, parse_int, split_csv


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "reveille"
DEFAULT_SNOOZE_MINUTES = 5
DEFAULT_TEARDOWN_DELAYS = (0.1, 0.5)


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str


@dataclass(frozen=True)
class ClockConfig:
    api_base_url: str | None
    api_timeout: float
    data_dir: Path
    session_file: Path
    sounds_dir: Path
    snooze_minutes: int
    tick_seconds: float
    teardown_delays: tuple[float, ...]
    desktop_notifications: bool
    audio_players: tuple[str, ...]
    log_level: str
    mqtt: MqttConfig

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "cache"

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> ClockConfig:
        source = env if env is not None else os.environ
        hostname = socket.gethostname()

        data_dir = Path(source.get("REVEILLE_DATA_DIR") or DEFAULT_DATA_DIR).expanduser()
        session_file = Path(source.get("REVEILLE_SESSION_FILE") or data_dir / "session.json").expanduser()
        sounds_dir = Path(source.get("REVEILLE_SOUNDS_DIR") or data_dir / "sounds").expanduser()

        api_base_url = _strip_or_none(source.get("REVEILLE_API_BASE_URL"))
        if api_base_url:
            api_base_url = api_base_url.rstrip("/")

        snooze_minutes = parse_int(source.get("REVEILLE_SNOOZE_MINUTES"), DEFAULT_SNOOZE_MINUTES)
        if snooze_minutes < 1:
            snooze_minutes = DEFAULT_SNOOZE_MINUTES
        tick_seconds = parse_float(source.get("REVEILLE_TICK_SECONDS"), 1.0)
        if tick_seconds <= 0:
            tick_seconds = 1.0
        teardown_delays = tuple(
            delay
            for delay in parse_float_list(source.get("REVEILLE_TEARDOWN_DELAYS"), DEFAULT_TEARDOWN_DELAYS)
            if delay >= 0
        )

        players = tuple(split_csv(source.get("REVEILLE_AUDIO_PLAYERS"))) or DEFAULT_PLAYERS

        topic_base = source.get("REVEILLE_MQTT_TOPIC_BASE") or f"reveille/{hostname}"
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("MQTT_HOST")),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("MQTT_USER") or source.get("MQTT_USERNAME")),
            password=_strip_or_none(source.get("MQTT_PASS") or source.get("MQTT_PASSWORD")),
            tls_enabled=parse_bool(source.get("MQTT_TLS_ENABLED"), False),
            cert=_strip_or_none(source.get("MQTT_CERT")),
            key=_strip_or_none(source.get("MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("MQTT_CA_CERT")),
            topic_base=topic_base.rstrip("/"),
        )

        return ClockConfig(
            api_base_url=api_base_url,
            api_timeout=parse_float(source.get("REVEILLE_API_TIMEOUT"), 10.0),
            data_dir=data_dir,
            session_file=session_file,
            sounds_dir=sounds_dir,
            snooze_minutes=snooze_minutes,
            tick_seconds=tick_seconds,
            teardown_delays=teardown_delays,
            desktop_notifications=parse_bool(source.get("REVEILLE_DESKTOP_NOTIFICATIONS"), False),
            audio_players=players,
            log_level=(source.get("REVEILLE_LOG_LEVEL") or "INFO").strip().upper(),
            mqtt=mqtt,
        )
