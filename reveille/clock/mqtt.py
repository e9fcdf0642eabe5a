"""MQTT alert surface: publishes ringing alarms and the alarm list to a broker."""

from __future__ import annotations

import json
import logging
import ssl
import threading
from collections.abc import Sequence
from typing import Any

import paho.mqtt.client as mqtt

from reveille.datetime_utils import local_now, serialize_dt

from .alarm import Alarm
from .config import MqttConfig
from .notifier import ToastLevel


class ClockMqtt:
    """Paho client for the clock; every call is a no-op when no broker is configured.

    The broker keeps a retained ``{topic_base}/availability`` message, set to
    ``online`` after connecting and to ``offline`` on disconnect or, through
    the last will, when the clock drops off the network.
    """

    def __init__(self, config: MqttConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self.availability_topic = f"{config.topic_base}/availability"
        self._logger = logger or logging.getLogger("reveille.mqtt")
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()

    @property
    def client_id(self) -> str:
        return "reveille-" + self.config.topic_base.replace("/", "-")

    def _tls_options(self) -> dict[str, object]:
        options: dict[str, object] = {"tls_version": getattr(ssl, "PROTOCOL_TLS_CLIENT", ssl.PROTOCOL_TLS)}
        for key, value in (("ca_certs", self.config.ca_cert), ("certfile", self.config.cert), ("keyfile", self.config.key)):
            if value:
                options[key] = value
        return options

    def _build_client(self) -> mqtt.Client:
        extra: dict[str, object] = {}
        if hasattr(mqtt, "CallbackAPIVersion"):
            extra["callback_api_version"] = mqtt.CallbackAPIVersion.VERSION2
        client = mqtt.Client(client_id=self.client_id, clean_session=True, **extra)
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password or "")
        if self.config.tls_enabled:
            client.tls_set(**self._tls_options())
        client.will_set(self.availability_topic, payload="offline", retain=True)
        return client

    def connect(self) -> None:
        if not self.config.host:
            self._logger.debug("[mqtt] No broker configured; alarm events stay local")
            return
        with self._lock:
            if self._client is not None:
                return
            client = self._build_client()
            try:
                client.connect(self.config.host, self.config.port, keepalive=30)
            except Exception as exc:
                self._logger.warning("[mqtt] Could not reach broker %s:%s: %s", self.config.host, self.config.port, exc)
                return
            client.loop_start()
            self._client = client
        self.publish(self.availability_topic, "online", retain=True)

    def disconnect(self) -> None:
        self.publish(self.availability_topic, "offline", retain=True)
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            client.loop_stop()
            client.disconnect()

    def publish(self, topic: str, payload: str, retain: bool = False, qos: int = 0) -> None:
        client = self._client
        if client is None:
            return
        try:
            client.publish(topic, payload=payload, qos=qos, retain=retain)
        except Exception as exc:
            self._logger.debug("[mqtt] Dropped message for %s: %s", topic, exc)


class MqttNotifier:
    """Alert surface that mirrors alarm events to ``{topic_base}/...`` topics."""

    def __init__(self, client: ClockMqtt) -> None:
        self._client = client
        base = client.config.topic_base
        self.alert_topic = f"{base}/alert"
        self.toast_topic = f"{base}/toast"
        self.alarms_topic = f"{base}/alarms"

    def _publish_json(self, topic: str, payload: dict[str, Any], *, retain: bool = False) -> None:
        self._client.publish(topic, json.dumps(payload), retain=retain)

    def present_alert(self, label: str, time: str) -> None:
        self._publish_json(
            self.alert_topic,
            {"state": "ringing", "label": label, "time": time, "at": serialize_dt(local_now())},
            retain=True,
        )

    def clear_alert(self) -> None:
        self._publish_json(self.alert_topic, {"state": "idle", "at": serialize_dt(local_now())}, retain=True)

    def toast(self, message: str, level: ToastLevel = "info") -> None:
        self._publish_json(self.toast_topic, {"level": level, "message": message})

    def flash(self, color: str | None) -> None:
        return None

    def publish_alarms(self, alarms: Sequence[Alarm]) -> None:
        snapshot = {
            "alarms": [alarm.to_json_dict() for alarm in alarms],
            "updated_at": serialize_dt(local_now()),
        }
        self._publish_json(self.alarms_topic, snapshot, retain=True)
