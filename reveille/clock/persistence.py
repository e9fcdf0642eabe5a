"""Alarm persistence: REST backend with a local flat-file cache.

The backend speaks ``GET/PUT /users/{id}/alarms`` with ``{"success": bool,
"alarms": [...]}`` bodies. Every save lands in the local cache first; the cache
carries an ``unsynced`` flag until the backend has accepted the same list, and
an unsynced cache wins over the remote copy on the next load.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from .alarm import Alarm
from .errors import PersistenceError

LOGGER = logging.getLogger("reveille.persistence")


@dataclass(frozen=True)
class CachedAlarms:
    alarms: list[Alarm]
    unsynced: bool


def _parse_alarms(items: Iterable[Any]) -> list[Alarm]:
    alarms: list[Alarm] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            alarms.append(Alarm.from_dict(item))
        except (KeyError, TypeError, ValueError):
            LOGGER.debug("Skipping invalid alarm entry: %s", item, exc_info=True)
    return alarms


class AlarmRepository:
    """Loads and saves a user's alarms."""

    def __init__(
        self,
        *,
        cache_dir: Path,
        api_base_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cache_dir = cache_dir
        self._client: httpx.AsyncClient | None = None
        if api_base_url:
            self._client = httpx.AsyncClient(
                base_url=api_base_url.rstrip("/"),
                headers={"Content-Type": "application/json"},
                timeout=timeout,
                transport=transport,
                trust_env=False,
            )

    @property
    def remote_enabled(self) -> bool:
        return self._client is not None

    async def close(self) -> None:
        client = self._client
        self._client = None
        if client:
            await client.aclose()

    async def load_alarms(self, user_id: str) -> list[Alarm]:
        """Return the user's alarms; remote when reachable, otherwise the cache."""
        cached = self.read_cache(user_id)
        if cached and cached.unsynced:
            LOGGER.info("Local alarms for user %s have unsynced changes; reconciling", user_id)
            if self._client:
                try:
                    await self._push(user_id, cached.alarms)
                except PersistenceError as exc:
                    LOGGER.warning("Backend still unreachable, keeping unsynced cache: %s", exc)
                else:
                    self._write_cache_quietly(user_id, cached.alarms, unsynced=False)
            return cached.alarms
        if self._client:
            try:
                payload = await self._request("GET", f"/users/{user_id}/alarms")
            except PersistenceError as exc:
                LOGGER.warning("Failed to load alarms from backend, using local cache: %s", exc)
            else:
                alarms = _parse_alarms(payload.get("alarms") or [])
                self._write_cache_quietly(user_id, alarms, unsynced=False)
                return alarms
        return cached.alarms if cached else []

    async def save_alarms(self, user_id: str, alarms: Sequence[Alarm]) -> None:
        """Persist ``alarms``.

        Raises:
            PersistenceError: the backend rejected the save (the cache still holds
                the list, flagged unsynced) or nothing could be written at all.
        """
        remote = self._client is not None
        try:
            self.write_cache(user_id, alarms, unsynced=remote)
        except OSError as exc:
            if not remote:
                raise PersistenceError(f"Unable to write alarm cache: {exc}") from exc
            LOGGER.warning("Unable to write alarm cache: %s", exc)
        if not remote:
            return
        await self._push(user_id, alarms)
        self._write_cache_quietly(user_id, alarms, unsynced=False)
        await self.update_stats(user_id, alarms)

    async def update_stats(self, user_id: str, alarms: Sequence[Alarm]) -> bool:
        """Best-effort push of alarm counters to the backend."""
        if not self._client:
            return False
        stats = {
            "alarmCount": sum(1 for alarm in alarms if alarm.enabled),
            "totalAlarms": len(alarms),
        }
        try:
            await self._request("PUT", f"/users/{user_id}/stats", json=stats)
        except PersistenceError as exc:
            LOGGER.debug("Failed to update user stats: %s", exc)
            return False
        return True

    def cache_path(self, user_id: str) -> Path:
        safe_id = "".join(ch for ch in user_id if ch.isalnum() or ch in "-_") or "anonymous"
        return self.cache_dir / f"alarms_{safe_id}.json"

    def read_cache(self, user_id: str) -> CachedAlarms | None:
        path = self.cache_path(user_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            LOGGER.warning("Failed to load alarm cache %s: %s", path, exc)
            return None
        if isinstance(data, list):
            # bare list written by older clients
            return CachedAlarms(alarms=_parse_alarms(data), unsynced=False)
        if not isinstance(data, dict):
            return None
        return CachedAlarms(
            alarms=_parse_alarms(data.get("alarms") or []),
            unsynced=bool(data.get("unsynced")),
        )

    def write_cache(self, user_id: str, alarms: Sequence[Alarm], *, unsynced: bool) -> None:
        path = self.cache_path(user_id)
        payload = {
            "alarms": [alarm.to_json_dict() for alarm in alarms],
            "unsynced": unsynced,
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(path)

    def _write_cache_quietly(self, user_id: str, alarms: Sequence[Alarm], *, unsynced: bool) -> None:
        try:
            self.write_cache(user_id, alarms, unsynced=unsynced)
        except OSError as exc:
            LOGGER.warning("Unable to write alarm cache: %s", exc)

    async def _push(self, user_id: str, alarms: Sequence[Alarm]) -> None:
        body = {"alarms": [alarm.to_json_dict() for alarm in alarms]}
        await self._request("PUT", f"/users/{user_id}/alarms", json=body)

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        client = self._client
        if client is None:
            raise PersistenceError("Alarm backend is not configured")
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            raise PersistenceError(f"Failed to contact alarm backend: {exc}") from exc
        if response.status_code >= 400:
            raise PersistenceError(f"Alarm backend error {response.status_code}: {response.text}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise PersistenceError("Alarm backend returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise PersistenceError("Alarm backend returned an unexpected payload")
        if payload.get("success") is False:
            raise PersistenceError(payload.get("message") or "Alarm backend reported failure")
        return payload
