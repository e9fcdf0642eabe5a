"""Read-only access to the signed-in user."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger("reveille.session")


@dataclass(frozen=True)
class UserSession:
    user_id: str
    display_name: str
    email: str | None = None


class SessionStore:
    """Reads the session file the login collaborator writes.

    The file holds ``{"id": ..., "username": ..., "email": ...}``. Anything else
    (missing file, bad JSON, no id) means nobody is signed in.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def current_user(self) -> UserSession | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            LOGGER.warning("Unable to read session file %s: %s", self.path, exc)
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Ignoring malformed session file %s: %s", self.path, exc)
            return None
        if not isinstance(payload, dict):
            return None
        user_id = payload.get("id")
        if user_id in (None, ""):
            return None
        user_id = str(user_id)
        display_name = str(payload.get("username") or payload.get("displayName") or user_id)
        email = payload.get("email")
        return UserSession(user_id=user_id, display_name=display_name, email=str(email) if email else None)
