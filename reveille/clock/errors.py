"""Exceptions raised by the alarm clock core."""

from __future__ import annotations


class AlarmError(RuntimeError):
    """Base class for alarm clock failures."""


class ValidationError(AlarmError, ValueError):
    """Rejected alarm input (missing time, empty weekly day set, ...)."""


class NotFoundError(AlarmError, KeyError):
    """Operation referenced an alarm that does not exist or is not active."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Alarm not found"


class PlaybackFailure(AlarmError):
    """A single playback strategy could not start or keep playing."""


class TeardownFailure(AlarmError):
    """Audio was still active after a full stop."""


class PersistenceError(AlarmError):
    """Saving or loading alarms through the backend failed."""
