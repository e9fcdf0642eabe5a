"""Custom alarm sound storage and resolution helpers."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

_LOGGER = logging.getLogger("reveille.sound_library")

_DEFAULT_CUSTOM_DIR = Path.home() / ".local" / "share" / "reveille" / "sounds"
_ALLOWED_EXTENSIONS = {".wav", ".ogg", ".mp3", ".m4a"}
MAX_SOUND_BYTES = 10 * 1024 * 1024
_SAFE_NAME = re.compile(r"[^a-z0-9_-]+")


class SoundError(ValueError):
    """Raised when a sound upload is rejected."""


@dataclass(frozen=True)
class SoundInfo:
    sound_ref: str
    label: str
    path: Path


class SoundLibrary:
    """Store user-supplied alarm sounds and resolve references to files.

    A sound reference is the stored file name (``<slug>-<id><ext>``). References
    stay opaque to the rest of the client; only the library turns them into paths.
    """

    def __init__(self, *, custom_dir: Path | None = None) -> None:
        self.custom_dir = custom_dir or _DEFAULT_CUSTOM_DIR

    def ensure_custom_dir(self) -> None:
        """Make sure the custom directory exists."""
        self.custom_dir.mkdir(parents=True, exist_ok=True)

    def store(self, name: str, data: bytes, *, extension: str) -> str:
        """Persist uploaded audio bytes and return the new sound reference."""
        ext = extension.lower() if extension.startswith(".") else f".{extension.lower()}"
        if ext not in _ALLOWED_EXTENSIONS:
            raise SoundError("Please select a valid audio file (MP3, WAV, OGG or M4A)")
        if not data:
            raise SoundError("Sound file is empty")
        if len(data) > MAX_SOUND_BYTES:
            raise SoundError("File size must be less than 10MB")
        slug = _SAFE_NAME.sub("-", name.strip().lower()).strip("-") or "sound"
        sound_ref = f"{slug}-{uuid4().hex[:8]}{ext}"
        self.ensure_custom_dir()
        target = self.custom_dir / sound_ref
        tmp_path = target.with_suffix(target.suffix + ".tmp")
        tmp_path.write_bytes(data)
        tmp_path.replace(target)
        _LOGGER.info("Stored custom sound %s (%d bytes)", sound_ref, len(data))
        return sound_ref

    def import_file(self, source: Path, *, name: str | None = None) -> str:
        """Copy an existing audio file into the library."""
        try:
            data = source.read_bytes()
        except OSError as exc:
            raise SoundError(f"Unable to read {source}: {exc}") from exc
        return self.store(name or source.stem, data, extension=source.suffix)

    def resolve(self, sound_ref: str | None) -> Path | None:
        """Resolve a reference to a playable file, or None when it is gone."""
        if not sound_ref:
            return None
        candidate = self._path_for(sound_ref)
        if candidate is None or not candidate.is_file():
            return None
        return candidate

    def release(self, sound_ref: str | None) -> bool:
        """Delete the stored file behind a reference. Returns True if a file was removed."""
        candidate = self._path_for(sound_ref) if sound_ref else None
        if candidate is None or not candidate.exists():
            return False
        try:
            candidate.unlink()
        except OSError as exc:
            _LOGGER.warning("Unable to release custom sound %s: %s", sound_ref, exc)
            return False
        _LOGGER.info("Released custom sound %s", sound_ref)
        return True

    @staticmethod
    def label_for(sound_ref: str) -> str:
        """Display name for a reference (the slug without its random suffix)."""
        stem = Path(sound_ref).stem.rsplit("-", 1)[0]
        return stem.replace("_", " ").replace("-", " ").title()

    def custom_sounds(self) -> list[SoundInfo]:
        sounds: list[SoundInfo] = []
        if not self.custom_dir.exists():
            return sounds
        for candidate in sorted(self.custom_dir.glob("*")):
            if not candidate.is_file():
                continue
            if candidate.suffix.lower() not in _ALLOWED_EXTENSIONS:
                continue
            sounds.append(
                SoundInfo(
                    sound_ref=candidate.name,
                    label=self.label_for(candidate.name),
                    path=candidate.resolve(),
                )
            )
        return sounds

    def _path_for(self, sound_ref: str) -> Path | None:
        # References are bare file names; anything with a directory part is rejected.
        if Path(sound_ref).name != sound_ref or sound_ref in {".", ".."}:
            return None
        if Path(sound_ref).suffix.lower() not in _ALLOWED_EXTENSIONS:
            return None
        return self.custom_dir / sound_ref
