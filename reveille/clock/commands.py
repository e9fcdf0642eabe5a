"""Keyboard command parsing for the console client."""

from __future__ import annotations

import logging
import shlex
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from reveille.datetime_utils import deserialize_dt
from reveille.sound_library import SoundError, SoundLibrary

from .alarm import Alarm, parse_day_tokens
from .alarm_service import AlarmService
from .errors import AlarmError, NotFoundError, ValidationError
from .notifier import ToastLevel

LOGGER = logging.getLogger("reveille.commands")

HELP_TEXT = """Commands:
  list                                  show alarms
  add HH:MM [label] [--repeat once|daily|weekly] [--days mon,wed] [--sound REF]
  edit ID [--time HH:MM] [--label TEXT] [--repeat ...] [--days ...] [--sound REF|none]
  toggle ID                             enable / disable
  delete ID                             remove (asks for confirmation)
  stop | x | <Enter>                    dismiss the ringing alarm
  snooze | s                            snooze the ringing alarm
  sound add NAME PATH                   import an audio file (mp3, wav, ogg, m4a; max 10MB)
  sound list                            list stored sounds
  sound preview REF                     play a stored sound for 5 seconds
  test-sound                            play the default alarm sound for 3 seconds
  help                                  this text
  quit                                  exit"""

_OPTION_NAMES = {"--time", "--label", "--repeat", "--days", "--sound"}
_YES = {"y", "yes"}
_ALERT_WORDS = {"", "stop", "x", "snooze", "s"}


@dataclass(frozen=True)
class CommandResult:
    message: str | None = None
    level: ToastLevel = "info"
    quit: bool = False


def _split_options(tokens: list[str]) -> tuple[list[str], dict[str, str]]:
    positional: list[str] = []
    options: dict[str, str] = {}
    idx = 0
    while idx < len(tokens):
        token = tokens[idx]
        if token.startswith("--"):
            name, _, inline = token.partition("=")
            if name not in _OPTION_NAMES:
                raise ValidationError(f"Unknown option {name}")
            if inline:
                options[name[2:]] = inline
            elif idx + 1 < len(tokens):
                idx += 1
                options[name[2:]] = tokens[idx]
            else:
                raise ValidationError(f"Option {name} needs a value")
        else:
            positional.append(token)
        idx += 1
    return positional, options


def format_alarm(alarm: Alarm) -> str:
    flags = []
    ringing_since = deserialize_dt(alarm.triggered_at) if alarm.is_active else None
    if ringing_since is not None:
        flags.append(f"ringing since {ringing_since:%H:%M}")
    if alarm.custom_sound:
        flags.append(f"sound: {alarm.custom_sound_name or alarm.custom_sound}")
    if alarm.snooze_count:
        flags.append(f"snoozed x{alarm.snooze_count}")
    if not alarm.enabled:
        flags.append("disabled")
    suffix = f"  [{'; '.join(flags)}]" if flags else ""
    return f"  {alarm.alarm_id[:8]}  {alarm.time}  {alarm.describe_repeat():<22} {alarm.label}{suffix}"


class ConsoleCommandProcessor:
    """Turns console lines into alarm service calls.

    Destructive commands and the emergency restart ask for a ``y/N``
    confirmation; the answer is the next line handled.
    """

    def __init__(
        self,
        service: AlarmService,
        sound_library: SoundLibrary,
        *,
        restart: Callable[[], None] | None = None,
    ) -> None:
        self._service = service
        self._sounds = sound_library
        self._restart = restart
        self._pending: tuple[str, str] | None = None

    @property
    def awaiting_confirmation(self) -> bool:
        return self._pending is not None

    def request_emergency_restart(self) -> CommandResult:
        self._pending = ("restart", "")
        return CommandResult("Alarm audio would not stop. Restart the clock now? [y/N]", "error")

    async def handle(self, line: str) -> CommandResult:
        answer = line.strip().lower()
        if self._pending is not None and self._service.presenting is not None and answer in _ALERT_WORDS:
            LOGGER.debug("Dropping pending %s confirmation for a ringing alarm", self._pending[0])
            self._pending = None
        if self._pending is not None:
            return await self._confirm(answer)
        try:
            tokens = shlex.split(line)
        except ValueError as exc:
            return CommandResult(f"Could not parse command: {exc}", "error")
        if not tokens:
            return await self._stop()
        command, args = tokens[0].lower(), tokens[1:]
        try:
            return await self._dispatch(command, args)
        except (AlarmError, SoundError) as exc:
            return CommandResult(str(exc), "error")

    async def _dispatch(self, command: str, args: list[str]) -> CommandResult:
        if command in {"stop", "x"}:
            return await self._stop()
        if command in {"snooze", "s"}:
            derived = await self._service.snooze()
            if derived is None:
                return CommandResult()
            return CommandResult(f"Snoozed until {derived.time}")
        if command in {"list", "ls"}:
            return CommandResult(self._render_list())
        if command == "add":
            return await self._add(args)
        if command == "edit":
            return await self._edit(args)
        if command == "toggle":
            alarm = await self._service.toggle(self._resolve_id(args))
            return CommandResult(f"Alarm {alarm.alarm_id[:8]} {'enabled' if alarm.enabled else 'disabled'}")
        if command in {"delete", "rm"}:
            alarm = self._service.get(self._resolve_id(args))
            self._pending = ("delete", alarm.alarm_id)
            return CommandResult(f"Delete alarm {alarm.time} {alarm.label}? [y/N]", "warning")
        if command == "sound":
            return await self._sound(args)
        if command == "test-sound":
            engaged = await self._service.test_sound()
            return CommandResult(f"Sound test finished ({engaged or 'no output'})")
        if command in {"help", "?"}:
            return CommandResult(HELP_TEXT)
        if command in {"quit", "exit", "q"}:
            return CommandResult("Goodbye.", quit=True)
        return CommandResult(f"Unknown command: {command} (try 'help')", "warning")

    async def _confirm(self, answer: str) -> CommandResult:
        action, target = self._pending or ("", "")
        self._pending = None
        if answer not in _YES:
            return CommandResult("Cancelled.")
        if action == "delete":
            alarm = await self._service.delete(target)
            return CommandResult(f"Deleted alarm {alarm.time} {alarm.label}", "success")
        if action == "restart" and self._restart:
            LOGGER.warning("Emergency restart confirmed")
            self._restart()
        return CommandResult()

    async def _stop(self) -> CommandResult:
        alarm = await self._service.stop()
        if alarm is None:
            return CommandResult()
        return CommandResult(f"Stopped {alarm.label}")

    async def _add(self, args: list[str]) -> CommandResult:
        positional, options = _split_options(args)
        if not positional:
            raise ValidationError("Please select a time for the alarm.")
        time_value, label_words = positional[0], positional[1:]
        repeat_type, repeat_days = self._repeat_options(options, default="once")
        alarm = await self._service.add(
            time_value,
            " ".join(label_words) or None,
            repeat_type,
            repeat_days,
            custom_sound=options.get("sound"),
        )
        return CommandResult(f"Alarm set for {alarm.time} ({alarm.describe_repeat()}) [{alarm.alarm_id[:8]}]", "success")

    async def _edit(self, args: list[str]) -> CommandResult:
        positional, options = _split_options(args)
        alarm_id = self._resolve_id(positional[:1])
        fields: dict[str, Any] = {}
        if "time" in options:
            fields["time"] = options["time"]
        if "label" in options:
            fields["label"] = options["label"]
        elif len(positional) > 1:
            fields["label"] = " ".join(positional[1:])
        if "repeat" in options or "days" in options:
            current = self._service.get(alarm_id)
            fields["repeat_type"], fields["repeat_days"] = self._repeat_options(options, default=current.repeat_type)
        if "sound" in options:
            sound = options["sound"]
            fields["custom_sound"] = None if sound.lower() in {"none", "default", ""} else sound
        if not fields:
            raise ValidationError("Nothing to change")
        alarm = await self._service.edit(alarm_id, **fields)
        return CommandResult(f"Alarm updated: {alarm.time} ({alarm.describe_repeat()}) {alarm.label}", "success")

    @staticmethod
    def _repeat_options(options: dict[str, str], *, default: str) -> tuple[str, list[int]]:
        days = parse_day_tokens(options.get("days")) or []
        if "repeat" in options:
            repeat_type = options["repeat"].lower()
        elif "days" in options:
            repeat_type = "weekly"
        else:
            repeat_type = default
        if "days" in options and not days:
            raise ValidationError(f"Unrecognized days: {options['days']}")
        return repeat_type, days

    async def _sound(self, args: list[str]) -> CommandResult:
        sub = args[0].lower() if args else "list"
        if sub == "list":
            sounds = self._sounds.custom_sounds()
            if not sounds:
                return CommandResult("No custom sounds stored.")
            return CommandResult("\n".join(f"  {info.sound_ref}  {info.label}" for info in sounds))
        if sub == "add":
            if len(args) < 3:
                raise ValidationError("Usage: sound add NAME PATH")
            ref = self._sounds.import_file(Path(args[2]).expanduser(), name=args[1])
            return CommandResult(f"Stored sound {ref}", "success")
        if sub == "preview":
            if len(args) < 2:
                raise ValidationError("Usage: sound preview REF")
            engaged = await self._service.preview_sound(args[1])
            return CommandResult(f"Preview finished ({engaged or 'no output'})")
        raise ValidationError(f"Unknown sound command: {sub}")

    def _resolve_id(self, args: list[str]) -> str:
        if not args:
            raise ValidationError("An alarm id is required")
        prefix = args[0].lower()
        matches = [alarm.alarm_id for alarm in self._service.alarms if alarm.alarm_id.startswith(prefix)]
        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise NotFoundError(f"Alarm {prefix} not found")
        raise ValidationError(f"Alarm id {prefix} is ambiguous")

    def _render_list(self) -> str:
        sections = self._service.list_alarms()
        lines: list[str] = []
        for title, alarms in (("Ringing", sections.ringing), ("Active", sections.active), ("Inactive", sections.inactive)):
            if not alarms:
                continue
            lines.append(f"{title}:")
            lines.extend(format_alarm(alarm) for alarm in alarms)
        return "\n".join(lines) if lines else "No alarms set."
