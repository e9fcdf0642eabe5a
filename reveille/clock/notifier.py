"""User-facing alert surfaces: console banner, desktop notifications, fan-out."""

from __future__ import annotations

import logging
import shutil
import subprocess  # nosec B404 - notify-send helper
import sys
from collections.abc import Sequence
from typing import Literal, Protocol, TextIO

LOGGER = logging.getLogger("reveille.notifier")

ToastLevel = Literal["info", "success", "warning", "error"]

_ANSI_BACKGROUNDS = {
    "red": "\033[41m",
    "white": "\033[47m",
    "yellow": "\033[43m",
}
_ANSI_RESET = "\033[0m"
_CLEAR_LINE = "\r\033[2K"
_TOAST_PREFIX = {
    "info": "[i]",
    "success": "[ok]",
    "warning": "[!]",
    "error": "[x]",
}


class AlertSurface(Protocol):
    def present_alert(self, label: str, time: str) -> None: ...

    def clear_alert(self) -> None: ...

    def toast(self, message: str, level: ToastLevel = "info") -> None: ...

    def flash(self, color: str | None) -> None: ...


class ConsoleSurface:
    """Banner, toasts and background flash on a terminal."""

    def __init__(self, stream: TextIO | None = None, *, width: int | None = None, color: bool | None = None) -> None:
        self.stream = stream or sys.stdout
        self.width = width or shutil.get_terminal_size((60, 20)).columns
        self.color = self.stream.isatty() if color is None else color
        self.flashing: str | None = None

    def _write(self, text: str) -> None:
        self.stream.write(text)
        self.stream.flush()

    def present_alert(self, label: str, time: str) -> None:
        rule = "=" * min(self.width, 48)
        self._write(f"\a\n{rule}\n  ALARM  {time}  {label}\n  [Enter/x] stop   [s] snooze\n{rule}\n")

    def clear_alert(self) -> None:
        if self.flashing:
            self.flash(None)
        self._write("Alarm dismissed.\n")

    def toast(self, message: str, level: ToastLevel = "info") -> None:
        self._write(f"{_TOAST_PREFIX.get(level, '[i]')} {message}\n")

    def flash(self, color: str | None) -> None:
        self.flashing = color
        if not self.color:
            if color:
                self._write("\a")
            return
        if color is None:
            self._write(_CLEAR_LINE)
            return
        background = _ANSI_BACKGROUNDS.get(color, _ANSI_BACKGROUNDS["red"])
        self._write(f"{_CLEAR_LINE}{background}{' ' * self.width}{_ANSI_RESET}")


class DesktopNotifier:
    """OS notification through ``notify-send``; best effort only."""

    def __init__(self, *, app_name: str = "Reveille", command: str = "notify-send") -> None:
        self.app_name = app_name
        self.command = command

    @property
    def available(self) -> bool:
        return shutil.which(self.command) is not None

    def present_alert(self, label: str, time: str) -> None:
        self._notify(f"Alarm: {label}", f"It's {time}", urgency="critical")

    def clear_alert(self) -> None:
        return None

    def toast(self, message: str, level: ToastLevel = "info") -> None:
        if level in {"warning", "error"}:
            self._notify(self.app_name, message, urgency="normal")

    def flash(self, color: str | None) -> None:
        return None

    def _notify(self, summary: str, body: str, *, urgency: str) -> None:
        if not self.available:
            LOGGER.debug("%s not found; skipping desktop notification", self.command)
            return
        try:
            subprocess.Popen(  # nosec B603 - fixed command, user text passed as argv
                [self.command, "-a", self.app_name, "-u", urgency, summary, body],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            LOGGER.debug("Desktop notification failed: %s", exc)


class CompositeSurface:
    """Fan out to several surfaces.

    The first surface is primary and its failures propagate; failures in the
    others are logged and swallowed.
    """

    def __init__(self, primary: AlertSurface, secondary: Sequence[AlertSurface] = ()) -> None:
        self.primary = primary
        self.secondary = list(secondary)

    def add(self, surface: AlertSurface) -> None:
        self.secondary.append(surface)

    def present_alert(self, label: str, time: str) -> None:
        self.primary.present_alert(label, time)
        self._fan_out("present_alert", label, time)

    def clear_alert(self) -> None:
        self.primary.clear_alert()
        self._fan_out("clear_alert")

    def toast(self, message: str, level: ToastLevel = "info") -> None:
        self.primary.toast(message, level)
        self._fan_out("toast", message, level)

    def flash(self, color: str | None) -> None:
        self.primary.flash(color)
        self._fan_out("flash", color)

    def _fan_out(self, method: str, *args: object) -> None:
        for surface in self.secondary:
            try:
                getattr(surface, method)(*args)
            except Exception:
                LOGGER.warning("Alert surface %s failed in %s", type(surface).__name__, method, exc_info=True)
