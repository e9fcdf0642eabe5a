"""Console alarm clock: wires the service, ticker, surfaces and keyboard input."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import signal
import sys
from typing import TextIO

from reveille.sound_library import SoundLibrary

from .alarm_service import AlarmService
from .commands import CommandResult, ConsoleCommandProcessor
from .config import ClockConfig
from .errors import TeardownFailure
from .mqtt import ClockMqtt, MqttNotifier
from .notifier import CompositeSurface, ConsoleSurface, DesktopNotifier
from .persistence import AlarmRepository
from .playback import AlarmPlayer, default_strategies
from .scheduler import ClockTicker
from .session import SessionStore

LOGGER = logging.getLogger("reveille.app")


def emergency_restart() -> None:
    """Replace the running process with a fresh copy of itself."""
    LOGGER.warning("Restarting %s", sys.argv[0])
    sys.stdout.flush()
    os.execv(sys.executable, [sys.executable, *sys.argv])  # nosec B606 - re-exec of this program


class ReveilleClock:
    def __init__(self, config: ClockConfig, *, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self.config = config
        self._stdin = stdin or sys.stdin
        self.console = ConsoleSurface(stdout)
        self.surface = CompositeSurface(self.console)
        if config.desktop_notifications:
            self.surface.add(DesktopNotifier())
        self.mqtt = ClockMqtt(config.mqtt)
        self.mqtt_notifier: MqttNotifier | None = None
        if config.mqtt.host:
            self.mqtt_notifier = MqttNotifier(self.mqtt)
            self.surface.add(self.mqtt_notifier)
        self.sounds = SoundLibrary(custom_dir=config.sounds_dir)
        self.player = AlarmPlayer(
            default_strategies(
                sound_library=self.sounds,
                surface=self.surface,
                players=config.audio_players,
            ),
            teardown_delays=config.teardown_delays,
        )
        self.service = AlarmService(
            repository=AlarmRepository(
                cache_dir=config.cache_dir,
                api_base_url=config.api_base_url,
                timeout=config.api_timeout,
            ),
            session_store=SessionStore(config.session_file),
            player=self.player,
            surface=self.surface,
            sound_library=self.sounds,
            snooze_minutes=config.snooze_minutes,
            state_listener=self.mqtt_notifier.publish_alarms if self.mqtt_notifier else None,
            on_teardown_failure=self._on_teardown_failure,
        )
        self.commands = ConsoleCommandProcessor(self.service, self.sounds, restart=self._restart)
        self.ticker = ClockTicker(self.service.tick, interval=config.tick_seconds)
        self._quit = asyncio.Event()

    def _on_teardown_failure(self, _exc: TeardownFailure) -> None:
        self._show(self.commands.request_emergency_restart())

    def _restart(self) -> None:
        self.player.close()
        self.mqtt.disconnect()
        emergency_restart()

    def _show(self, result: CommandResult) -> None:
        if not result.message:
            return
        if result.level == "info":
            self.console.stream.write(result.message + "\n")
            self.console.stream.flush()
        else:
            self.console.toast(result.message, result.level)

    def request_quit(self) -> None:
        self._quit.set()

    async def run(self) -> None:
        self.mqtt.connect()
        self.sounds.ensure_custom_dir()
        signed_in = await self.service.start()
        if signed_in and self.service.user:
            self.console.toast(f"Signed in as {self.service.user.display_name}", "info")
        self.ticker.start()
        self.console.toast("Reveille running. Type 'help' for commands.", "info")
        input_task = asyncio.create_task(self._read_commands(), name="reveille-input")
        try:
            await self._quit.wait()
        finally:
            input_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await input_task

    async def _read_commands(self) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), self._stdin)
        while not self._quit.is_set():
            raw = await reader.readline()
            if not raw:
                LOGGER.debug("Console input closed")
                self.request_quit()
                return
            result = await self.commands.handle(raw.decode("utf-8", errors="ignore").rstrip("\n"))
            self._show(result)
            if result.quit:
                self.request_quit()

    async def shutdown(self) -> None:
        self.ticker.stop()
        try:
            await self.service.stop()
        except Exception:
            LOGGER.warning("Failed to stop the ringing alarm during shutdown", exc_info=True)
        await self.service.close()
        self.mqtt.disconnect()


async def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Reveille console alarm clock")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    config = ClockConfig.from_env()
    level = (args.log_level or config.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    clock = ReveilleClock(config)
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        clock.request_quit()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    try:
        await clock.run()
    finally:
        await clock.shutdown()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
