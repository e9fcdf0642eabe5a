"""
Alarm sound playback with an ordered fallback chain

Playback is a list of strategies tried in priority order. Each strategy exposes
the same ``start(alarm) -> bool`` / ``stop()`` pair and reports whether it still
holds audio resources through ``active``. The player engages the first strategy
that starts and falls through to the next one when a strategy declines to start
or reports a failure later (a player process exiting with an error).

Default chain:

1. ``custom``     - loop the alarm's custom sound file through a player process
2. ``tone``       - synthesized 800 Hz / 44.1 kHz sample replayed every second
3. ``oscillator`` - sounddevice output stream with a pulsing gain envelope
4. ``beep``       - small embedded WAV piped to a player every two seconds
5. ``visual``     - terminal background flash, bounded, always available

``AlarmPlayer.stop()`` tears down every strategy regardless of which one is
engaged, then re-issues the teardown twice on short delays because players can
keep audio alive briefly after being told to stop. The delayed teardowns are
tied to a playback generation and cancelled when a new alarm starts, so they can
never silence a newer alarm.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess  # nosec B404 - player process handles
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np

from reveille import audio as reveille_audio
from reveille.sound_library import SoundLibrary

from .alarm import Alarm
from .errors import PlaybackFailure, TeardownFailure
from .timers import DeferredCalls, PeriodicTask

if TYPE_CHECKING:
    from .notifier import AlertSurface

LOGGER = logging.getLogger("reveille.playback")

DEFAULT_TEARDOWN_DELAYS: tuple[float, ...] = (0.1, 0.5)

FailureCallback = Callable[["PlaybackStrategy"], None]


class PlaybackStrategy(ABC):
    """One way of making an alarm audible (or visible)."""

    name: str = "strategy"

    def __init__(self) -> None:
        self._on_failure: FailureCallback | None = None

    def bind(self, on_failure: FailureCallback) -> None:
        """Register the callback used to report a failure after a successful start."""
        self._on_failure = on_failure

    @abstractmethod
    def start(self, alarm: Alarm) -> bool:
        """Begin playback. Returns False when this strategy is unavailable."""

    @abstractmethod
    def stop(self) -> None:
        """Release everything this strategy holds. Must be safe to call repeatedly."""

    @property
    @abstractmethod
    def active(self) -> bool:
        """True while the strategy still holds audio resources or timers."""

    def _report_failure(self, reason: str) -> None:
        LOGGER.info("Playback strategy %s failed: %s", self.name, reason)
        if self._on_failure:
            self._on_failure(self)


class _ProcessLoopStrategy(PlaybackStrategy):
    """Shared plumbing for strategies that replay a player process on a timer."""

    replay_interval: float = 1.0

    def __init__(self, *, players: Sequence[str]) -> None:
        super().__init__()
        self.players = tuple(players)
        self._proc: subprocess.Popen[bytes] | None = None
        self._loop_task: PeriodicTask | None = None

    @property
    def active(self) -> bool:
        proc_running = self._proc is not None and self._proc.poll() is None
        return proc_running or bool(self._loop_task and self._loop_task.running)

    def stop(self) -> None:
        if self._loop_task:
            self._loop_task.cancel()
            self._loop_task = None
        proc = self._proc
        self._proc = None
        reveille_audio.terminate_process(proc, timeout=0.2)

    def _spawn(self, command: list[str], stdin_data: bytes | None = None) -> None:
        try:
            self._proc = reveille_audio.spawn_player(command, stdin_data=stdin_data)
        except OSError as exc:
            raise PlaybackFailure(f"{command[0]}: {exc}") from exc

    def _start_loop(self, callback: Callable[[], Any]) -> None:
        self._loop_task = PeriodicTask(
            callback,
            self.replay_interval,
            name=f"reveille-playback-{self.name}",
            immediate=False,
        )
        self._loop_task.start()

    def _previous_failed(self) -> bool:
        proc = self._proc
        return proc is not None and proc.poll() not in (None, 0)


class CustomSoundStrategy(_ProcessLoopStrategy):
    """Loop the alarm's custom sound file until stopped."""

    name = "custom"
    replay_interval = 0.5

    def __init__(self, sound_library: SoundLibrary, *, players: Sequence[str]) -> None:
        super().__init__(players=players)
        self._library = sound_library
        self._command: list[str] | None = None

    def start(self, alarm: Alarm) -> bool:
        if not alarm.custom_sound:
            return False
        path = self._library.resolve(alarm.custom_sound)
        if path is None:
            LOGGER.warning("Custom sound %s is missing; using default alarm sound", alarm.custom_sound)
            return False
        command = reveille_audio.file_player_command(path, self.players)
        if not command:
            LOGGER.debug("No audio player can handle %s", path.name)
            return False
        try:
            self._spawn(command)
        except PlaybackFailure as exc:
            LOGGER.warning("Error playing custom sound: %s", exc)
            return False
        self._command = command
        self._start_loop(self._keep_looping)
        return True

    def _keep_looping(self) -> bool:
        proc = self._proc
        if proc is None or self._command is None:
            return False
        code = proc.poll()
        if code is None:
            return True
        if code != 0:
            self._report_failure(f"player exited with status {code}")
            return False
        try:
            self._spawn(self._command)
        except PlaybackFailure as exc:
            self._report_failure(str(exc))
            return False
        return True


class ToneStrategy(_ProcessLoopStrategy):
    """Replay the synthesized alarm tone once per interval."""

    name = "tone"

    def __init__(
        self,
        *,
        players: Sequence[str],
        sample_path: Path | None = None,
        interval: float = 1.0,
    ) -> None:
        super().__init__(players=players)
        self._sample_path = sample_path
        self.replay_interval = interval
        self._command: list[str] | None = None

    def start(self, alarm: Alarm) -> bool:
        try:
            sample = reveille_audio.ensure_alarm_sample(self._sample_path)
        except OSError as exc:
            LOGGER.debug("[audio] Unable to render alarm tone: %s", exc)
            return False
        command = reveille_audio.file_player_command(sample, self.players)
        if not command:
            LOGGER.debug("[audio] No audio player available for the alarm tone")
            return False
        try:
            self._spawn(command)
        except PlaybackFailure as exc:
            LOGGER.debug("[audio] Alarm tone failed to start: %s", exc)
            return False
        self._command = command
        self._start_loop(self._replay)
        return True

    def _replay(self) -> bool:
        if self._command is None:
            return False
        if self._previous_failed():
            self._report_failure("tone player exited with an error")
            return False
        reveille_audio.terminate_process(self._proc, timeout=0.2)
        try:
            self._spawn(self._command)
        except PlaybackFailure as exc:
            self._report_failure(str(exc))
            return False
        return True


def envelope_gain(offset: float, *, gain: float = 0.3) -> float:
    """Pulse envelope: full gain, a 100 ms gap starting at 0.1 s, then full gain again."""
    if 0.1 <= offset < 0.2:
        return 0.0
    return gain


class OscillatorStrategy(PlaybackStrategy):
    """Continuous sine oscillator through sounddevice, pulsed by a timer."""

    name = "oscillator"

    def __init__(
        self,
        *,
        frequency: float = 800.0,
        sweep_frequency: float = 600.0,
        sweep_after: float = 0.5,
        gain: float = 0.3,
        pulse_interval: float = 0.5,
        sample_rate: int = reveille_audio.SAMPLE_RATE,
    ) -> None:
        super().__init__()
        self.frequency = frequency
        self.sweep_frequency = sweep_frequency
        self.sweep_after = sweep_after
        self.gain = gain
        self.pulse_interval = pulse_interval
        self.sample_rate = sample_rate
        self._stream: Any = None
        self._pulse_task: PeriodicTask | None = None
        self._phase = 0.0
        self._frames_played = 0
        self._pulse_origin = 0.0

    @property
    def active(self) -> bool:
        return self._stream is not None or bool(self._pulse_task and self._pulse_task.running)

    def start(self, alarm: Alarm) -> bool:
        try:
            import sounddevice as sd
        except OSError as exc:
            # PortAudio shared library missing on this host
            LOGGER.debug("[audio] sounddevice unavailable: %s", exc)
            return False
        self._phase = 0.0
        self._frames_played = 0
        self._pulse_origin = time.monotonic()
        try:
            stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                callback=self._fill,
            )
            stream.start()
        except Exception as exc:
            LOGGER.debug("[audio] Oscillator stream failed: %s", exc)
            return False
        self._stream = stream
        self._pulse_task = PeriodicTask(self._pulse, self.pulse_interval, name="reveille-playback-pulse")
        self._pulse_task.start()
        return True

    def stop(self) -> None:
        if self._pulse_task:
            self._pulse_task.cancel()
            self._pulse_task = None
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()

    def _pulse(self) -> None:
        self._pulse_origin = time.monotonic()

    def render(self, frames: int) -> np.ndarray:
        """Produce the next ``frames`` samples, keeping phase continuous across blocks."""
        index = self._frames_played + np.arange(frames)
        freqs = np.where(index / self.sample_rate < self.sweep_after, self.frequency, self.sweep_frequency)
        phases = self._phase + 2 * np.pi * np.cumsum(freqs) / self.sample_rate
        self._phase = float(phases[-1] % (2 * np.pi)) if frames else self._phase
        self._frames_played += frames
        level = envelope_gain(time.monotonic() - self._pulse_origin, gain=self.gain)
        return (level * np.sin(phases)).astype(np.float32)

    def _fill(self, outdata: np.ndarray, frames: int, _time_info: Any, status: Any) -> None:
        if status:
            LOGGER.debug("[audio] Oscillator stream status: %s", status)
        outdata[:, 0] = self.render(frames)


class EmbeddedBeepStrategy(_ProcessLoopStrategy):
    """Pipe the embedded beep sample to a player on a timer."""

    name = "beep"

    def __init__(self, *, players: Sequence[str], interval: float = 2.0) -> None:
        super().__init__(players=players)
        self.replay_interval = interval
        self._command: list[str] | None = None

    def start(self, alarm: Alarm) -> bool:
        command = reveille_audio.stdin_player_command(self.players)
        if not command:
            return False
        try:
            self._spawn(command, reveille_audio.EMBEDDED_BEEP_WAV)
        except PlaybackFailure as exc:
            LOGGER.debug("[audio] Embedded beep failed: %s", exc)
            return False
        self._command = command
        self._start_loop(self._replay)
        return True

    def _replay(self) -> bool:
        if self._command is None:
            return False
        if self._previous_failed():
            self._report_failure("beep player exited with an error")
            return False
        reveille_audio.terminate_process(self._proc, timeout=0.2)
        try:
            self._spawn(self._command, reveille_audio.EMBEDDED_BEEP_WAV)
        except PlaybackFailure as exc:
            self._report_failure(str(exc))
            return False
        return True


class VisualAlertStrategy(PlaybackStrategy):
    """Flash the display between two colors; ends by itself after ``max_flashes``."""

    name = "visual"

    def __init__(
        self,
        surface: AlertSurface,
        *,
        interval: float = 0.5,
        max_flashes: int = 20,
        colors: tuple[str, str] = ("red", "white"),
    ) -> None:
        super().__init__()
        self._surface = surface
        self.interval = interval
        self.max_flashes = max_flashes
        self.colors = colors
        self.flashes = 0
        self._task: PeriodicTask | None = None

    @property
    def active(self) -> bool:
        return bool(self._task and self._task.running)

    def start(self, alarm: Alarm) -> bool:
        self.flashes = 0
        self._task = PeriodicTask(self._flash, self.interval, name="reveille-playback-visual")
        self._task.start()
        return True

    def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        self._surface.flash(None)

    def _flash(self) -> bool:
        if self.flashes >= self.max_flashes:
            self._surface.flash(None)
            return False
        self._surface.flash(self.colors[self.flashes % 2])
        self.flashes += 1
        return True


class AlarmPlayer:
    """Owns every audio resource used to present an alarm."""

    def __init__(
        self,
        strategies: Sequence[PlaybackStrategy],
        *,
        teardown_delays: Sequence[float] = DEFAULT_TEARDOWN_DELAYS,
    ) -> None:
        if not strategies:
            raise ValueError("At least one playback strategy is required")
        self.strategies = list(strategies)
        self.teardown_delays = tuple(teardown_delays)
        self._deferred = DeferredCalls()
        self._generation = 0
        self._alarm: Alarm | None = None
        self._engaged_index: int | None = None
        for strategy in self.strategies:
            strategy.bind(self._on_strategy_failure)

    def __enter__(self) -> AlarmPlayer:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    @property
    def playing(self) -> bool:
        return self._alarm is not None

    @property
    def engaged(self) -> str | None:
        if self._engaged_index is None:
            return None
        return self.strategies[self._engaged_index].name

    @property
    def pending_teardowns(self) -> int:
        return self._deferred.pending

    @property
    def holds_resources(self) -> bool:
        return any(strategy.active for strategy in self.strategies)

    def start(self, alarm: Alarm) -> str | None:
        """Start presenting ``alarm``; returns the name of the engaged strategy."""
        # Re-teardowns left over from the previous stop would cut this alarm off.
        self._deferred.cancel_all()
        self._teardown()
        self._generation += 1
        self._alarm = alarm
        return self._engage_from(0)

    def stop(self) -> None:
        """Stop all playback. Idempotent and safe when nothing is playing.

        Raises:
            TeardownFailure: a strategy still holds audio after teardown.
        """
        self._alarm = None
        self._deferred.cancel_all()
        self._teardown()
        generation = self._generation
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.debug("No running loop; skipping delayed teardown")
        else:
            for delay in self.teardown_delays:
                self._deferred.schedule(delay, self._deferred_teardown, generation)
        still_active = [strategy.name for strategy in self.strategies if strategy.active]
        if still_active:
            LOGGER.error("Audio still active after stop: %s", ", ".join(still_active))
            raise TeardownFailure(f"Playback did not stop: {', '.join(still_active)}")

    def close(self) -> None:
        """Release everything without scheduling delayed teardowns (shutdown path)."""
        self._alarm = None
        self._deferred.cancel_all()
        self._teardown()

    def _engage_from(self, index: int) -> str | None:
        alarm = self._alarm
        if alarm is None:
            return None
        for idx in range(index, len(self.strategies)):
            strategy = self.strategies[idx]
            try:
                started = strategy.start(alarm)
            except Exception:
                LOGGER.warning("Playback strategy %s raised on start", strategy.name, exc_info=True)
                started = False
            if started:
                self._engaged_index = idx
                LOGGER.info("Alarm %s playing via %s", alarm.alarm_id, strategy.name)
                return strategy.name
            self._stop_strategy(strategy)
            LOGGER.debug("Playback strategy %s unavailable; falling through", strategy.name)
        self._engaged_index = None
        LOGGER.error("Every playback strategy failed for alarm %s", alarm.alarm_id)
        return None

    def _on_strategy_failure(self, strategy: PlaybackStrategy) -> None:
        if self._alarm is None or self._engaged_index is None:
            return
        if self.strategies[self._engaged_index] is not strategy:
            return
        failed_index = self._engaged_index
        self._stop_strategy(strategy)
        self._engaged_index = None
        self._engage_from(failed_index + 1)

    def _deferred_teardown(self, generation: int) -> None:
        if generation != self._generation or self._alarm is not None:
            return
        LOGGER.debug("Delayed teardown (generation %d)", generation)
        self._teardown()

    def _teardown(self) -> None:
        for strategy in self.strategies:
            self._stop_strategy(strategy)
        self._engaged_index = None

    @staticmethod
    def _stop_strategy(strategy: PlaybackStrategy) -> None:
        try:
            strategy.stop()
        except Exception:
            LOGGER.warning("Failed to stop playback strategy %s", strategy.name, exc_info=True)


def default_strategies(
    *,
    sound_library: SoundLibrary,
    surface: AlertSurface,
    players: Sequence[str] = reveille_audio.DEFAULT_PLAYERS,
    tone_interval: float = 1.0,
    beep_interval: float = 2.0,
    flash_interval: float = 0.5,
    max_flashes: int = 20,
) -> list[PlaybackStrategy]:
    """Build the standard fallback chain in priority order."""
    return [
        CustomSoundStrategy(sound_library, players=players),
        ToneStrategy(players=players, interval=tone_interval),
        OscillatorStrategy(),
        EmbeddedBeepStrategy(players=players, interval=beep_interval),
        VisualAlertStrategy(surface, interval=flash_interval, max_flashes=max_flashes),
    ]
