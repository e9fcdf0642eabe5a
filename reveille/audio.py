"""Audio helpers: tone synthesis and sample playback through system players."""

from __future__ import annotations

import io
import logging
import math
import os
import shutil
import subprocess  # nosec B404 - subprocess used for audio player processes
import wave
from collections.abc import Sequence
from pathlib import Path

_LOGGER = logging.getLogger("reveille.audio")

_ALARM_FILENAME = "reveille-alarm.wav"
SAMPLE_RATE = 44_100
TONE_FREQUENCY_HZ = 800
TONE_DURATION_SECONDS = 0.5
TONE_AMPLITUDE = 0.3
_MAX_AMPLITUDE = 32_767

# Minimal unsigned 8-bit beep: one 1 kHz cycle at 8 kHz, repeated.
_BEEP_CYCLE = bytes((128, 218, 255, 218, 128, 38, 0, 38))
_BEEP_SAMPLE_RATE = 8_000
_BEEP_CYCLES = 150

DEFAULT_PLAYERS: tuple[str, ...] = ("pw-play", "paplay", "aplay", "ffplay")

# Players that read WAV data from stdin, with the arguments needed to do so.
_STDIN_COMMANDS: dict[str, list[str]] = {
    "pw-play": ["pw-play", "-"],
    "paplay": ["paplay"],
    "aplay": ["aplay", "-q", "-"],
    "ffplay": ["ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet", "-i", "-"],
}
_COMPRESSED_PLAYERS = ("ffplay", "mpg123", "pw-play", "paplay")


def _runtime_env() -> dict[str, str]:
    env = os.environ.copy()
    env.setdefault("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
    return env


def alarm_sample_path() -> Path:
    runtime_dir = Path(_runtime_env()["XDG_RUNTIME_DIR"])
    return runtime_dir / _ALARM_FILENAME


def _write_tone(wav_file: wave.Wave_write, frequency: float, duration: float, amplitude: float) -> None:
    samples = max(1, int(SAMPLE_RATE * duration))
    peak = amplitude * _MAX_AMPLITUDE
    frames = bytearray()
    for i in range(samples):
        value = int(peak * math.sin(2 * math.pi * frequency * i / SAMPLE_RATE))
        frames += value.to_bytes(2, byteorder="little", signed=True)
    wav_file.writeframes(bytes(frames))


def render_tone_sample(
    destination: Path,
    *,
    frequency: float = TONE_FREQUENCY_HZ,
    duration: float = TONE_DURATION_SECONDS,
    amplitude: float = TONE_AMPLITUDE,
) -> Path:
    """Render the default alarm tone (mono 16-bit sine) to the provided path.

    Raises:
        OSError: the sample could not be written.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(destination), "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(SAMPLE_RATE)
        _write_tone(wav_file, frequency, duration, amplitude)
    return destination


def ensure_alarm_sample(destination: Path | None = None) -> Path:
    """Return the rendered alarm tone, rendering it on first use."""
    path = destination or alarm_sample_path()
    if path.exists():
        return path
    _LOGGER.debug("[audio] Rendering alarm tone at %s", path)
    return render_tone_sample(path)


def _build_embedded_beep() -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(1)
        wav_file.setframerate(_BEEP_SAMPLE_RATE)
        wav_file.writeframes(_BEEP_CYCLE * _BEEP_CYCLES)
    return buf.getvalue()


EMBEDDED_BEEP_WAV = _build_embedded_beep()


def find_player(players: Sequence[str] = DEFAULT_PLAYERS) -> str | None:
    """Return the first available audio player binary."""
    for candidate in players:
        if shutil.which(candidate):
            return candidate
    return None


def file_player_command(path: Path, players: Sequence[str] = DEFAULT_PLAYERS) -> list[str] | None:
    """Build a command line that plays ``path``; compressed formats prefer decoders."""
    ordered = list(players)
    if path.suffix.lower() != ".wav":
        # aplay only understands WAV
        ordered = [p for p in (*_COMPRESSED_PLAYERS, *players) if p != "aplay"]
    player = find_player(ordered)
    if not player:
        return None
    if player == "ffplay":
        return ["ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet", str(path)]
    if player == "mpg123":
        return ["mpg123", "-q", str(path)]
    if player == "aplay":
        return ["aplay", "-q", str(path)]
    return [player, str(path)]


def stdin_player_command(players: Sequence[str] = DEFAULT_PLAYERS) -> list[str] | None:
    """Build a command line for a player that reads WAV data from stdin."""
    player = find_player([p for p in players if p in _STDIN_COMMANDS])
    if not player:
        return None
    return list(_STDIN_COMMANDS[player])


def spawn_player(command: list[str], *, stdin_data: bytes | None = None) -> subprocess.Popen[bytes]:
    """Start a player process without waiting for it.

    Raises:
        OSError: the player binary could not be started.
    """
    proc = subprocess.Popen(  # nosec B603 - command built from a fixed player table
        command,
        stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        env=_runtime_env(),
    )
    if stdin_data is not None and proc.stdin:
        try:
            proc.stdin.write(stdin_data)
            proc.stdin.close()
        except BrokenPipeError:
            _LOGGER.debug("[audio] Player %s closed stdin early", command[0])
    return proc


def terminate_process(proc: subprocess.Popen[bytes] | None, *, timeout: float = 0.5) -> None:
    """Stop a player process; escalates to kill when terminate is ignored."""
    if proc is None or proc.poll() is not None:
        return
    try:
        proc.terminate()
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        _LOGGER.debug("[audio] Player pid=%s ignored terminate; killing", proc.pid)
        proc.kill()
        proc.wait(timeout=timeout)
    except ProcessLookupError:
        pass
