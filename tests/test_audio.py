"""Tests for tone synthesis and player selection (reveille/audio.py)."""

from __future__ import annotations

import io
import subprocess
import wave
from pathlib import Path
from unittest.mock import Mock

import pytest
from reveille import audio


def test_render_tone_sample_format(tmp_path: Path):
    path = audio.render_tone_sample(tmp_path / "nested" / "tone.wav")

    with wave.open(str(path), "rb") as wav_file:
        assert wav_file.getnchannels() == 1
        assert wav_file.getsampwidth() == 2
        assert wav_file.getframerate() == 44_100
        assert wav_file.getnframes() == 22_050
        frames = wav_file.readframes(wav_file.getnframes())
    peak = max(abs(int.from_bytes(frames[i : i + 2], "little", signed=True)) for i in range(0, len(frames), 2))
    assert peak <= int(0.3 * 32_767)
    assert peak > 9_000


def test_ensure_alarm_sample_renders_once(tmp_path: Path, monkeypatch):
    target = tmp_path / "alarm.wav"
    assert audio.ensure_alarm_sample(target) == target
    render = Mock()
    monkeypatch.setattr(audio, "render_tone_sample", render)

    assert audio.ensure_alarm_sample(target) == target
    render.assert_not_called()


def test_embedded_beep_is_valid_wav():
    with wave.open(io.BytesIO(audio.EMBEDDED_BEEP_WAV), "rb") as wav_file:
        assert wav_file.getsampwidth() == 1
        assert wav_file.getframerate() == 8_000
        assert wav_file.getnframes() == 1_200


def test_compressed_files_skip_aplay(monkeypatch):
    available = {"aplay", "ffplay"}
    monkeypatch.setattr(audio.shutil, "which", lambda name: name if name in available else None)

    assert audio.file_player_command(Path("song.mp3"), ("aplay",))[0] == "ffplay"
    assert audio.file_player_command(Path("tone.wav"), ("aplay", "ffplay")) == ["aplay", "-q", "tone.wav"]


def test_no_player_available(monkeypatch):
    monkeypatch.setattr(audio.shutil, "which", lambda name: None)
    assert audio.file_player_command(Path("tone.wav")) is None
    assert audio.stdin_player_command() is None


def test_stdin_player_command_ignores_unknown_players(monkeypatch):
    monkeypatch.setattr(audio.shutil, "which", lambda name: name)
    assert audio.stdin_player_command(("mpg123", "aplay")) == ["aplay", "-q", "-"]


def test_terminate_process_kills_stubborn_player():
    proc = Mock()
    proc.poll.return_value = None
    proc.wait.side_effect = [subprocess.TimeoutExpired("aplay", 0.1), 0]

    audio.terminate_process(proc, timeout=0.1)

    proc.terminate.assert_called_once()
    proc.kill.assert_called_once()


@pytest.mark.parametrize("proc", [None, Mock(poll=Mock(return_value=0))])
def test_terminate_process_ignores_finished(proc):
    audio.terminate_process(proc)
    if proc is not None:
        proc.terminate.assert_not_called()
