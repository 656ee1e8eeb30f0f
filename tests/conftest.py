"""Pytest configuration and fixtures for whispertui tests."""
import shutil
import stat
import subprocess
import sys
import tempfile
import wave
from pathlib import Path

import numpy as np
import pytest


# Stand-in for parecord. Streams a WAV file with a placeholder RIFF size and
# patches the real size in on SIGTERM, like parecord does.
# FAKE_PARECORD_MODE: normal | ignore-term | crash | nofile | empty
FAKE_PARECORD = '''#!{python}
import math
import os
import signal
import struct
import sys
import time

mode = os.environ.get("FAKE_PARECORD_MODE", "normal")
path = sys.argv[-1]

args_file = os.environ.get("FAKE_PARECORD_ARGS")
if args_file:
    with open(args_file, "w") as f:
        f.write("\\n".join(sys.argv[1:]))

if mode == "crash":
    sys.stderr.write("Connection failure: Connection refused\\n")
    sys.exit(1)

stopping = False


def on_term(signum, frame):
    global stopping
    stopping = True


if mode == "ignore-term":
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
else:
    signal.signal(signal.SIGTERM, on_term)

if mode == "nofile":
    while not stopping:
        time.sleep(0.01)
    sys.exit(0)

out = open(path, "wb")
if mode == "empty":
    out.close()
    while not stopping:
        time.sleep(0.01)
    sys.exit(0)

rate = 16000
out.write(b"RIFF" + struct.pack("<I", 0x7FFFFFFF) + b"WAVE")
out.write(b"fmt " + struct.pack("<IHHIIHH", 16, 1, 1, rate, rate * 2, 2, 16))
out.write(b"data" + struct.pack("<I", 0x7FFFFFFF))
out.flush()

chunk = b"".join(
    struct.pack("<h", int(8000 * math.sin(2 * math.pi * 440 * i / rate)))
    for i in range(1600)
)
while not stopping:
    out.write(chunk)
    out.flush()
    time.sleep(0.01)

size = out.tell()
out.seek(4)
out.write(struct.pack("<I", size - 8))
out.seek(40)
out.write(struct.pack("<I", size - 44))
out.close()
sys.exit(0)
'''


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    """Point every XDG directory at a throwaway location.

    The state dir lives directly under /tmp so the socket path stays well
    below the AF_UNIX path length limit.
    """
    state_home = Path(tempfile.mkdtemp(prefix="wt-"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_STATE_HOME", str(state_home))
    monkeypatch.delenv("FAKE_PARECORD_MODE", raising=False)
    yield tmp_path
    shutil.rmtree(state_home, ignore_errors=True)


@pytest.fixture
def fake_parecord(tmp_path):
    """Path to an executable fake parecord script."""
    script = tmp_path / "parecord"
    script.write_text(FAKE_PARECORD.replace("{python}", sys.executable))
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture
def sample_rate():
    """Standard sample rate for audio tests."""
    return 16000


@pytest.fixture
def valid_audio(sample_rate):
    """Generate valid audio with speech-like characteristics."""
    duration = 1.0
    t = np.linspace(0, duration, int(sample_rate * duration))
    # Mix of frequencies to simulate speech
    audio = (
        np.sin(2 * np.pi * 200 * t) * 0.2 +
        np.sin(2 * np.pi * 400 * t) * 0.15 +
        np.sin(2 * np.pi * 800 * t) * 0.1
    )
    return audio.astype(np.float32)


@pytest.fixture
def silent_audio(sample_rate):
    """Generate silent audio."""
    duration = 1.0
    return np.zeros(int(sample_rate * duration), dtype=np.float32)


@pytest.fixture
def short_audio(sample_rate):
    """Generate audio that's too short."""
    duration = 0.2  # Below MIN_AUDIO_DURATION_SECONDS
    t = np.linspace(0, duration, int(sample_rate * duration))
    audio = np.sin(2 * np.pi * 440 * t) * 0.3
    return audio.astype(np.float32)


@pytest.fixture
def quiet_audio(sample_rate):
    """Generate audio that's too quiet."""
    duration = 1.0
    t = np.linspace(0, duration, int(sample_rate * duration))
    audio = np.sin(2 * np.pi * 440 * t) * 0.005  # Below MIN_AUDIO_AMPLITUDE
    return audio.astype(np.float32)


def write_wav(path, audio, sample_rate=16000):
    """Write float32 samples in [-1, 1] as a 16-bit mono WAV file."""
    audio_int16 = (audio * 32767).astype(np.int16)
    with wave.open(str(path), "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)  # 16-bit = 2 bytes per sample
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(audio_int16.tobytes())
    return path


@pytest.fixture
def speech_wav(tmp_path, valid_audio, sample_rate):
    return write_wav(tmp_path / "speech.wav", valid_audio, sample_rate)


@pytest.fixture
def silent_wav(tmp_path, silent_audio, sample_rate):
    return write_wav(tmp_path / "silent.wav", silent_audio, sample_rate)


@pytest.fixture
def short_wav(tmp_path, short_audio, sample_rate):
    return write_wav(tmp_path / "short.wav", short_audio, sample_rate)


class FakeRun:
    """Records subprocess.run calls and answers with a canned result.

    ``result`` may be an exception instance to raise instead.
    """

    def __init__(self):
        self.calls = []
        self.returncode = 0
        self.stdout = b""
        self.stderr = b""
        self.result = None

    def __call__(self, args, **kwargs):
        self.calls.append((args, kwargs))
        if isinstance(self.result, BaseException):
            raise self.result
        stdout, stderr = self.stdout, self.stderr
        if kwargs.get("text"):
            stdout, stderr = stdout.decode(), stderr.decode()
        return subprocess.CompletedProcess(args, self.returncode, stdout, stderr)

    @property
    def args(self):
        return self.calls[-1][0]

    @property
    def kwargs(self):
        return self.calls[-1][1]


@pytest.fixture
def fake_run(monkeypatch):
    """Replace subprocess.run for modules that shell out to desktop tools."""
    fake = FakeRun()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (require API keys)")
    config.addinivalue_line("markers", "slow: Slow tests")
