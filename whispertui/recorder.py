"""Audio recording via a ``parecord`` subprocess.

The recorder owns at most one capture process at a time. Audio streams
straight into a WAV file in the cache directory; ``stop()`` terminates the
process and waits until parecord has finalized the RIFF header before handing
the file to the transcriber.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import struct
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .config import AudioConfig
from .errors import (
    AlreadyRecordingError,
    NotRecordingError,
    ParecordNotFoundError,
    RecordingError,
    RecordingFileError,
)
from .paths import ensure_dir, get_cache_dir

logger = logging.getLogger(__name__)

PARECORD = "parecord"

MAX_RECORDING_DURATION = 300  # Safety stop in seconds
STOP_GRACE_PERIOD = 2.0  # Seconds between SIGTERM and SIGKILL
WAV_VERIFY_TIMEOUT = 0.5
WAV_VERIFY_INTERVAL = 0.02
RIFF_HEADER_SIZE = 12


@dataclass
class RecordingState:
    is_recording: bool
    audio_path: Path | None = None
    started_at: float | None = None
    duration: float = 0.0


@dataclass
class RecordingHandle:
    process: asyncio.subprocess.Process
    path: Path
    started_at: float
    wall_started_at: float
    timer: asyncio.TimerHandle | None = None
    stopping: bool = False


def verify_wav_complete(path: Path) -> bool:
    """Check that the RIFF header agrees with the bytes on disk.

    parecord writes a placeholder size while streaming and patches the real
    size in when it exits, so a consistent header means the file is final.
    """
    try:
        with open(path, "rb") as f:
            header = f.read(RIFF_HEADER_SIZE)
            if len(header) < RIFF_HEADER_SIZE:
                return False
            if header[0:4] != b"RIFF" or header[8:12] != b"WAVE":
                return False
            declared = struct.unpack("<I", header[4:8])[0] + 8
            actual = os.fstat(f.fileno()).st_size
    except OSError:
        return False
    return declared <= actual


async def ensure_wav_complete(
    path: Path,
    max_wait: float = WAV_VERIFY_TIMEOUT,
    interval: float = WAV_VERIFY_INTERVAL,
) -> bool:
    """Flush the file to disk and poll until its header is consistent.

    Returns:
        True once the header checks out, False if ``max_wait`` elapsed first.
    """
    try:
        fd = os.open(path, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError as e:
        logger.debug(f"fsync failed for {path}: {e}")

    loop = asyncio.get_running_loop()
    deadline = loop.time() + max_wait
    while True:
        if verify_wav_complete(path):
            return True
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(interval)


def cleanup_old_recordings(max_age: float = 3600, cache_dir: Path | None = None) -> int:
    """Delete leftover ``recording-*.wav`` files older than ``max_age`` seconds.

    Returns:
        Number of files removed.
    """
    directory = cache_dir or get_cache_dir()
    if not directory.exists():
        return 0

    cutoff = time.time() - max_age
    removed = 0
    for path in directory.glob("recording-*.wav"):
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
        except OSError as e:
            logger.debug(f"Could not remove old recording {path}: {e}")

    if removed:
        logger.info(f"Removed {removed} old recording(s) from {directory}")
    return removed


class AudioRecorder:
    """Starts, stops and aborts a single parecord capture.

    Args:
        config: Audio settings (device, sample rate, max duration).
        max_duration: Safety stop in seconds, defaults to ``config.max_duration``.
        cache_dir: Where recordings are written.
        on_max_duration: Called instead of ``stop()`` when the safety timer
            fires, so the owner can run its normal stop flow.
        on_unexpected_exit: Called with an error message when parecord dies
            on its own.
        binary: Capture executable, ``parecord`` unless overridden.
        grace_period: Seconds to wait after SIGTERM before SIGKILL.
    """

    def __init__(
        self,
        config: AudioConfig | None = None,
        max_duration: float | None = None,
        cache_dir: Path | None = None,
        on_max_duration: Callable[[], None] | None = None,
        on_unexpected_exit: Callable[[str], None] | None = None,
        binary: str = PARECORD,
        grace_period: float = STOP_GRACE_PERIOD,
    ) -> None:
        self.config = config or AudioConfig()
        self.max_duration = max_duration if max_duration is not None else self.config.max_duration
        self.cache_dir = cache_dir
        self.on_max_duration = on_max_duration
        self.on_unexpected_exit = on_unexpected_exit
        self.binary = binary
        self.grace_period = grace_period

        self._handle: RecordingHandle | None = None
        self._starting = False
        self._last_stamp = 0
        self._counter = 0
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_recording(self) -> bool:
        return self._handle is not None

    @property
    def audio_path(self) -> Path | None:
        return self._handle.path if self._handle else None

    def get_state(self) -> RecordingState:
        handle = self._handle
        if handle is None:
            return RecordingState(is_recording=False)
        return RecordingState(
            is_recording=True,
            audio_path=handle.path,
            started_at=handle.wall_started_at,
            duration=time.monotonic() - handle.started_at,
        )

    def build_args(self, path: Path) -> list[str]:
        args = []
        if self.config.device and self.config.device != "default":
            args.append(f"--device={self.config.device}")
        args.extend(
            [
                "--file-format=wav",
                f"--rate={self.config.sample_rate}",
                "--channels=1",
                "--format=s16le",
                str(path),
            ]
        )
        return args

    def _allocate_path(self, directory: Path) -> Path:
        stamp = time.time_ns() // 1_000_000
        if stamp <= self._last_stamp:
            stamp = self._last_stamp
            self._counter += 1
        else:
            self._counter = 0
        self._last_stamp = stamp

        while True:
            suffix = f"-{self._counter}" if self._counter else ""
            path = directory / f"recording-{stamp}{suffix}.wav"
            if not path.exists():
                return path
            self._counter += 1

    async def start(self) -> Path:
        """Spawn parecord and return the file it records into.

        Raises:
            AlreadyRecordingError: If a recording is active or starting.
            ParecordNotFoundError: If parecord is not installed.
            RecordingError: If the process could not be spawned.
        """
        if self._handle is not None or self._starting:
            raise AlreadyRecordingError()

        self._starting = True
        try:
            directory = ensure_dir(self.cache_dir or get_cache_dir())
            path = self._allocate_path(directory)
            args = self.build_args(path)
            logger.debug(f"Spawning {self.binary} {' '.join(args)}")
            try:
                process = await asyncio.create_subprocess_exec(
                    self.binary,
                    *args,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError as e:
                raise ParecordNotFoundError() from e
            except OSError as e:
                raise RecordingError(f"Failed to start recording: {e}") from e
        finally:
            self._starting = False

        loop = asyncio.get_running_loop()
        handle = RecordingHandle(
            process=process,
            path=path,
            started_at=time.monotonic(),
            wall_started_at=time.time(),
        )
        if self.max_duration and self.max_duration > 0:
            handle.timer = loop.call_later(self.max_duration, self._max_duration_reached, handle)
        self._handle = handle
        self._spawn(self._watch(handle))

        logger.info(f"Recording started: {path} (pid {process.pid})")
        return path

    async def stop(self) -> Path:
        """Stop the capture and return the verified recording.

        Raises:
            NotRecordingError: If nothing is being recorded.
            RecordingFileError: If the file is missing or empty.
        """
        handle = self._handle
        if handle is None or handle.stopping:
            raise NotRecordingError()

        handle.stopping = True
        self._cancel_timer(handle)
        process = handle.process

        try:
            self._signal(process, signal.SIGTERM)
            try:
                await asyncio.wait_for(process.wait(), timeout=self.grace_period)
            except asyncio.TimeoutError:
                logger.warning(
                    f"parecord did not exit {self.grace_period:g}s after SIGTERM, sending SIGKILL"
                )
                self._signal(process, signal.SIGKILL)
                await process.wait()
        finally:
            if process.returncode is None:
                self._signal(process, signal.SIGKILL)
            self._clear(handle)

        duration = time.monotonic() - handle.started_at
        logger.info(f"Recording stopped after {duration:.1f}s")
        return await self._verify_output(handle.path)

    def abort(self) -> None:
        """Kill the capture immediately and discard the file. Never raises."""
        handle = self._handle
        if handle is None:
            return

        handle.stopping = True
        self._cancel_timer(handle)
        self._signal(handle.process, signal.SIGKILL)
        self._clear(handle)

        try:
            handle.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not delete aborted recording {handle.path}: {e}")

        logger.info("Recording aborted")

    async def _verify_output(self, path: Path) -> Path:
        if not path.exists():
            raise RecordingFileError("Recording file not created")

        if path.stat().st_size == 0:
            try:
                path.unlink()
            except OSError as e:
                logger.debug(f"Could not delete empty recording {path}: {e}")
            raise RecordingFileError("Recording file is empty")

        if not await ensure_wav_complete(path):
            logger.warning(f"WAV header of {path} still incomplete, using file as-is")

        return path

    async def _watch(self, handle: RecordingHandle) -> None:
        process = handle.process
        stderr = b""
        if process.stderr is not None:
            stderr = await process.stderr.read()
        code = await process.wait()

        if self._handle is not handle or handle.stopping:
            return

        self._cancel_timer(handle)
        self._clear(handle)
        message = stderr.decode(errors="replace").strip() or f"parecord exited with code {code}"
        logger.error(f"Recording process exited unexpectedly: {message}")
        if self.on_unexpected_exit is not None:
            self.on_unexpected_exit(message)

    def _max_duration_reached(self, handle: RecordingHandle) -> None:
        handle.timer = None
        if self._handle is not handle or handle.stopping:
            return

        logger.warning(f"Maximum recording duration ({self.max_duration:g}s) reached, stopping")
        if self.on_max_duration is not None:
            self.on_max_duration()
        else:
            self._spawn(self._stop_after_timeout())

    async def _stop_after_timeout(self) -> None:
        try:
            await self.stop()
        except RecordingError as e:
            logger.error(f"Automatic stop failed: {e}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _clear(self, handle: RecordingHandle) -> None:
        if self._handle is handle:
            self._handle = None

    @staticmethod
    def _cancel_timer(handle: RecordingHandle) -> None:
        if handle.timer is not None:
            handle.timer.cancel()
            handle.timer = None

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, sig: int) -> None:
        if process.returncode is not None:
            return
        try:
            process.send_signal(sig)
        except ProcessLookupError:
            pass
