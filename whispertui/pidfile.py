"""PID file helpers shared by the daemon and its clients."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .paths import get_pid_path

logger = logging.getLogger(__name__)


def is_pid_running(pid: int) -> bool:
    """Check if a process with the given PID is running."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)  # Signal 0 checks if process exists
    except PermissionError:
        return True  # exists, owned by another user
    except (OSError, ProcessLookupError):
        return False
    return True


def read_pid_file(pid_path: Path | None = None) -> int | None:
    """Return the PID recorded in the PID file, or None if absent or unparsable."""
    path = pid_path or get_pid_path()
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return None


def write_pid_file(pid_path: Path | None = None) -> None:
    path = pid_path or get_pid_path()
    path.write_text(str(os.getpid()))


def remove_pid_file(pid_path: Path | None = None) -> None:
    path = pid_path or get_pid_path()
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Error removing PID file: {e}")
