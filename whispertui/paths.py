"""XDG base directory paths for whispertui.

See https://specifications.freedesktop.org/basedir-spec/basedir-spec-latest.html
"""

from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "whispertui"


def _xdg_path(env_var: str, default: str) -> Path:
    value = os.getenv(env_var)
    if value:
        return Path(value)
    return Path.home() / default


def get_config_dir() -> Path:
    """XDG_CONFIG_HOME - user configuration files."""
    return _xdg_path("XDG_CONFIG_HOME", ".config") / APP_NAME


def get_state_dir() -> Path:
    """XDG_STATE_HOME - daemon socket, PID file and log."""
    return _xdg_path("XDG_STATE_HOME", ".local/state") / APP_NAME


def get_data_dir() -> Path:
    """XDG_DATA_HOME - transcription history."""
    return _xdg_path("XDG_DATA_HOME", ".local/share") / APP_NAME


def get_cache_dir() -> Path:
    """XDG_CACHE_HOME - temporary audio recordings."""
    return _xdg_path("XDG_CACHE_HOME", ".cache") / APP_NAME


def get_config_path() -> Path:
    return get_config_dir() / "config.json"


def get_socket_path() -> Path:
    return get_state_dir() / "whispertui.sock"


def get_pid_path() -> Path:
    return get_state_dir() / "daemon.pid"


def get_lock_path() -> Path:
    """Advisory lock taken by clients while auto-starting the daemon."""
    return get_state_dir() / "daemon.lock"


def get_log_path() -> Path:
    return get_state_dir() / "daemon.log"


def get_history_dir() -> Path:
    return get_data_dir() / "history"


def ensure_dir(path: Path) -> Path:
    """Create a directory (and parents) if it does not exist."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def ensure_all_dirs() -> None:
    for path in (
        get_config_dir(),
        get_state_dir(),
        get_data_dir(),
        get_cache_dir(),
        get_history_dir(),
    ):
        ensure_dir(path)
