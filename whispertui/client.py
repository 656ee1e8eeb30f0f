"""Client side of the daemon control socket.

Each call opens a fresh connection, sends one request line and reads one
response line. ``ensure_daemon_running`` starts a daemon in the background
when none answers, serialized across processes by an flock on
``daemon.lock`` so concurrent callers end up with a single daemon.
"""

from __future__ import annotations

import fcntl
import json
import logging
import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Any

from .errors import (
    ConnectionClosedError,
    ConnectionTimeoutError,
    DaemonError,
    DaemonNotRunningError,
    DaemonStartError,
    InvalidResponseError,
)
from .paths import ensure_dir, get_lock_path, get_log_path, get_socket_path
from .pidfile import is_pid_running, read_pid_file

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
PING_TIMEOUT = 1.0
DEFAULT_READY_TIMEOUT = 10.0
READY_POLL_INTERVAL = 0.1


def send_command(
    command: str,
    timeout: float = DEFAULT_TIMEOUT,
    socket_path: Path | None = None,
    **fields: Any,
) -> dict:
    """
    Send one command to the daemon and return its response.

    Args:
        command: Daemon command (start, stop, status, shutdown, ping)
        timeout: Seconds allowed for connecting and receiving the response
        socket_path: Control socket, defaults to the XDG state dir socket
        **fields: Extra request fields, e.g. ``silent=True``

    Raises:
        DaemonNotRunningError: If no daemon is listening
        ConnectionTimeoutError: If the daemon does not answer in time
        ConnectionClosedError: If the daemon hangs up before answering
        InvalidResponseError: If the response is not a JSON object
    """
    path = socket_path or get_socket_path()
    if not path.exists():
        raise DaemonNotRunningError()

    request = json.dumps({"command": command, **fields}) + "\n"
    deadline = time.monotonic() + timeout
    buffer = b""

    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            sock.connect(str(path))
            sock.sendall(request.encode("utf-8"))

            while b"\n" not in buffer:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise socket.timeout()
                sock.settimeout(remaining)
                chunk = sock.recv(4096)
                if not chunk:
                    raise ConnectionClosedError()
                buffer += chunk
    except (ConnectionRefusedError, FileNotFoundError) as e:
        raise DaemonNotRunningError() from e
    except socket.timeout as e:
        raise ConnectionTimeoutError(timeout) from e
    except (ConnectionResetError, BrokenPipeError) as e:
        raise ConnectionClosedError() from e
    except OSError as e:
        raise DaemonError(f"Failed to talk to daemon: {e}") from e

    line = buffer.split(b"\n", 1)[0]
    raw = line.decode("utf-8", errors="replace")
    try:
        response = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidResponseError(raw) from e
    if not isinstance(response, dict):
        raise InvalidResponseError(raw)
    return response


def is_daemon_running(timeout: float = PING_TIMEOUT, socket_path: Path | None = None) -> bool:
    """Ping the daemon. Never raises."""
    try:
        response = send_command("ping", timeout=timeout, socket_path=socket_path)
    except DaemonError:
        return False
    return response.get("success") is True


def is_daemon_starting(pid_path: Path | None = None) -> bool:
    """True when the PID file names a live process whose socket may not be up yet."""
    pid = read_pid_file(pid_path)
    return pid is not None and is_pid_running(pid)


def spawn_daemon(log_path: Path | None = None) -> int:
    """
    Start ``python -m whispertui daemon`` detached from this process.

    Output goes to the daemon log file.

    Returns:
        PID of the spawned daemon

    Raises:
        DaemonStartError: If the process could not be spawned
    """
    log_path = log_path or get_log_path()
    ensure_dir(log_path.parent)
    try:
        with open(log_path, "ab") as log_file:
            process = subprocess.Popen(
                [sys.executable, "-m", "whispertui", "daemon"],
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=log_file,
                start_new_session=True,
                close_fds=True,
            )
    except OSError as e:
        raise DaemonStartError(f"Failed to spawn daemon: {e}") from e

    logger.info(f"Spawned daemon (PID {process.pid}), logging to {log_path}")
    return process.pid


def wait_for_daemon(
    ready_timeout: float = DEFAULT_READY_TIMEOUT,
    poll_interval: float = READY_POLL_INTERVAL,
    socket_path: Path | None = None,
) -> None:
    """
    Poll until the daemon answers a ping.

    Raises:
        DaemonStartError: If it is not ready within ``ready_timeout`` seconds
    """
    deadline = time.monotonic() + ready_timeout
    while True:
        if is_daemon_running(socket_path=socket_path):
            return
        if time.monotonic() >= deadline:
            raise DaemonStartError(
                f"Daemon did not become ready within {ready_timeout:g}s. "
                f"Check {get_log_path()} for details"
            )
        time.sleep(poll_interval)


def ensure_daemon_running(
    ready_timeout: float = DEFAULT_READY_TIMEOUT,
    socket_path: Path | None = None,
    pid_path: Path | None = None,
    lock_path: Path | None = None,
) -> bool:
    """
    Make sure a daemon is answering, starting one if needed.

    Returns:
        True if this call spawned the daemon, False if one was already there

    Raises:
        DaemonStartError: If the daemon could not be started or never became ready
    """
    if is_daemon_running(socket_path=socket_path):
        return False

    lock_path = lock_path or get_lock_path()
    ensure_dir(lock_path.parent)
    with open(lock_path, "a") as lock_file:
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
        try:
            # Another caller may have started it while we waited for the lock
            if is_daemon_running(socket_path=socket_path):
                return False

            if is_daemon_starting(pid_path):
                logger.debug("Daemon is starting, waiting for it")
                wait_for_daemon(ready_timeout, socket_path=socket_path)
                return False

            spawn_daemon()
            wait_for_daemon(ready_timeout, socket_path=socket_path)
            return True
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


def send_command_with_auto_start(
    command: str,
    timeout: float = DEFAULT_TIMEOUT,
    ready_timeout: float = DEFAULT_READY_TIMEOUT,
    **fields: Any,
) -> tuple[dict, bool]:
    """Start the daemon if needed, then send ``command``.

    Returns:
        Tuple of (response, was_auto_started)
    """
    was_auto_started = ensure_daemon_running(ready_timeout)
    response = send_command(command, timeout=timeout, **fields)
    return response, was_auto_started


def format_response(response: dict) -> str:
    """Render a daemon response for the terminal."""
    if not response.get("success"):
        return f"Error: {response.get('error') or 'Unknown error'}"

    parts = []
    if response.get("message"):
        parts.append(response["message"])
    if response.get("state"):
        parts.append(f"State: {response['state']}")

    context = response.get("context") or {}
    if context.get("lastTranscription"):
        parts.extend(["", "Transcription:", context["lastTranscription"], "", "(Copied to clipboard)"])
    if context.get("lastError"):
        parts.append(f"Last error: {context['lastError']}")
    window = context.get("currentWindow")
    if window:
        parts.append(f"Window: {window.get('windowClass')} - {window.get('windowTitle')}")
    if response.get("audioPath"):
        parts.append(f"Audio: {response['audioPath']}")

    return "\n".join(parts) or "OK"
