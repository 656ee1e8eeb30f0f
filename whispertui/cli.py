"""Command-line front-end.

    whispertui toggle      # bind this to a hotkey
    whispertui daemon      # run the daemon in the foreground
"""

from __future__ import annotations

import logging
import sys

from dotenv import load_dotenv

from . import __version__
from .client import format_response, send_command, send_command_with_auto_start
from .config import format_config, is_debug_mode, load_config
from .errors import (
    ConfigurationError,
    ConnectionTimeoutError,
    DaemonError,
    DaemonNotRunningError,
)

logger = logging.getLogger(__name__)

USAGE = f"""WhisperTUI {__version__} - voice dictation for Wayland

Usage: whispertui <command> [args]

Commands:
  start          Start recording (starts the daemon if needed)
  stop           Stop recording and transcribe
  toggle         Start or stop recording
  status         Show daemon state and last transcription
  shutdown       Stop the daemon
  daemon         Run the daemon in the foreground
  config         Show the effective configuration and paths
  history [N]    Show the N most recent transcriptions (default 10)
  doctor         Check dependencies and environment

Options:
  -h, --help     Show this help
  -v, --version  Show version
"""

AUTO_START_COMMANDS = ("start", "stop", "status", "toggle")


def _print_connection_error(e: DaemonError) -> None:
    print(f"Error: {e}", file=sys.stderr)
    if isinstance(e, DaemonNotRunningError):
        print("Start the daemon with: whispertui daemon", file=sys.stderr)
    elif isinstance(e, ConnectionTimeoutError):
        print(
            "Restart it with: whispertui shutdown && whispertui daemon",
            file=sys.stderr,
        )


def cmd_client(command: str) -> int:
    try:
        if command == "toggle":
            status, auto_started = send_command_with_auto_start("status")
            command = "stop" if status.get("state") == "recording" else "start"
            response = send_command(command)
        else:
            response, auto_started = send_command_with_auto_start(command)
    except DaemonError as e:
        _print_connection_error(e)
        return 1

    if auto_started:
        print("Daemon started")
    print(format_response(response))
    return 0 if response.get("success") else 1


def cmd_shutdown() -> int:
    try:
        response = send_command("shutdown")
    except DaemonNotRunningError:
        print("Daemon is not running")
        return 0
    except DaemonError as e:
        _print_connection_error(e)
        return 1

    print(format_response(response))
    return 0 if response.get("success") else 1


def cmd_daemon() -> int:
    from .server import run_daemon

    config = load_config()
    return run_daemon(config)


def cmd_config() -> int:
    print(format_config(load_config()))
    return 0


def cmd_history(args: list[str]) -> int:
    from .history import HistoryManager

    limit = 10
    if args:
        try:
            limit = int(args[0])
        except ValueError:
            print(f"Invalid count: {args[0]}", file=sys.stderr)
            return 1
        if limit <= 0:
            print("Count must be positive", file=sys.stderr)
            return 1

    manager = HistoryManager(load_config().history)
    entries = manager.list(limit=limit)
    if not entries:
        print("No transcriptions yet")
        return 0

    total = manager.count()
    print(f"Showing {len(entries)} of {total} transcriptions:\n")
    for entry in entries:
        print(f"[{entry.timestamp:%Y-%m-%d %H:%M:%S}] {entry.text}")
    return 0


def cmd_doctor() -> int:
    from .doctor import format_doctor_result, run_doctor

    result = run_doctor(load_config())
    print(format_doctor_result(result, color=sys.stdout.isatty()))
    return 0 if result.required_ok else 1


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for whispertui.

    Returns the exit code; the console script passes it to sys.exit.
    """
    args = sys.argv[1:] if argv is None else argv
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if is_debug_mode() else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    if not args or args[0] in ("-h", "--help", "help"):
        print(USAGE)
        return 0

    command, rest = args[0], args[1:]
    if command in ("-v", "--version"):
        print(f"whispertui {__version__}")
        return 0

    try:
        if command in AUTO_START_COMMANDS:
            return cmd_client(command)
        if command == "shutdown":
            return cmd_shutdown()
        if command == "daemon":
            return cmd_daemon()
        if command == "config":
            return cmd_config()
        if command == "history":
            return cmd_history(rest)
        if command == "doctor":
            return cmd_doctor()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    print(f"Unknown command: {command}", file=sys.stderr)
    print("Run 'whispertui --help' for usage", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
