"""The whispertui daemon: a Unix socket server driving one recording session.

Clients send one JSON object per line and get one JSON object per line back::

    {"command": "status"}
    {"success": true, "state": "idle", "context": {...}}

Commands are validated against the session state machine and answered
immediately. Recording, transcription and text output continue as
background tasks; clients poll ``status`` to see them finish.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
from pathlib import Path
from typing import Any, Callable

from .config import Config, load_config
from .context import ContextDetector
from .errors import AlreadyRunningError, DaemonError, InvalidTransitionError, WhisperTUIError
from .history import HistoryManager
from .notify import Notifier
from .output import copy_to_clipboard, type_text
from .paths import ensure_all_dirs, ensure_dir, get_pid_path, get_socket_path
from .pidfile import is_pid_running, read_pid_file, remove_pid_file, write_pid_file
from .recorder import AudioRecorder, cleanup_old_recordings
from .state import DaemonEvent, DaemonState, EventType, StateMachine
from .transcription import GroqClient

logger = logging.getLogger(__name__)

MAX_FRAME_SIZE = 1024 * 1024
SHUTDOWN_GRACE_SECONDS = 2.0
IDLE_CHECK_INTERVAL = 1.0

ServerEventListener = Callable[[str, Any], None]


# ============================================================================
# PID and socket files
# ============================================================================


def cleanup_stale_files(
    socket_path: Path | None = None, pid_path: Path | None = None
) -> tuple[bool, bool]:
    """
    Remove a socket or PID file left behind by a daemon that is gone.

    Returns:
        Tuple of (socket_cleaned, pid_cleaned)

    Raises:
        AlreadyRunningError: If the PID file names a live process
    """
    socket_path = socket_path or get_socket_path()
    pid_path = pid_path or get_pid_path()
    socket_cleaned = False
    pid_cleaned = False

    if pid_path.exists():
        pid = read_pid_file(pid_path)
        if pid is not None and pid != os.getpid() and is_pid_running(pid):
            raise AlreadyRunningError(pid)

        if pid is None:
            logger.warning(f"Unreadable PID file {pid_path}, removing")
        else:
            logger.info(f"Stale PID file found (PID {pid} not running), cleaning up")
        try:
            pid_path.unlink()
            pid_cleaned = True
        except FileNotFoundError:
            pass

    if socket_path.exists() or socket_path.is_symlink():
        logger.info(f"Removing stale socket {socket_path}")
        try:
            socket_path.unlink()
            socket_cleaned = True
        except FileNotFoundError:
            pass

    return socket_cleaned, pid_cleaned


def _remove_socket_file(socket_path: Path) -> None:
    try:
        socket_path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Error removing socket file: {e}")


def encode_response(response: dict) -> bytes:
    return (json.dumps(response) + "\n").encode("utf-8")


def _response(**fields: Any) -> dict:
    return {key: value for key, value in fields.items() if value is not None}


# ============================================================================
# Server
# ============================================================================


class DaemonServer:
    """Owns the session state machine, the recorder and the listening socket.

    Collaborators default to the ones described by ``config`` and can be
    replaced for testing.
    """

    def __init__(
        self,
        config: Config | None = None,
        state_machine: StateMachine | None = None,
        recorder: AudioRecorder | None = None,
        transcriber: GroqClient | None = None,
        notifier: Notifier | None = None,
        history: HistoryManager | None = None,
        context_detector: ContextDetector | None = None,
        socket_path: Path | None = None,
        pid_path: Path | None = None,
    ) -> None:
        self.config = config or Config()
        self.state_machine = state_machine or StateMachine()
        self.recorder = recorder or AudioRecorder(self.config.audio)
        self.transcriber = transcriber or GroqClient.from_config(self.config.transcription)
        self.notifier = notifier or Notifier(self.config.notifications)
        self.history = history or HistoryManager(self.config.history)
        self.context_detector = context_detector or ContextDetector(self.config.context)
        self.socket_path = socket_path or get_socket_path()
        self.pid_path = pid_path or get_pid_path()

        self.recorder.on_max_duration = self._on_max_duration
        self.recorder.on_unexpected_exit = self._on_recorder_exit
        self.state_machine.subscribe(self._log_transition)

        self._server: asyncio.AbstractServer | None = None
        self._clients: set[asyncio.StreamWriter] = set()
        self._listeners: list[ServerEventListener] = []
        self._tasks: set[asyncio.Task] = set()
        self._start_task: asyncio.Task | None = None
        self._stopped: asyncio.Event | None = None
        self._shutting_down = False
        self._closing = False
        self._owns_files = False
        self._current_audio_path: str | None = None
        self._silent = False
        self._last_activity = 0.0

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: ServerEventListener) -> Callable[[], None]:
        """Register ``listener(event, data)`` for server lifecycle events.

        Events: started, stopped, client_connected, client_disconnected,
        command_received.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str, data: Any = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception as e:
                logger.warning(f"Server event listener failed on {event}: {e}")

    @staticmethod
    def _log_transition(old: DaemonState, new: DaemonState, event: DaemonEvent) -> None:
        logger.info(f"State: {old.value} -> {new.value} ({event.type.value})")

    @property
    def is_running(self) -> bool:
        return self._server is not None and not self._closing

    @property
    def current_audio_path(self) -> str | None:
        return self._current_audio_path

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def handle_frame(self, raw: bytes) -> dict:
        """Decode one request line and dispatch it."""
        try:
            request = json.loads(raw.decode("utf-8"))
        except (ValueError, RecursionError):
            # ValueError covers bad UTF-8, bad JSON and oversized integers
            return {"success": False, "error": "Invalid JSON"}

        if not isinstance(request, dict):
            return {"success": False, "error": "Invalid JSON"}

        command = request.get("command")
        if not isinstance(command, str) or not command:
            return {"success": False, "error": "Invalid request: missing or invalid 'command' field"}

        return self.handle_command(request)

    def handle_command(self, request: dict) -> dict:
        self._emit("command_received", request)
        self._touch()
        command = request["command"]
        logger.debug(f"Command: {command}")

        if command == "ping":
            return _response(success=True, state=self.state_machine.state.value, message="pong")

        if command == "status":
            snapshot = self.state_machine.snapshot().to_dict()
            return _response(
                success=True,
                state=snapshot["state"],
                context=snapshot["context"],
                audioPath=self._current_audio_path,
            )

        if command == "start":
            return self._handle_start(request)

        if command == "stop":
            return self._handle_stop()

        if command == "shutdown":
            if self.recorder.is_recording:
                self.recorder.abort()
                self._current_audio_path = None
            self._shutting_down = True
            return _response(
                success=True,
                state=self.state_machine.state.value,
                message="Daemon shutting down",
            )

        return {"success": False, "error": f"Unknown command: {command}"}

    def _rejected(self, error: InvalidTransitionError) -> dict:
        return _response(success=False, state=self.state_machine.state.value, error=str(error))

    def _handle_start(self, request: dict) -> dict:
        try:
            self.state_machine.send(DaemonEvent(EventType.START))
        except InvalidTransitionError as e:
            return self._rejected(e)

        self._silent = bool(request.get("silent", False))
        self._current_audio_path = None

        if self.context_detector.enabled:
            self._spawn(self._detect_context())
        if not self._silent:
            self._spawn(asyncio.to_thread(self.notifier.notify_recording_started))
        self._start_task = self._spawn(self._start_recording())

        snapshot = self.state_machine.snapshot().to_dict()
        return _response(
            success=True,
            state=snapshot["state"],
            context=snapshot["context"],
            message="Recording started",
        )

    def _handle_stop(self) -> dict:
        try:
            self.state_machine.send(DaemonEvent(EventType.STOP))
        except InvalidTransitionError as e:
            return self._rejected(e)

        audio_path = self._current_audio_path
        if audio_path is None and self.recorder.audio_path is not None:
            audio_path = str(self.recorder.audio_path)

        start_task, self._start_task = self._start_task, None
        self._spawn(self._stop_pipeline(start_task, self._silent))

        snapshot = self.state_machine.snapshot().to_dict()
        return _response(
            success=True,
            state=snapshot["state"],
            context=snapshot["context"],
            message="Recording stopped, transcribing...",
            audioPath=audio_path,
        )

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _notify(self, method: Callable[..., bool], *args: Any) -> None:
        self._spawn(asyncio.to_thread(method, *args))

    def _fail(self, message: str, silent: bool) -> None:
        logger.error(message)
        self.state_machine.send(DaemonEvent(EventType.ERROR, message=message))
        self._current_audio_path = None
        if not silent:
            self._notify(self.notifier.notify_error, message)

    async def _detect_context(self) -> None:
        window = await asyncio.to_thread(self.context_detector.detect_context)
        self.state_machine.set_window_context(window)

    async def _start_recording(self) -> bool:
        try:
            path = await self.recorder.start()
        except Exception as e:
            if not isinstance(e, WhisperTUIError):
                logger.error(f"Unexpected recorder failure: {e}", exc_info=True)
            self._fail(str(e) or "Recording failed", self._silent)
            return False
        self._current_audio_path = str(path)
        return True

    async def _stop_pipeline(self, start_task: asyncio.Task | None, silent: bool) -> None:
        if start_task is not None and not await start_task:
            return

        try:
            path = await self.recorder.stop()
        except Exception as e:
            if not isinstance(e, WhisperTUIError):
                logger.error(f"Unexpected recorder failure: {e}", exc_info=True)
            self._fail(str(e) or "Failed to stop recording", silent)
            return
        self._current_audio_path = str(path)

        try:
            text = await self.transcriber.transcribe(path)
        except Exception as e:
            if not isinstance(e, WhisperTUIError):
                logger.error(f"Unexpected transcription failure: {e}", exc_info=True)
            self._fail(str(e) or "Transcription failed", silent)
            return

        if self.history.enabled:
            try:
                await asyncio.to_thread(self.history.save, text)
            except OSError as e:
                logger.warning(f"Failed to save history: {e}")

        await self._output(text, silent)

        try:
            self.state_machine.send(DaemonEvent(EventType.TRANSCRIPTION_COMPLETE, text=text))
        except InvalidTransitionError as e:
            logger.warning(f"Dropping transcription result: {e}")
            return

        if not silent:
            self._notify(self.notifier.notify_transcription_complete, text)

    async def _output(self, text: str, silent: bool) -> None:
        clipboard_ok = False
        try:
            await asyncio.to_thread(copy_to_clipboard, text)
            clipboard_ok = True
        except WhisperTUIError as e:
            logger.error(str(e))
            if not silent:
                self._notify(self.notifier.notify_error, str(e))

        output = self.config.output
        if output.auto_paste and output.paste_method == "wtype" and not silent:
            try:
                await asyncio.to_thread(type_text, text)
            except WhisperTUIError as e:
                message = str(e)
                if clipboard_ok:
                    message += " (text available in clipboard)"
                logger.error(message)
                self._notify(self.notifier.notify_error, message)

    def _on_max_duration(self) -> None:
        response = self._handle_stop()
        if not response["success"]:
            logger.warning(f"Automatic stop rejected: {response.get('error')}")

    def _on_recorder_exit(self, message: str) -> None:
        # Once stop was accepted the stop pipeline reports the failure itself.
        if self.state_machine.state == DaemonState.RECORDING:
            self._fail(f"Recording failed: {message}", self._silent)

    def _touch(self) -> None:
        try:
            self._last_activity = asyncio.get_running_loop().time()
        except RuntimeError:
            pass

    async def _idle_watch(self, timeout: float) -> None:
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(min(IDLE_CHECK_INTERVAL, timeout))
            idle_for = loop.time() - self._last_activity
            if self.state_machine.state == DaemonState.IDLE and idle_for >= timeout:
                logger.info(f"No commands for {timeout:g}s, shutting down")
                self._shutting_down = True
                await self.stop()
                return

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._clients.add(writer)
        self._emit("client_connected", {"count": len(self._clients)})
        try:
            while not self._closing:
                try:
                    line = await reader.readline()
                except ValueError:
                    writer.write(encode_response({"success": False, "error": "Request too large"}))
                    await writer.drain()
                    break
                if not line:
                    break

                line = line.strip()
                if not line:
                    continue

                writer.write(encode_response(self.handle_frame(line)))
                await writer.drain()

                if self._shutting_down:
                    self._spawn(self.stop())
                    break
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.debug(f"Client connection lost: {e}")
        finally:
            self._clients.discard(writer)
            writer.close()
            self._emit("client_disconnected", {"count": len(self._clients)})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Bind the control socket and write the PID file.

        Raises:
            DaemonError: If this server is already running
            AlreadyRunningError: If another daemon owns the PID file
        """
        if self._server is not None:
            raise DaemonError("Server already running")

        ensure_dir(self.socket_path.parent)
        ensure_dir(self.pid_path.parent)
        cleanup_stale_files(self.socket_path, self.pid_path)
        self.state_machine.reset()

        self._stopped = asyncio.Event()
        self._closing = False
        self._shutting_down = False
        self._server = await asyncio.start_unix_server(
            self._handle_client, path=str(self.socket_path), limit=MAX_FRAME_SIZE
        )
        self._owns_files = True
        try:
            os.chmod(self.socket_path, 0o600)
        except OSError as e:
            logger.warning(f"Could not restrict socket permissions: {e}")
        write_pid_file(self.pid_path)

        self._touch()
        idle_timeout = self.config.daemon.idle_timeout
        if idle_timeout > 0:
            self._spawn(self._idle_watch(idle_timeout))

        logger.info(f"Daemon listening on {self.socket_path} (PID {os.getpid()})")
        self._emit("started")

    async def stop(self) -> None:
        """Shut the server down. Safe to call more than once."""
        if self._server is None or self._closing:
            return
        self._closing = True
        logger.info("Shutting down...")

        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self.recorder.abort()

        for writer in list(self._clients):
            writer.close()
        self._server.close()
        try:
            await asyncio.wait_for(self._server.wait_closed(), timeout=SHUTDOWN_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for client connections to close")

        self._cleanup_files()
        self._server = None

        close = getattr(self.transcriber, "close", None)
        if close is not None:
            try:
                await close()
            except Exception as e:
                logger.debug(f"Error closing transcriber: {e}")

        self._emit("stopped")
        if self._stopped is not None:
            self._stopped.set()
        logger.info("Daemon stopped")

    def _cleanup_files(self) -> None:
        if not self._owns_files:
            return
        _remove_socket_file(self.socket_path)
        remove_pid_file(self.pid_path)
        self._owns_files = False

    async def wait_stopped(self) -> None:
        if self._stopped is not None:
            await self._stopped.wait()

    def _request_shutdown(self, signum: int) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        self._shutting_down = True
        self._spawn(self.stop())

    async def serve(self) -> None:
        """Run until shut down by command, signal or idle timeout."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._request_shutdown, sig)
        try:
            await self.start()
            await self.wait_stopped()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            if self._server is not None and not self._closing:
                await self.stop()
            self.recorder.abort()
            self._cleanup_files()


def run_daemon(config: Config | None = None) -> int:
    """Run the daemon in the foreground. Returns the process exit code."""
    config = config or load_config()
    ensure_all_dirs()
    cleanup_old_recordings()

    server = DaemonServer(config=config)
    try:
        asyncio.run(server.serve())
    except AlreadyRunningError as e:
        # Expected when several clients auto-start at once
        logger.warning(f"{e}, exiting")
        return 0
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    return 0
