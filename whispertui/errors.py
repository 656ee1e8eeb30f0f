"""Exception hierarchy for whispertui.

Every message is written to be shown to the user as-is by the CLI.
"""

from __future__ import annotations


class WhisperTUIError(Exception):
    """Base exception for whispertui errors."""
    pass


class ConfigurationError(WhisperTUIError):
    """Raised when configuration is invalid."""
    pass


# ============================================================================
# Session
# ============================================================================


class InvalidTransitionError(WhisperTUIError):
    """Raised when an event is not allowed in the current session state."""

    def __init__(self, current_state: str, event: str) -> None:
        super().__init__(
            f"Invalid transition: cannot process '{event}' in state '{current_state}'"
        )
        self.current_state = current_state
        self.event = event


# ============================================================================
# Missing external binaries
# ============================================================================


class DependencyNotFoundError(WhisperTUIError):
    """Raised when a required external binary is not installed.

    Kept distinct from runtime failures of the same binary: this one is
    fixed by installing a package.
    """

    binary = ""
    install_hint = ""

    def __init__(self) -> None:
        super().__init__(f"{self.binary} not found. {self.install_hint}")


class ParecordNotFoundError(DependencyNotFoundError):
    binary = "parecord"
    install_hint = (
        "Please install pulseaudio-utils:\n"
        "  Arch Linux: pacman -S pulseaudio\n"
        "  Ubuntu/Debian: apt install pulseaudio-utils\n"
        "  Fedora: dnf install pulseaudio-utils"
    )


class WlCopyNotFoundError(DependencyNotFoundError):
    binary = "wl-copy"
    install_hint = (
        "Please install wl-clipboard:\n"
        "  Arch Linux: pacman -S wl-clipboard\n"
        "  Ubuntu/Debian: apt install wl-clipboard\n"
        "  Fedora: dnf install wl-clipboard"
    )


class WtypeNotFoundError(DependencyNotFoundError):
    binary = "wtype"
    install_hint = (
        "Please install wtype:\n"
        "  Arch Linux: pacman -S wtype\n"
        "  Ubuntu/Debian: apt install wtype\n"
        "  Fedora: dnf install wtype"
    )


class NotifySendNotFoundError(DependencyNotFoundError):
    binary = "notify-send"
    install_hint = (
        "Please install libnotify:\n"
        "  Arch Linux: pacman -S libnotify\n"
        "  Ubuntu/Debian: apt install libnotify-bin\n"
        "  Fedora: dnf install libnotify"
    )


class HyprctlNotFoundError(DependencyNotFoundError):
    binary = "hyprctl"
    install_hint = (
        "Context detection requires Hyprland.\n"
        "If you're using a different compositor, context detection will be disabled."
    )


# ============================================================================
# Recording
# ============================================================================


class RecordingError(WhisperTUIError):
    """Raised when the audio capture process fails."""
    pass


class AlreadyRecordingError(RecordingError):
    def __init__(self) -> None:
        super().__init__("Already recording")


class NotRecordingError(RecordingError):
    def __init__(self) -> None:
        super().__init__("Not recording")


class RecordingFileError(RecordingError):
    """Raised when the recorded file is missing or empty after stop."""
    pass


# ============================================================================
# Output collaborators
# ============================================================================


class ClipboardError(WhisperTUIError):
    pass


class TyperError(WhisperTUIError):
    pass


class NotificationError(WhisperTUIError):
    pass


class ContextDetectionError(WhisperTUIError):
    """Raised when hyprctl fails or returns unreadable output."""
    pass


# ============================================================================
# Transcription
# ============================================================================


class TranscriptionError(WhisperTUIError):
    """Raised when transcription fails."""
    pass


class MissingApiKeyError(TranscriptionError):
    def __init__(self, env_var: str) -> None:
        super().__init__(
            f"Groq API key not found. Please set {env_var} in your .env file or environment.\n"
            "Get an API key at: https://console.groq.com/keys"
        )
        self.env_var = env_var


class InvalidAudioError(TranscriptionError):
    """Raised when the audio file is missing, empty or unusable."""
    pass


class TranscriptionApiError(TranscriptionError):
    """Raised when the transcription API request fails."""

    def __init__(
        self, message: str, status_code: int | None = None, retryable: bool = False
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


# ============================================================================
# Daemon and client
# ============================================================================


class DaemonError(WhisperTUIError):
    pass


class AlreadyRunningError(DaemonError):
    def __init__(self, pid: int) -> None:
        super().__init__(f"Daemon already running with PID {pid}")
        self.pid = pid


class DaemonNotRunningError(DaemonError):
    def __init__(self) -> None:
        super().__init__("Daemon is not running. Start it with 'whispertui daemon'")


class ConnectionTimeoutError(DaemonError):
    def __init__(self, timeout: float) -> None:
        super().__init__(
            f"Connection timed out after {timeout:g}s. "
            "The daemon is unresponsive, restart it with 'whispertui shutdown' "
            "and 'whispertui daemon'"
        )
        self.timeout = timeout


class ConnectionClosedError(DaemonError):
    def __init__(self) -> None:
        super().__init__("Connection closed without response")


class InvalidResponseError(DaemonError):
    def __init__(self, raw: str) -> None:
        super().__init__(f"Invalid JSON response from daemon: {raw[:200]}")
        self.raw = raw


class DaemonStartError(DaemonError):
    """Raised when an auto-started daemon never becomes ready."""
    pass
