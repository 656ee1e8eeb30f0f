"""Desktop notifications via notify-send."""

from __future__ import annotations

import logging
import shutil
import subprocess

from .config import NotificationsConfig
from .errors import NotificationError, NotifySendNotFoundError

logger = logging.getLogger(__name__)

APP_NAME = "WhisperTUI"
PREVIEW_LENGTH = 100


def send_notification(
    title: str,
    body: str | None = None,
    urgency: str | None = None,
    expire_time: int | None = None,
    icon: str | None = None,
    app_name: str = APP_NAME,
) -> None:
    """
    Send a desktop notification.

    Args:
        title: Notification summary
        body: Optional body text
        urgency: "low", "normal" or "critical"
        expire_time: Display time in milliseconds
        icon: Icon name or path

    Raises:
        NotifySendNotFoundError: If notify-send is not installed
        NotificationError: If notify-send fails
    """
    args = ["notify-send", "--app-name", app_name]
    if urgency:
        args.extend(["--urgency", urgency])
    if expire_time is not None:
        args.extend(["--expire-time", str(expire_time)])
    if icon:
        args.extend(["--icon", icon])
    args.append(title)
    if body:
        args.append(body)

    try:
        result = subprocess.run(
            args,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            timeout=5,
            check=False,
        )
    except FileNotFoundError as e:
        raise NotifySendNotFoundError() from e
    except (subprocess.TimeoutExpired, OSError) as e:
        raise NotificationError(f"Notification failed: {e}") from e

    if result.returncode != 0:
        stderr = result.stderr.decode(errors="replace").strip()
        raise NotificationError(stderr or f"notify-send exited with code {result.returncode}")


class Notifier:
    """Best-effort notifications: every method returns whether one was shown."""

    def __init__(self, config: NotificationsConfig | None = None) -> None:
        self.config = config or NotificationsConfig()
        self._available: bool | None = None

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def is_available(self) -> bool:
        if self._available is None:
            self._available = shutil.which("notify-send") is not None
            if not self._available:
                logger.debug("notify-send not available, notifications disabled")
        return self._available

    def notify(self, title: str, body: str | None = None, **kwargs) -> bool:
        if not self.config.enabled or not self.is_available():
            return False
        try:
            send_notification(title, body, **kwargs)
            return True
        except NotifySendNotFoundError:
            self._available = False
        except NotificationError as e:
            logger.debug(f"Notification failed: {e}")
        return False

    def notify_recording_started(self) -> bool:
        return self.notify(
            "Recording Started",
            "Speak now...",
            icon="audio-input-microphone",
            urgency="low",
            expire_time=2000,
        )

    def notify_transcription_complete(self, text: str) -> bool:
        if len(text) > PREVIEW_LENGTH:
            preview = text[: PREVIEW_LENGTH - 3] + "..."
        else:
            preview = text
        return self.notify(
            "Transcription Complete",
            preview or "(empty)",
            icon="dialog-information",
            urgency="normal",
            expire_time=3000,
        )

    def notify_error(self, message: str) -> bool:
        return self.notify(
            "WhisperTUI Error",
            message,
            icon="dialog-error",
            urgency="critical",
            expire_time=5000,
        )
