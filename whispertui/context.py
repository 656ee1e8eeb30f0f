"""Active window detection on Hyprland."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from typing import Iterable

from .config import ContextConfig
from .errors import ContextDetectionError, HyprctlNotFoundError
from .state import WindowContext

logger = logging.getLogger(__name__)


def get_active_window() -> dict | None:
    """
    Query the focused window with ``hyprctl activewindow -j``.

    Returns:
        The parsed window object, or None when no window has focus.

    Raises:
        HyprctlNotFoundError: If hyprctl is not installed
        ContextDetectionError: If hyprctl fails or prints invalid JSON
    """
    try:
        result = subprocess.run(
            ["hyprctl", "activewindow", "-j"],
            capture_output=True,
            text=True,
            timeout=2,
            check=False,
        )
    except FileNotFoundError as e:
        raise HyprctlNotFoundError() from e
    except (subprocess.TimeoutExpired, OSError) as e:
        raise ContextDetectionError(f"hyprctl failed: {e}") from e

    if result.returncode != 0:
        raise ContextDetectionError(
            result.stderr.strip() or f"hyprctl exited with code {result.returncode}"
        )

    output = result.stdout.strip()
    if not output or output in ("null", "{}"):
        return None

    try:
        window = json.loads(output)
    except json.JSONDecodeError as e:
        raise ContextDetectionError(f"Failed to parse hyprctl output: {output[:200]}") from e

    return window if isinstance(window, dict) else None


def is_code_aware_app(window_class: str, code_aware_apps: Iterable[str]) -> bool:
    """Case-insensitive substring match of the window class against the app list."""
    if not window_class:
        return False
    lower_class = window_class.lower()
    return any(app.lower() in lower_class for app in code_aware_apps if app)


class ContextDetector:
    def __init__(self, config: ContextConfig | None = None) -> None:
        self.config = config or ContextConfig()
        self._available: bool | None = None

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def is_available(self) -> bool:
        if self._available is None:
            self._available = shutil.which("hyprctl") is not None
        return self._available

    def detect_context(self) -> WindowContext | None:
        """Snapshot the focused window. Returns None on any failure."""
        if not self.config.enabled or not self.is_available():
            return None

        try:
            window = get_active_window()
        except HyprctlNotFoundError:
            self._available = False
            return None
        except ContextDetectionError as e:
            logger.debug(f"Context detection failed: {e}")
            return None

        if window is None:
            return None

        window_class = window.get("class") or window.get("initialClass") or ""
        window_title = window.get("title") or window.get("initialTitle") or ""
        return WindowContext(
            window_class=window_class,
            window_title=window_title,
            is_code_aware=is_code_aware_app(window_class, self.config.code_aware_apps),
        )
