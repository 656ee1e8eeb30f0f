"""Text output: Wayland clipboard and simulated typing."""

from __future__ import annotations

import logging
import subprocess

from .errors import ClipboardError, TyperError, WlCopyNotFoundError, WtypeNotFoundError

logger = logging.getLogger(__name__)

OUTPUT_TIMEOUT_SECONDS = 5


def copy_to_clipboard(text: str) -> None:
    """
    Copy text to the Wayland clipboard with wl-copy.

    Empty text is copied as-is, which clears the clipboard.

    Raises:
        WlCopyNotFoundError: If wl-copy is not installed
        ClipboardError: If wl-copy fails
    """
    # wl-copy forks a child that keeps serving the selection; the child
    # inherits our pipes, so stdout/stderr must not be captured.
    try:
        result = subprocess.run(
            ["wl-copy"],
            input=text.encode("utf-8"),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=OUTPUT_TIMEOUT_SECONDS,
            check=False,
        )
    except FileNotFoundError as e:
        raise WlCopyNotFoundError() from e
    except subprocess.TimeoutExpired as e:
        raise ClipboardError(f"wl-copy timed out after {OUTPUT_TIMEOUT_SECONDS}s") from e
    except OSError as e:
        raise ClipboardError(f"Failed to start wl-copy: {e}") from e

    if result.returncode != 0:
        raise ClipboardError(f"wl-copy exited with code {result.returncode}")

    logger.debug(f"Copied {len(text)} characters to clipboard")


def type_text(text: str, delay: int = 0) -> None:
    """
    Type text into the active window with wtype.

    Args:
        text: Text to type. Empty text is a no-op.
        delay: Delay between keystrokes in milliseconds

    Raises:
        WtypeNotFoundError: If wtype is not installed
        TyperError: If wtype fails
    """
    if not text:
        return

    args = ["wtype"]
    if delay > 0:
        args.extend(["-d", str(delay)])
    args.append("-")  # read text from stdin

    try:
        result = subprocess.run(
            args,
            input=text.encode("utf-8"),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            timeout=OUTPUT_TIMEOUT_SECONDS + len(text) * delay / 1000,
            check=False,
        )
    except FileNotFoundError as e:
        raise WtypeNotFoundError() from e
    except subprocess.TimeoutExpired as e:
        raise TyperError("wtype timed out") from e
    except OSError as e:
        raise TyperError(f"Failed to start wtype: {e}") from e

    if result.returncode != 0:
        stderr = result.stderr.decode(errors="replace").strip()
        raise TyperError(stderr or f"wtype exited with code {result.returncode}")

    logger.debug(f"Typed {len(text)} characters")
