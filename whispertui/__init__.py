"""WhisperTUI - voice dictation daemon for Wayland desktops."""

__version__ = "0.1.0"
