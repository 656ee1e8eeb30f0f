"""Configuration loading.

Settings are read from ``config.json`` in the XDG config directory and merged
over ``DEFAULTS``. Missing keys fall back to the defaults, unknown keys are
ignored so older daemons keep working with newer files.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigurationError
from .paths import (
    get_cache_dir,
    get_config_dir,
    get_config_path,
    get_data_dir,
    get_state_dir,
)

logger = logging.getLogger(__name__)

PASTE_METHODS = ("wtype", "clipboard-only")

DEFAULTS: dict[str, dict[str, Any]] = {
    "transcription": {
        "backend": "groq",
        "api_key_env": "GROQ_API_KEY",
        "model": "whisper-large-v3",
        "timeout": 60.0,
        "max_retries": 2,
    },
    "audio": {
        "device": "default",
        "sample_rate": 16000,
        "format": "wav",
        "max_duration": 300,
    },
    "output": {
        "auto_paste": True,
        "paste_method": "wtype",
    },
    "context": {
        "enabled": True,
        "code_aware_apps": ["Alacritty", "kitty", "foot", "nvim", "code", "Code"],
    },
    "history": {
        "enabled": True,
        "max_entries": 1000,
    },
    "daemon": {
        "idle_timeout": 0,
    },
    "notifications": {
        "enabled": True,
    },
}


@dataclass(frozen=True)
class TranscriptionConfig:
    backend: str = "groq"
    api_key_env: str = "GROQ_API_KEY"
    model: str = "whisper-large-v3"
    timeout: float = 60.0
    max_retries: int = 2


@dataclass(frozen=True)
class AudioConfig:
    device: str = "default"
    sample_rate: int = 16000
    format: str = "wav"
    max_duration: float = 300


@dataclass(frozen=True)
class OutputConfig:
    auto_paste: bool = True
    paste_method: str = "wtype"


@dataclass(frozen=True)
class ContextConfig:
    enabled: bool = True
    code_aware_apps: tuple[str, ...] = tuple(DEFAULTS["context"]["code_aware_apps"])


@dataclass(frozen=True)
class HistoryConfig:
    enabled: bool = True
    max_entries: int = 1000


@dataclass(frozen=True)
class DaemonConfig:
    idle_timeout: float = 0


@dataclass(frozen=True)
class NotificationsConfig:
    enabled: bool = True


@dataclass(frozen=True)
class Config:
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


def is_debug_mode() -> bool:
    """DEBUG_MODE=true enables debug logging. Read after .env is loaded."""
    return os.getenv("DEBUG_MODE", "false").lower() == "true"


def deep_merge(target: dict, source: dict) -> dict:
    """Return a copy of ``target`` with ``source`` values merged in recursively."""
    result = copy.deepcopy(target)
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        elif value is not None:
            result[key] = value
    return result


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate(merged: dict) -> list[str]:
    """Collect every invalid ``section.key`` in a merged settings dict."""
    issues: list[str] = []

    def check(section: str, key: str, ok: bool, expected: str) -> None:
        if not ok:
            value = merged[section][key]
            issues.append(f"  - {section}.{key}: expected {expected}, got {value!r}")

    for section, values in DEFAULTS.items():
        if not isinstance(merged.get(section), dict):
            issues.append(f"  - {section}: expected an object")
            continue
        for key, default in values.items():
            value = merged[section][key]
            if isinstance(default, bool):
                check(section, key, isinstance(value, bool), "a boolean")
            elif isinstance(default, str):
                check(section, key, isinstance(value, str) and bool(value), "a non-empty string")
            elif isinstance(default, list):
                check(
                    section,
                    key,
                    isinstance(value, list) and all(isinstance(v, str) for v in value),
                    "a list of strings",
                )
            elif _is_number(default):
                check(section, key, _is_number(value) and value >= 0, "a non-negative number")

    if issues:
        return issues

    check("transcription", "backend", merged["transcription"]["backend"] == "groq", "'groq'")
    check("audio", "format", merged["audio"]["format"] == "wav", "'wav'")
    check(
        "audio",
        "sample_rate",
        isinstance(merged["audio"]["sample_rate"], int) and merged["audio"]["sample_rate"] > 0,
        "a positive integer",
    )
    check("audio", "max_duration", merged["audio"]["max_duration"] > 0, "a positive number")
    check(
        "output",
        "paste_method",
        merged["output"]["paste_method"] in PASTE_METHODS,
        " or ".join(repr(m) for m in PASTE_METHODS),
    )
    check(
        "history",
        "max_entries",
        isinstance(merged["history"]["max_entries"], int) and merged["history"]["max_entries"] > 0,
        "a positive integer",
    )
    check(
        "transcription",
        "max_retries",
        isinstance(merged["transcription"]["max_retries"], int),
        "an integer",
    )
    return issues


def parse_config(settings: dict) -> Config:
    """Validate a partial settings dict and merge it with the defaults.

    Args:
        settings: Parsed JSON object (may be partial).

    Returns:
        Complete Config.

    Raises:
        ConfigurationError: If any value has the wrong type or is out of range.
    """
    if not isinstance(settings, dict):
        raise ConfigurationError("Invalid config: top level must be a JSON object")

    known = {section: value for section, value in settings.items() if section in DEFAULTS}
    merged = deep_merge(DEFAULTS, known)
    for section in DEFAULTS:
        if isinstance(merged[section], dict):
            merged[section] = {k: merged[section][k] for k in DEFAULTS[section]}

    issues = _validate(merged)
    if issues:
        raise ConfigurationError("Invalid config values:\n" + "\n".join(issues))

    return Config(
        transcription=TranscriptionConfig(**merged["transcription"]),
        audio=AudioConfig(**merged["audio"]),
        output=OutputConfig(**merged["output"]),
        context=ContextConfig(
            enabled=merged["context"]["enabled"],
            code_aware_apps=tuple(merged["context"]["code_aware_apps"]),
        ),
        history=HistoryConfig(**merged["history"]),
        daemon=DaemonConfig(**merged["daemon"]),
        notifications=NotificationsConfig(**merged["notifications"]),
    )


def load_config(path: Path | None = None) -> Config:
    """Load configuration from the config file.

    Returns the defaults when no config file exists.

    Raises:
        ConfigurationError: If the file is not valid JSON or holds invalid values.
    """
    config_path = path or get_config_path()
    if not config_path.exists():
        logger.debug(f"No config file at {config_path}, using defaults")
        return Config()

    try:
        with open(config_path, encoding="utf-8") as f:
            settings = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to parse config file {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file {config_path}: {e}") from e

    return parse_config(settings)


def format_config(config: Config) -> str:
    """Render the effective configuration and paths for display."""
    lines = ["WhisperTUI Configuration:", ""]
    sections = (
        ("transcription", config.transcription),
        ("audio", config.audio),
        ("output", config.output),
        ("context", config.context),
        ("history", config.history),
        ("daemon", config.daemon),
        ("notifications", config.notifications),
    )
    for name, section in sections:
        lines.append(f"[{name}]")
        for key, value in vars(section).items():
            if isinstance(value, tuple):
                value = list(value)
            lines.append(f"  {key} = {json.dumps(value)}")
        lines.append("")

    lines.append("Paths:")
    lines.append(f"  Config file: {get_config_path()}")
    lines.append(f"  Config dir:  {get_config_dir()}")
    lines.append(f"  State dir:   {get_state_dir()}")
    lines.append(f"  Data dir:    {get_data_dir()}")
    lines.append(f"  Cache dir:   {get_cache_dir()}")
    return "\n".join(lines)
