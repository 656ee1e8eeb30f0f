"""Dependency and environment checks for ``whispertui doctor``."""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass, field

from .config import Config
from .errors import (
    DependencyNotFoundError,
    HyprctlNotFoundError,
    NotifySendNotFoundError,
    ParecordNotFoundError,
    WlCopyNotFoundError,
    WtypeNotFoundError,
)

# Colors for terminal output
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
RESET = "\033[0m"
BOLD = "\033[1m"


@dataclass(frozen=True)
class Dependency:
    name: str
    description: str
    version_args: tuple[str, ...]
    required: bool
    error: type[DependencyNotFoundError]
    version_prefix: str = ""
    any_exit_code: bool = False  # the probe exits non-zero even when installed


DEPENDENCIES = (
    Dependency("parecord", "PulseAudio recording tool", ("--version",), True,
               ParecordNotFoundError, version_prefix="pacat "),
    Dependency("wl-copy", "Wayland clipboard utility", ("--version",), True,
               WlCopyNotFoundError, version_prefix="wl-copy "),
    Dependency("wtype", "Wayland keyboard automation", ("--help",), False,
               WtypeNotFoundError, any_exit_code=True),
    Dependency("notify-send", "Desktop notifications", ("--version",), False,
               NotifySendNotFoundError, version_prefix="notify-send "),
    Dependency("hyprctl", "Hyprland window context", ("version",), False,
               HyprctlNotFoundError),
)


@dataclass
class DependencyCheck:
    name: str
    description: str
    status: str  # "ok", "missing" or "error"
    required: bool
    version: str | None = None
    install_hint: str | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass
class EnvVarCheck:
    name: str
    description: str
    is_set: bool
    required: bool


@dataclass
class DoctorResult:
    dependencies: list[DependencyCheck] = field(default_factory=list)
    env_vars: list[EnvVarCheck] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        return all(d.ok for d in self.dependencies) and all(e.is_set for e in self.env_vars)

    @property
    def required_ok(self) -> bool:
        return all(d.ok for d in self.dependencies if d.required) and all(
            e.is_set for e in self.env_vars if e.required
        )


def check_dependency(dep: Dependency) -> DependencyCheck:
    """Look the binary up on PATH and probe it for a version string."""
    check = DependencyCheck(
        name=dep.name, description=dep.description, status="ok", required=dep.required
    )

    if shutil.which(dep.name) is None:
        check.status = "missing"
        check.install_hint = dep.error.install_hint
        return check

    try:
        result = subprocess.run(
            [dep.name, *dep.version_args],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        check.status = "error"
        check.error_message = str(e)
        return check

    if result.returncode != 0 and not dep.any_exit_code:
        check.status = "error"
        check.error_message = result.stderr.strip() or f"Exit code {result.returncode}"
        return check

    if dep.any_exit_code:
        check.version = "(version not available)"
    else:
        first_line = (result.stdout.strip().splitlines() or [""])[0]
        if dep.version_prefix and first_line.startswith(dep.version_prefix):
            first_line = first_line[len(dep.version_prefix):]
        check.version = first_line or None
    return check


def check_env_var(name: str, description: str, required: bool = True) -> EnvVarCheck:
    return EnvVarCheck(name=name, description=description, is_set=bool(os.getenv(name)), required=required)


def run_doctor(config: Config | None = None) -> DoctorResult:
    config = config or Config()
    return DoctorResult(
        dependencies=[check_dependency(dep) for dep in DEPENDENCIES],
        env_vars=[check_env_var(config.transcription.api_key_env, "Groq API key for transcription")],
    )


def check_mark(passed: bool, required: bool = True, color: bool = True) -> str:
    """Return a colored check mark, X (required) or warning sign (optional)."""
    if passed:
        symbol, tint = "✓", GREEN
    elif required:
        symbol, tint = "✗", RED
    else:
        symbol, tint = "⚠", YELLOW
    return f"{tint}{symbol}{RESET}" if color else symbol


def format_doctor_result(result: DoctorResult, color: bool = True) -> str:
    bold = BOLD if color else ""
    yellow = YELLOW if color else ""
    reset = RESET if color else ""

    lines = [f"{bold}System Dependencies{reset}", "=" * len("System Dependencies")]
    for dep in result.dependencies:
        suffix = "" if dep.required else " (optional)"
        line = f"  {check_mark(dep.ok, dep.required, color)} {dep.name} - {dep.description}{suffix}"
        if dep.version:
            line += f" [{dep.version}]"
        lines.append(line)
        if dep.status == "missing" and dep.install_hint:
            for hint in dep.install_hint.splitlines():
                lines.append(f"      {yellow}→ {hint}{reset}")
        elif dep.status == "error" and dep.error_message:
            lines.append(f"      {yellow}→ {dep.error_message}{reset}")

    lines.extend(["", f"{bold}Environment{reset}", "=" * len("Environment")])
    for env in result.env_vars:
        state = "set" if env.is_set else "not set"
        lines.append(f"  {check_mark(env.is_set, env.required, color)} {env.name} ({env.description}): {state}")
        if not env.is_set:
            lines.append(f"      {yellow}→ Get a free key at: https://console.groq.com/keys{reset}")

    lines.append("")
    if result.all_ok:
        lines.append("All checks passed")
    elif result.required_ok:
        lines.append("Required checks passed, some optional features are unavailable")
    else:
        lines.append("Some required checks failed")
    return "\n".join(lines)
