"""Ralph data models: exceptions, dataclasses, and coercion helpers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ralph.constants import DEFAULT_SLEEP_SECONDS, SANDBOX_CAPABLE_TOOLS


def _coerce_bool(value: Any, *, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "on"}
    return bool(value) if value is not None else default


def _coerce_float(value: Any, *, default: float) -> float:
    try:
        return float(value)
    except Exception:
        return default


def _coerce_non_negative_int(value: Any, *, default: int) -> int:
    try:
        parsed = int(value)
    except Exception:
        return default
    return parsed if parsed >= 0 else default


class ConfigError(RuntimeError):
    """Raised when the run configuration is invalid; fatal before any work."""


@dataclass(frozen=True)
class RunConfig:
    tool: str
    max_iterations: int
    docker_sandbox: bool
    docker_flags: str
    state_dir: Path
    prompt_file: Path | None = None
    sleep_seconds: float = DEFAULT_SLEEP_SECONDS

    @property
    def sandbox_effective(self) -> bool:
        """Sandbox mode only applies to tools that support it."""
        return self.docker_sandbox and self.tool in SANDBOX_CAPABLE_TOOLS


@dataclass(frozen=True)
class IterationResult:
    exit_code: int | None
    output: str
    completed: bool
    error: str = ""


@dataclass(frozen=True)
class LoopOutcome:
    exit_code: int
    completed: bool
    iterations_run: int
    max_iterations: int
    message: str
