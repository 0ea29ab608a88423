"""Process-execution interface used by the task executor."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class ProcessRunRequest:
    """Inputs required to run one external command."""

    command: tuple[str, ...]
    env: Mapping[str, str]
    cwd: Path
    timeout_seconds: float | None
    stdout_path: Path
    stderr_path: Path
    shutdown_requested: Callable[[], bool] | None = None
    graceful_shutdown_seconds: float = 0.0
    output_limit_bytes: int | None = None


@dataclass(slots=True)
class ProcessRunResult:
    """Exit status and captured output of one external command."""

    exit_status: int
    stdout: bytes
    stderr: bytes
    timed_out: bool = False
    interrupted: bool = False


class ProcessStartError(RuntimeError):
    """The command could not be started at all."""


class ProcessRunner(Protocol):
    """Protocol implemented by process runners."""

    def run(self, request: ProcessRunRequest) -> ProcessRunResult:
        """Run the command to completion and return its outcome."""
