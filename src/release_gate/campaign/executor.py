"""Run one campaign task as an external process and classify its outcome."""

from __future__ import annotations

import logging
import os
import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from release_gate.campaign.backend import (
    ProcessRunner,
    ProcessRunRequest,
    ProcessStartError,
)
from release_gate.campaign.failure_classifier import classify_task_failure
from release_gate.campaign.models import FailureKind, Stage, Task, TaskClass, TaskOutcome

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._+-]+")


class ExecutionError(RuntimeError):
    """A task's command could not be started."""

    def __init__(self, message: str, *, task_id: str) -> None:
        super().__init__(message)
        self.task_id = task_id


@dataclass(slots=True)
class TimeoutPolicy:
    """Per-task timeout: stage override first, then the default."""

    default_seconds: float | None = 1800.0
    per_stage: dict[Stage, float] = field(default_factory=dict)

    def for_task(self, task: Task) -> float | None:
        return self.per_stage.get(task.stage, self.default_seconds)


class TaskExecutor:
    """Executes tasks one at a time through a process runner."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        runner: ProcessRunner,
        cwd: Path,
        log_dir: Path,
        timeouts: TimeoutPolicy | None = None,
        output_preview_bytes: int = 64_000,
        graceful_shutdown_seconds: float = 10.0,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self.runner = runner
        self.cwd = cwd
        self.log_dir = log_dir
        self.timeouts = timeouts or TimeoutPolicy()
        self.output_preview_bytes = output_preview_bytes
        self.graceful_shutdown_seconds = graceful_shutdown_seconds
        self.base_env = dict(os.environ if base_env is None else base_env)

    def execute(
        self,
        task: Task,
        *,
        shutdown_requested: Callable[[], bool] | None = None,
        sequence: int | None = None,
    ) -> TaskOutcome:
        """Run ``task`` once; nonzero exit is an outcome, not an exception.

        ``sequence`` is the task's position in the queue and prefixes its log
        file names, so ids that sanitize alike never share a log.
        """

        stem = _UNSAFE_FILENAME_CHARS.sub("_", task.task_id)
        if sequence is not None:
            stem = f"{sequence:02d}-{stem}"
        stdout_path = self.log_dir / f"{stem}.stdout.log"
        stderr_path = self.log_dir / f"{stem}.stderr.log"
        env = {**self.base_env, **task.env}
        timeout_seconds = self.timeouts.for_task(task)

        logger.debug("Running %s: %s", task.task_id, " ".join(task.command))
        started = time.monotonic()
        try:
            result = self.runner.run(
                ProcessRunRequest(
                    command=task.command,
                    env=env,
                    cwd=self.cwd,
                    timeout_seconds=timeout_seconds,
                    stdout_path=stdout_path,
                    stderr_path=stderr_path,
                    shutdown_requested=shutdown_requested,
                    graceful_shutdown_seconds=self.graceful_shutdown_seconds,
                    output_limit_bytes=self.output_preview_bytes,
                ),
            )
        except ProcessStartError as error:
            raise ExecutionError(
                f"Task {task.task_id} could not start: {error}",
                task_id=task.task_id,
            ) from error
        duration = time.monotonic() - started

        stdout = self._preview(result.stdout)
        stderr = self._preview(result.stderr)
        common = {
            "task_id": task.task_id,
            "task_class": task.task_class,
            "exit_status": result.exit_status,
            "stdout": stdout,
            "stderr": stderr,
            "duration_seconds": duration,
            "stdout_path": stdout_path,
            "stderr_path": stderr_path,
        }

        if result.timed_out:
            return TaskOutcome(
                **common,
                effective_class=TaskClass.BLOCKING,
                succeeded=False,
                failure_kind=FailureKind.TIMEOUT,
                reason_code="timeout",
                error=f"Timed out after {timeout_seconds:g}s",
            )
        if result.interrupted:
            return TaskOutcome(
                **common,
                effective_class=TaskClass.BLOCKING,
                succeeded=False,
                failure_kind=FailureKind.INTERRUPTED,
                reason_code="interrupted",
                error="Interrupted by shutdown request",
            )
        if result.exit_status == 0:
            return TaskOutcome(**common, effective_class=task.task_class, succeeded=True)

        classification = classify_task_failure(
            stage=task.stage,
            exit_status=result.exit_status,
            stdout=_decode(result.stdout),
            stderr=_decode(result.stderr),
        )
        return TaskOutcome(
            **common,
            effective_class=task.task_class,
            succeeded=False,
            failure_kind=classification.failure_kind,
            reason_code=classification.reason_code,
            error=f"Exited with status {result.exit_status}",
            failure_details=classification.to_details(),
        )

    def not_started_outcome(self, task: Task, error: ExecutionError) -> TaskOutcome:
        """Outcome recorded for a task whose process never started."""

        return TaskOutcome(
            task_id=task.task_id,
            task_class=task.task_class,
            effective_class=TaskClass.BLOCKING,
            exit_status=None,
            succeeded=False,
            stdout=b"",
            stderr=b"",
            duration_seconds=0.0,
            failure_kind=FailureKind.NOT_STARTED,
            reason_code="not_started",
            error=str(error),
        )

    def _preview(self, data: bytes) -> bytes:
        if len(data) <= self.output_preview_bytes:
            return data
        return data[-self.output_preview_bytes :]


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")
