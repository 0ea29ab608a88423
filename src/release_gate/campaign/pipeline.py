"""Pipeline controller: drives the task queue with fail-fast policy."""

from __future__ import annotations

import logging
import signal
import time
from collections import deque
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import replace

from release_gate.campaign.executor import ExecutionError, TaskExecutor
from release_gate.campaign.models import (
    PipelineState,
    Report,
    Task,
    TaskClass,
    TaskOutcome,
)

logger = logging.getLogger(__name__)


class ReportBuilder:
    """Accumulates outcomes; finalized exactly once."""

    def __init__(self) -> None:
        self._outcomes: list[TaskOutcome] = []
        self._started = time.monotonic()
        self._report: Report | None = None

    def append(self, outcome: TaskOutcome) -> None:
        if self._report is not None:
            raise RuntimeError("Report is already finalized.")
        self._outcomes.append(outcome)

    def finalize(  # noqa: PLR0913
        self,
        *,
        state: PipelineState,
        aborted_by: str | None,
        not_run: Sequence[str],
        advisory_failures_fatal: bool,
        interrupted: bool,
    ) -> Report:
        if self._report is not None:
            raise RuntimeError("Report is already finalized.")
        advisory_failures = tuple(
            outcome.task_id
            for outcome in self._outcomes
            if not outcome.succeeded and outcome.effective_class == TaskClass.ADVISORY
        )
        overall_passed = state == PipelineState.COMPLETED and not (
            advisory_failures and advisory_failures_fatal
        )
        first_failure = aborted_by
        if first_failure is None and advisory_failures:
            first_failure = advisory_failures[0]
        self._report = Report(
            outcomes=tuple(self._outcomes),
            state=state,
            overall_passed=overall_passed,
            first_failure=first_failure,
            not_run=tuple(not_run),
            advisory_failures=advisory_failures,
            interrupted=interrupted,
            duration_seconds=time.monotonic() - self._started,
        )
        return self._report


class PipelineController:
    """Runs tasks sequentially in expansion order.

    A failed blocking task (or any task escalated to blocking: not started,
    timed out, interrupted) aborts the queue. Advisory failures are recorded
    and the queue continues, unless ``strict_advisory`` escalates them.
    """

    def __init__(
        self,
        *,
        executor: TaskExecutor,
        strict_advisory: bool = False,
        advisory_failures_fatal: bool = True,
        on_outcome: Callable[[Task, TaskOutcome], None] | None = None,
        handle_signals: bool = True,
    ) -> None:
        self.executor = executor
        self.strict_advisory = strict_advisory
        self.advisory_failures_fatal = advisory_failures_fatal
        self.on_outcome = on_outcome
        self.handle_signals = handle_signals
        self._state = PipelineState.IDLE
        self._stop_requested = False

    @property
    def state(self) -> PipelineState:
        return self._state

    def request_stop(self, *, reason: str = "requested") -> None:
        """Ask the controller to stop after terminating the running task."""

        if not self._stop_requested:
            logger.warning("Stop requested (%s); remaining tasks will not run", reason)
        self._stop_requested = True

    def run(self, tasks: Sequence[Task]) -> Report:
        """Execute ``tasks`` and return the finalized report."""

        if self._state != PipelineState.IDLE:
            raise RuntimeError(f"Pipeline already ran (state={self._state.value}).")
        queue: deque[Task] = deque(tasks)
        builder = ReportBuilder()
        self._state = PipelineState.RUNNING
        logger.info("Pipeline started with %d task(s)", len(queue))

        aborted_by: str | None = None
        sequence = 0
        with self._signal_handlers():
            while queue:
                if self._stop_requested:
                    self._state = PipelineState.ABORTED
                    break
                task = queue.popleft()
                sequence += 1
                outcome = self._execute(task, sequence)
                builder.append(outcome)
                if self.on_outcome is not None:
                    self.on_outcome(task, outcome)

                if outcome.succeeded:
                    logger.info("Task %s passed in %.1fs", task.task_id, outcome.duration_seconds)
                    continue
                if outcome.effective_class == TaskClass.BLOCKING:
                    logger.error(
                        "Blocking task %s failed (%s); aborting %d remaining task(s)",
                        task.task_id,
                        outcome.reason_code,
                        len(queue),
                    )
                    aborted_by = task.task_id
                    self._state = PipelineState.ABORTED
                    break
                logger.warning(
                    "Advisory task %s failed (%s); continuing",
                    task.task_id,
                    outcome.reason_code,
                )

        if self._state == PipelineState.RUNNING:
            self._state = PipelineState.COMPLETED
        report = builder.finalize(
            state=self._state,
            aborted_by=aborted_by,
            not_run=[task.task_id for task in queue],
            advisory_failures_fatal=self.advisory_failures_fatal,
            interrupted=self._stop_requested,
        )
        logger.info(
            "Pipeline %s: passed=%s executed=%d not_run=%d",
            report.state.value,
            report.overall_passed,
            len(report.outcomes),
            len(report.not_run),
        )
        return report

    def _execute(self, task: Task, sequence: int) -> TaskOutcome:
        logger.info("Task %s started: %s", task.task_id, task.description)
        try:
            outcome = self.executor.execute(
                task,
                shutdown_requested=lambda: self._stop_requested,
                sequence=sequence,
            )
        except ExecutionError as error:
            logger.error("%s", error)
            return self.executor.not_started_outcome(task, error)

        if (
            not outcome.succeeded
            and self.strict_advisory
            and outcome.effective_class == TaskClass.ADVISORY
        ):
            return _escalate(outcome)
        return outcome

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not self.handle_signals or not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(reason=name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def _escalate(outcome: TaskOutcome) -> TaskOutcome:
    return replace(outcome, effective_class=TaskClass.BLOCKING)
