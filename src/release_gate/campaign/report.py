"""Rendering and export of campaign reports."""

from __future__ import annotations

import json
from pathlib import Path

from release_gate.campaign.models import PipelineState, Report, Task, TaskOutcome

EXIT_PASSED = 0
EXIT_BLOCKING_FAILURE = 1
EXIT_ADVISORY_FAILURE = 3
EXIT_SETUP_FAILURE = 4
EXIT_INTERRUPTED = 130

OUTPUT_TAIL_LINES = 40


def exit_code_for(report: Report) -> int:
    """Process exit code: zero iff the report passed."""

    if report.overall_passed:
        return EXIT_PASSED
    if report.interrupted:
        return EXIT_INTERRUPTED
    if report.state == PipelineState.ABORTED:
        return EXIT_BLOCKING_FAILURE
    return EXIT_ADVISORY_FAILURE


def render_plan_lines(tasks: tuple[Task, ...] | list[Task]) -> list[str]:
    """Render the expanded queue without running it."""

    lines = [f"Release plan ({len(tasks)} task(s)):"]
    for index, task in enumerate(tasks, start=1):
        lines.append(
            f"  {index:>2}. {task.task_id} [{task.task_class.value}] "
            f"{task.description}: {' '.join(task.command)}",
        )
    return lines


def render_report_lines(report: Report, *, show_output: bool = True) -> list[str]:
    """Render operator-facing report lines for CLI output."""

    lines = ["Release check report:"]
    for outcome in report.outcomes:
        lines.append("  " + _outcome_line(outcome))
        if outcome.succeeded:
            continue
        if outcome.error:
            lines.append(f"      error: {outcome.error}")
        if outcome.stderr_path is not None:
            lines.append(f"      logs: {outcome.stdout_path} {outcome.stderr_path}")
        if show_output:
            lines.extend(_output_tail("stdout", outcome.stdout))
            lines.extend(_output_tail("stderr", outcome.stderr))

    if report.not_run:
        lines.append(f"Not run ({len(report.not_run)}): {', '.join(report.not_run)}")
    if report.advisory_failures:
        lines.append("Advisory failures: " + ", ".join(report.advisory_failures))
    if report.interrupted:
        lines.append("Run was interrupted.")
    lines.append(
        f"Pipeline state: {report.state.value} "
        f"(executed={len(report.outcomes)} duration={report.duration_seconds:.1f}s)",
    )
    if report.first_failure is not None:
        lines.append(f"First failure: {report.first_failure}")
    lines.append(f"Release check status: {'passed' if report.overall_passed else 'failed'}")
    return lines


def report_to_dict(report: Report) -> dict[str, object]:
    """Serialize a report for JSON export."""

    return {
        "state": report.state.value,
        "overall_passed": report.overall_passed,
        "first_failure": report.first_failure,
        "not_run": list(report.not_run),
        "advisory_failures": list(report.advisory_failures),
        "interrupted": report.interrupted,
        "duration_seconds": round(report.duration_seconds, 3),
        "exit_code": exit_code_for(report),
        "outcomes": [_outcome_to_dict(outcome) for outcome in report.outcomes],
    }


def write_report_json(report: Report, path: Path) -> None:
    """Write the report as JSON, creating parent directories."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report_to_dict(report), indent=2) + "\n", "utf-8")


def _outcome_to_dict(outcome: TaskOutcome) -> dict[str, object]:
    return {
        "task_id": outcome.task_id,
        "task_class": outcome.task_class.value,
        "effective_class": outcome.effective_class.value,
        "succeeded": outcome.succeeded,
        "exit_status": outcome.exit_status,
        "duration_seconds": round(outcome.duration_seconds, 3),
        "failure_kind": outcome.failure_kind.value if outcome.failure_kind else None,
        "reason_code": outcome.reason_code,
        "error": outcome.error,
        "stdout_path": str(outcome.stdout_path) if outcome.stdout_path else None,
        "stderr_path": str(outcome.stderr_path) if outcome.stderr_path else None,
        "failure_details": dict(outcome.failure_details) if outcome.failure_details else None,
    }


def _outcome_line(outcome: TaskOutcome) -> str:
    status = "PASS" if outcome.succeeded else "FAIL"
    klass = outcome.task_class.value
    if outcome.escalated:
        klass = f"{klass}->{outcome.effective_class.value}"
    line = f"[{status}] {outcome.task_id} ({klass}) {outcome.duration_seconds:.1f}s"
    if not outcome.succeeded:
        exit_text = "-" if outcome.exit_status is None else str(outcome.exit_status)
        line += f" exit={exit_text} reason={outcome.reason_code}"
    return line


def _output_tail(label: str, data: bytes) -> list[str]:
    text = data.decode("utf-8", errors="replace").rstrip()
    if not text:
        return []
    tail = text.splitlines()[-OUTPUT_TAIL_LINES:]
    return [f"      --- {label} (last {len(tail)} line(s)) ---"] + [
        f"      {line}" for line in tail
    ]
