from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import allure
import pytest

from release_gate.campaign.models import (
    FailureKind,
    PipelineState,
    Report,
    Stage,
    Task,
    TaskClass,
    TaskOutcome,
)
from release_gate.campaign.report import (
    EXIT_ADVISORY_FAILURE,
    EXIT_BLOCKING_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_PASSED,
    OUTPUT_TAIL_LINES,
    exit_code_for,
    render_plan_lines,
    render_report_lines,
    write_report_json,
)

pytestmark = [
    allure.epic("Release Campaign"),
    allure.feature("Report"),
]


def _outcome(
    task_id: str,
    *,
    succeeded: bool = True,
    task_class: TaskClass = TaskClass.BLOCKING,
    effective_class: TaskClass | None = None,
    stderr: bytes = b"",
) -> TaskOutcome:
    return TaskOutcome(
        task_id=task_id,
        task_class=task_class,
        effective_class=effective_class or task_class,
        exit_status=0 if succeeded else 101,
        succeeded=succeeded,
        stdout=b"",
        stderr=stderr,
        duration_seconds=1.2,
        failure_kind=None if succeeded else FailureKind.EXIT_NONZERO,
        reason_code=None if succeeded else "compile_error",
        error=None if succeeded else "Exited with status 101",
        stdout_path=None if succeeded else Path("logs/x.stdout.log"),
        stderr_path=None if succeeded else Path("logs/x.stderr.log"),
    )


def _report(
    outcomes: tuple[TaskOutcome, ...],
    *,
    state: PipelineState = PipelineState.COMPLETED,
    overall_passed: bool = True,
    first_failure: str | None = None,
    not_run: tuple[str, ...] = (),
    advisory_failures: tuple[str, ...] = (),
    interrupted: bool = False,
) -> Report:
    return Report(
        outcomes=outcomes,
        state=state,
        overall_passed=overall_passed,
        first_failure=first_failure,
        not_run=not_run,
        advisory_failures=advisory_failures,
        interrupted=interrupted,
        duration_seconds=2.5,
    )


@pytest.mark.parametrize(
    ("report", "expected"),
    [
        (_report((_outcome("lint"),)), EXIT_PASSED),
        (
            _report(
                (_outcome("lint", succeeded=False),),
                state=PipelineState.ABORTED,
                overall_passed=False,
                first_failure="lint",
            ),
            EXIT_BLOCKING_FAILURE,
        ),
        (
            _report(
                (_outcome("docs", succeeded=False, task_class=TaskClass.ADVISORY),),
                overall_passed=False,
                first_failure="docs",
                advisory_failures=("docs",),
            ),
            EXIT_ADVISORY_FAILURE,
        ),
        (
            _report(
                (),
                state=PipelineState.ABORTED,
                overall_passed=False,
                not_run=("lint",),
                interrupted=True,
            ),
            EXIT_INTERRUPTED,
        ),
    ],
)
def test_exit_code_for_report(report: Report, expected: int) -> None:
    assert exit_code_for(report) == expected


def test_render_plan_lines_numbers_tasks() -> None:
    tasks = [
        Task(
            task_id="lint",
            command=("cargo", "clippy"),
            task_class=TaskClass.BLOCKING,
            description="clippy",
            stage=Stage.LINT,
        ),
        Task(
            task_id="docs",
            command=("cargo", "doc"),
            task_class=TaskClass.ADVISORY,
            description="docs",
            stage=Stage.DOCS,
        ),
    ]

    lines = render_plan_lines(tasks)

    assert lines[0] == "Release plan (2 task(s)):"
    assert lines[1] == "   1. lint [blocking] clippy: cargo clippy"
    assert lines[2] == "   2. docs [advisory] docs: cargo doc"


def test_render_report_lines_for_aborted_run() -> None:
    report = _report(
        (
            _outcome("example:basic"),
            _outcome("test:tls", succeeded=False, stderr=b"error: could not compile\n"),
        ),
        state=PipelineState.ABORTED,
        overall_passed=False,
        first_failure="test:tls",
        not_run=("lint", "docs"),
    )

    lines = render_report_lines(report)

    assert lines[0] == "Release check report:"
    assert lines[1] == "  [PASS] example:basic (blocking) 1.2s"
    assert lines[2] == "  [FAIL] test:tls (blocking) 1.2s exit=101 reason=compile_error"
    assert "      error: Exited with status 101" in lines
    assert "      error: could not compile" in lines
    assert "Not run (2): lint, docs" in lines
    assert "First failure: test:tls" in lines
    assert lines[-1] == "Release check status: failed"


def test_render_report_marks_escalated_advisory_tasks() -> None:
    report = _report(
        (
            _outcome(
                "docs",
                succeeded=False,
                task_class=TaskClass.ADVISORY,
                effective_class=TaskClass.BLOCKING,
            ),
        ),
        state=PipelineState.ABORTED,
        overall_passed=False,
        first_failure="docs",
    )

    lines = render_report_lines(report, show_output=False)

    assert lines[1].startswith("  [FAIL] docs (advisory->blocking)")


def test_render_report_tails_long_output() -> None:
    stderr = "\n".join(f"line {index}" for index in range(100)).encode()
    report = _report(
        (_outcome("lint", succeeded=False, stderr=stderr),),
        state=PipelineState.ABORTED,
        overall_passed=False,
        first_failure="lint",
    )

    lines = render_report_lines(report)

    assert f"      --- stderr (last {OUTPUT_TAIL_LINES} line(s)) ---" in lines
    assert "      line 99" in lines
    assert "      line 0" not in lines


def test_render_report_hides_output_when_quiet() -> None:
    report = _report(
        (_outcome("lint", succeeded=False, stderr=b"noise\n"),),
        state=PipelineState.ABORTED,
        overall_passed=False,
        first_failure="lint",
    )

    lines = render_report_lines(report, show_output=False)

    assert "      noise" not in lines


def test_render_report_lines_for_passed_run() -> None:
    lines = render_report_lines(_report((_outcome("lint"),)))

    assert not any(line.startswith("First failure") for line in lines)
    assert lines[-1] == "Release check status: passed"


def test_write_report_json(tmp_path: Path) -> None:
    report = _report(
        (
            _outcome("lint"),
            replace(
                _outcome("docs", succeeded=False, task_class=TaskClass.ADVISORY),
                failure_details={"matched_rule": "compile_error", "classifier_version": 1},
            ),
        ),
        overall_passed=False,
        first_failure="docs",
        advisory_failures=("docs",),
    )
    target = tmp_path / "out" / "report.json"

    write_report_json(report, target)

    payload = json.loads(target.read_text("utf-8"))
    assert payload["state"] == "completed"
    assert payload["overall_passed"] is False
    assert payload["first_failure"] == "docs"
    assert payload["exit_code"] == EXIT_ADVISORY_FAILURE
    assert [item["task_id"] for item in payload["outcomes"]] == ["lint", "docs"]
    assert payload["outcomes"][1]["failure_kind"] == "exit_nonzero"
    assert payload["outcomes"][1]["stderr_path"] == str(Path("logs/x.stderr.log"))
    assert payload["outcomes"][0]["failure_details"] is None
    assert payload["outcomes"][1]["failure_details"] == {
        "matched_rule": "compile_error",
        "classifier_version": 1,
    }
