"""Deterministic classification of failed toolchain invocations for reporting."""

from __future__ import annotations

from dataclasses import dataclass

from release_gate.campaign.models import FailureKind, Stage

FAILURE_CLASSIFIER_VERSION = 1

_TOOL_MISSING_PATTERNS: tuple[str, ...] = (
    "no such command",
    "no such subcommand",
    "is not installed",
    "command not found",
)
_LINT_DENIED_PATTERNS: tuple[str, ...] = (
    "implied by `-d warnings`",
    "#[deny(",
    "could not compile due to previous error; warnings emitted",
)
_MSRV_PATTERNS: tuple[str, ...] = (
    "is not compatible",
    "is incompatible",
    "minimum supported rust version",
    "rust-version",
)
_PACKAGE_INVALID_PATTERNS: tuple[str, ...] = (
    "failed to verify package tarball",
    "uncommitted changes",
    "failed to prepare local package for uploading",
    "all dependencies must have a version specified",
)
_TEST_FAILED_PATTERNS: tuple[str, ...] = (
    "test result: failed",
    "test failed, to rerun pass",
    "panicked at",
)
_COMPILE_ERROR_PATTERNS: tuple[str, ...] = (
    "could not compile",
    "error[e",
    "aborting due to",
)


@dataclass(slots=True)
class TaskFailureClassification:
    """Normalized failure classification result."""

    failure_kind: FailureKind
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    def to_details(self) -> dict[str, object]:
        """Serialize classifier diagnostics for reports."""

        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "failure_kind": self.failure_kind.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_task_failure(
    *,
    stage: Stage,
    exit_status: int,
    stdout: str,
    stderr: str,
) -> TaskFailureClassification:
    """Classify a nonzero exit into a stage-aware reason code."""

    haystack = _normalize_text(stdout=stdout, stderr=stderr)

    pattern = _first_match(haystack, _TOOL_MISSING_PATTERNS)
    if pattern is not None:
        return _classification("tool_missing", pattern)

    if stage == Stage.LINT:
        pattern = _first_match(haystack, _LINT_DENIED_PATTERNS)
        if pattern is not None:
            return _classification("lint_denied", pattern)

    if stage == Stage.MSRV:
        pattern = _first_match(haystack, _MSRV_PATTERNS)
        if pattern is not None:
            return _classification("msrv_incompatible", pattern)

    if stage == Stage.PUBLISH:
        pattern = _first_match(haystack, _PACKAGE_INVALID_PATTERNS)
        if pattern is not None:
            return _classification("package_invalid", pattern)

    if stage in {Stage.TESTS, Stage.EXAMPLES}:
        pattern = _first_match(haystack, _TEST_FAILED_PATTERNS)
        if pattern is not None:
            return _classification(
                "test_failed" if stage == Stage.TESTS else "example_panicked",
                pattern,
            )

    pattern = _first_match(haystack, _COMPILE_ERROR_PATTERNS)
    if pattern is not None:
        return _classification("compile_error", pattern)

    return TaskFailureClassification(
        failure_kind=FailureKind.EXIT_NONZERO,
        reason_code=f"exit_status_{exit_status}",
        matched_rule="fallback_exit_status",
        matched_pattern=None,
    )


def _classification(rule: str, pattern: str) -> TaskFailureClassification:
    return TaskFailureClassification(
        failure_kind=FailureKind.EXIT_NONZERO,
        reason_code=rule,
        matched_rule=rule,
        matched_pattern=pattern,
    )


def _normalize_text(*, stdout: str, stderr: str) -> str:
    return f"{stderr}\n{stdout}".lower()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
