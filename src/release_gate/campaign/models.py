"""Domain models for the release validation campaign."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class TaskClass(str, Enum):
    """Failure policy class of a task."""

    BLOCKING = "blocking"
    ADVISORY = "advisory"


class Stage(str, Enum):
    """Campaign stages in their fixed execution order."""

    EXAMPLES = "examples"
    TESTS = "tests"
    LINT = "lint"
    DOCS = "docs"
    MSRV = "msrv"
    PUBLISH = "publish"


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)


class PipelineState(str, Enum):
    """Pipeline controller lifecycle states."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class FailureKind(str, Enum):
    """Normalized reasons a task did not succeed."""

    EXIT_NONZERO = "exit_nonzero"
    TIMEOUT = "timeout"
    NOT_STARTED = "not_started"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True, slots=True)
class Task:
    """One externally executed validation step."""

    task_id: str
    command: tuple[str, ...]
    task_class: TaskClass
    description: str
    stage: Stage
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.command:
            raise ValueError(f"Task {self.task_id!r} has an empty command.")


@dataclass(frozen=True, slots=True)
class FeatureSet:
    """A named combination of optional crate features."""

    name: str
    flags: frozenset[str]

    @classmethod
    def of(cls, flags: frozenset[str] | set[str] | tuple[str, ...]) -> FeatureSet:
        """Build a feature set named after its sorted flags."""

        frozen = frozenset(flags)
        return cls(name=feature_set_name(frozen), flags=frozen)


@dataclass(frozen=True, slots=True)
class ExampleTarget:
    """One example program discovered in the source tree."""

    name: str
    path: Path


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    """Result of executing one task."""

    task_id: str
    task_class: TaskClass
    effective_class: TaskClass
    exit_status: int | None
    succeeded: bool
    stdout: bytes
    stderr: bytes
    duration_seconds: float
    failure_kind: FailureKind | None = None
    reason_code: str | None = None
    error: str | None = None
    stdout_path: Path | None = None
    stderr_path: Path | None = None
    failure_details: Mapping[str, object] | None = None

    @property
    def escalated(self) -> bool:
        """True when the failure was promoted from advisory to blocking."""

        return self.task_class != self.effective_class


@dataclass(frozen=True, slots=True)
class Report:
    """Finalized, read-only record of one pipeline run."""

    outcomes: tuple[TaskOutcome, ...]
    state: PipelineState
    overall_passed: bool
    first_failure: str | None
    not_run: tuple[str, ...]
    advisory_failures: tuple[str, ...]
    interrupted: bool
    duration_seconds: float

    @property
    def executed_ids(self) -> tuple[str, ...]:
        """Task ids in execution order."""

        return tuple(outcome.task_id for outcome in self.outcomes)

    def outcome_for(self, task_id: str) -> TaskOutcome | None:
        """Return the outcome recorded for ``task_id`` if it ran."""

        for outcome in self.outcomes:
            if outcome.task_id == task_id:
                return outcome
        return None


def feature_set_name(flags: frozenset[str]) -> str:
    """Stable display name for a feature combination."""

    if not flags:
        return "none"
    return "+".join(sorted(flags))
