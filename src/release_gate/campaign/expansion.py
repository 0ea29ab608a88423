"""Expansion of discovered targets and static checks into one ordered task queue."""

from __future__ import annotations

import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from release_gate.campaign.models import (
    ExampleTarget,
    FeatureSet,
    Stage,
    Task,
    TaskClass,
)

_DYNAMIC_STAGES = {Stage.EXAMPLES, Stage.TESTS}


class ExpansionError(RuntimeError):
    """Static task declarations are duplicated or malformed."""


@dataclass(frozen=True, slots=True)
class Toolchain:
    """How to invoke cargo for the crate under validation."""

    cargo: tuple[str, ...] = ("cargo",)
    package: str | None = None

    def command(self, *args: str) -> tuple[str, ...]:
        return (*self.cargo, *args)

    def package_args(self) -> tuple[str, ...]:
        if self.package is None:
            return ()
        return ("-p", self.package)


@dataclass(frozen=True, slots=True)
class StaticTaskSpec:
    """Declaration of one trailing, non-discovered check."""

    task_id: str
    command: tuple[str, ...]
    task_class: TaskClass
    stage: Stage
    description: str = ""
    env: Mapping[str, str] = field(default_factory=dict)


def default_static_tasks(toolchain: Toolchain) -> tuple[StaticTaskSpec, ...]:
    """Lint, docs, MSRV and publish dry run with their default classes."""

    package_args = toolchain.package_args()
    return (
        StaticTaskSpec(
            task_id="lint",
            command=toolchain.command("clippy", "--all-features", "--", "-Dwarnings"),
            task_class=TaskClass.BLOCKING,
            stage=Stage.LINT,
            description="clippy with warnings denied",
        ),
        StaticTaskSpec(
            task_id="docs",
            command=toolchain.command("doc", *package_args, "--all-features", "--no-deps"),
            task_class=TaskClass.ADVISORY,
            stage=Stage.DOCS,
            description="documentation build",
        ),
        StaticTaskSpec(
            task_id="msrv",
            command=toolchain.command("msrv", "verify"),
            task_class=TaskClass.ADVISORY,
            stage=Stage.MSRV,
            description="minimum supported Rust version check",
        ),
        StaticTaskSpec(
            task_id="publish",
            command=toolchain.command("publish", *package_args, "--all-features", "--dry-run"),
            task_class=TaskClass.BLOCKING,
            stage=Stage.PUBLISH,
            description="publish dry run",
        ),
    )


def parse_static_tasks(
    raw: Sequence[Mapping[str, Any]],
    *,
    toolchain: Toolchain,
) -> tuple[StaticTaskSpec, ...]:
    """Build static task declarations from config mappings.

    Commands may be a list of arguments or a string; a leading ``cargo``
    token is replaced by the configured cargo invocation.
    """

    specs: list[StaticTaskSpec] = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            raise ExpansionError(f"Static task #{index} must be a mapping.")
        task_id = entry.get("id")
        if not isinstance(task_id, str) or not task_id.strip():
            raise ExpansionError(f"Static task #{index} has no id.")
        command = _parse_command(entry.get("command"), task_id=task_id, toolchain=toolchain)
        try:
            task_class = TaskClass(str(entry.get("class", TaskClass.BLOCKING.value)).lower())
        except ValueError as error:
            raise ExpansionError(
                f"Static task {task_id!r} has unknown class {entry.get('class')!r}.",
            ) from error
        try:
            stage = Stage(str(entry.get("stage", task_id)).lower())
        except ValueError as error:
            raise ExpansionError(
                f"Static task {task_id!r} has unknown stage {entry.get('stage', task_id)!r}.",
            ) from error
        if stage in _DYNAMIC_STAGES:
            raise ExpansionError(
                f"Static task {task_id!r} cannot use discovered stage {stage.value!r}.",
            )
        env = entry.get("env") or {}
        if not isinstance(env, Mapping):
            raise ExpansionError(f"Static task {task_id!r} env must be a mapping.")
        specs.append(
            StaticTaskSpec(
                task_id=task_id.strip(),
                command=command,
                task_class=task_class,
                stage=stage,
                description=str(entry.get("description", "")),
                env={str(key): str(value) for key, value in env.items()},
            ),
        )
    return tuple(specs)


def expand(
    examples: Sequence[ExampleTarget],
    feature_sets: Sequence[FeatureSet],
    static_tasks: Sequence[StaticTaskSpec],
    *,
    toolchain: Toolchain | None = None,
) -> tuple[Task, ...]:
    """Build the ordered queue: examples, feature-set test runs, static tasks."""

    toolchain = toolchain or Toolchain()
    tasks: list[Task] = []
    for example in examples:
        tasks.append(
            Task(
                task_id=f"example:{example.name}",
                command=toolchain.command(
                    "run",
                    "--release",
                    "--all-features",
                    "--example",
                    example.name,
                ),
                task_class=TaskClass.BLOCKING,
                description=f"run example {example.name} with all features",
                stage=Stage.EXAMPLES,
            ),
        )

    for feature_set in feature_sets:
        args = ["test"]
        if feature_set.flags:
            args.extend(["-F", ",".join(sorted(feature_set.flags))])
        tasks.append(
            Task(
                task_id=f"test:{feature_set.name}",
                command=toolchain.command(*args),
                task_class=TaskClass.BLOCKING,
                description=f"test suite with features: {feature_set.name}",
                stage=Stage.TESTS,
            ),
        )

    for spec in static_tasks:
        if not spec.command:
            raise ExpansionError(f"Static task {spec.task_id!r} has an empty command.")
        tasks.append(
            Task(
                task_id=spec.task_id,
                command=tuple(spec.command),
                task_class=spec.task_class,
                description=spec.description or spec.task_id,
                stage=spec.stage,
                env=dict(spec.env),
            ),
        )

    _ensure_unique_ids(tasks)
    return tuple(tasks)


def _ensure_unique_ids(tasks: list[Task]) -> None:
    seen: set[str] = set()
    for task in tasks:
        if task.task_id in seen:
            raise ExpansionError(f"Duplicate task id: {task.task_id!r}")
        seen.add(task.task_id)


def _parse_command(value: object, *, task_id: str, toolchain: Toolchain) -> tuple[str, ...]:
    if isinstance(value, str):
        parts = shlex.split(value)
    elif isinstance(value, (list, tuple)) and all(isinstance(part, str) for part in value):
        parts = list(value)
    else:
        raise ExpansionError(f"Static task {task_id!r} command must be a string or list.")
    if not parts:
        raise ExpansionError(f"Static task {task_id!r} has an empty command.")
    if parts[0] == "cargo":
        return toolchain.command(*parts[1:])
    return tuple(parts)
