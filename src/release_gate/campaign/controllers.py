"""Controller for the release-gate CLI command."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from release_gate.campaign.backend import ProcessRunner, SubprocessRunner
from release_gate.campaign.discovery import (
    DiscoveryError,
    FeatureSetPolicy,
    discover_examples,
    discover_feature_flags,
    discover_feature_sets,
)
from release_gate.campaign.executor import TaskExecutor, TimeoutPolicy
from release_gate.campaign.expansion import (
    ExpansionError,
    StaticTaskSpec,
    Toolchain,
    default_static_tasks,
    expand,
    parse_static_tasks,
)
from release_gate.campaign.models import Stage, Task
from release_gate.campaign.pipeline import PipelineController
from release_gate.campaign.report import (
    EXIT_PASSED,
    EXIT_SETUP_FAILURE,
    exit_code_for,
    render_plan_lines,
    render_report_lines,
    write_report_json,
)
from release_gate.config import Settings, parse_feature_set

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReleaseGateCommand:
    """CLI input for one release check run."""

    project_root: Path | None = None
    config_path: Path | None = None
    package: str | None = None
    skip_stages: tuple[str, ...] = ()
    feature_sets: tuple[str, ...] = ()
    deny_examples: tuple[str, ...] = ()
    timeout_seconds: float | None = None
    strict_advisory: bool | None = None
    advisory_failures_fatal: bool | None = None
    plan_only: bool = False
    report_json: Path | None = None
    show_output: bool = True


@dataclass(slots=True)
class ReleaseGateResult:
    """Lines to render plus the process exit code."""

    lines: list[str]
    exit_code: int


class ReleaseGateCliController:
    """Coordinates settings, discovery, expansion and the pipeline run."""

    def __init__(self, *, runner: ProcessRunner | None = None) -> None:
        self.runner = runner

    def run(self, command: ReleaseGateCommand) -> ReleaseGateResult:
        try:
            settings = _settings_for(command)
            tasks = plan_tasks(settings)
        except ValueError as error:
            return _setup_failure("Configuration error", error)
        except DiscoveryError as error:
            return _setup_failure("Discovery error", error)
        except ExpansionError as error:
            return _setup_failure("Expansion error", error)

        if command.plan_only:
            return ReleaseGateResult(
                lines=render_plan_lines(tasks),
                exit_code=EXIT_PASSED,
            )

        executor = TaskExecutor(
            runner=self.runner or SubprocessRunner(),
            cwd=settings.project_root,
            log_dir=settings.resolved_log_dir,
            timeouts=TimeoutPolicy(
                default_seconds=settings.execution.timeout_per_task_seconds,
                per_stage={
                    Stage(name): seconds
                    for name, seconds in settings.execution.stage_timeouts.items()
                },
            ),
            output_preview_bytes=settings.execution.output_preview_bytes,
            graceful_shutdown_seconds=settings.execution.graceful_shutdown_seconds,
        )
        controller = PipelineController(
            executor=executor,
            strict_advisory=settings.policy.strict_advisory,
            advisory_failures_fatal=settings.policy.advisory_failures_fatal,
        )
        report = controller.run(tasks)

        lines = render_report_lines(report, show_output=command.show_output)
        if command.report_json is not None:
            write_report_json(report, command.report_json)
            lines.append(f"Report written: {command.report_json}")
        return ReleaseGateResult(lines=lines, exit_code=exit_code_for(report))


def plan_tasks(settings: Settings) -> tuple[Task, ...]:
    """Discover targets and expand them into the ordered task queue."""

    skipped = settings.skipped_stages
    toolchain = Toolchain(cargo=settings.toolchain.cargo, package=settings.toolchain.package)
    root = settings.project_root

    examples = ()
    if Stage.EXAMPLES not in skipped:
        examples = discover_examples(root, settings.examples.denylist)
        logger.info("Discovered %d example(s)", len(examples))

    feature_sets = ()
    if Stage.TESTS not in skipped:
        flags = settings.features.flags or discover_feature_flags(root)
        feature_sets = discover_feature_sets(
            flags,
            FeatureSetPolicy(
                feature_sets=settings.features.feature_sets,
                include_flags=settings.features.include_flags,
                exclusive_groups=settings.features.exclusive_groups,
            ),
        )
        logger.info("Using %d feature set(s)", len(feature_sets))

    static_tasks: tuple[StaticTaskSpec, ...]
    if settings.toolchain.static_tasks is not None:
        static_tasks = parse_static_tasks(settings.toolchain.static_tasks, toolchain=toolchain)
    else:
        static_tasks = default_static_tasks(toolchain)
    static_tasks = tuple(spec for spec in static_tasks if spec.stage not in skipped)

    return expand(examples, feature_sets, static_tasks, toolchain=toolchain)


def _settings_for(command: ReleaseGateCommand) -> Settings:
    settings = Settings.from_env(
        config_path=command.config_path,
        project_root=command.project_root,
    )
    if command.package is not None:
        settings.toolchain.package = command.package
    if command.skip_stages:
        settings.policy.skip_stages = tuple(
            dict.fromkeys((*settings.policy.skip_stages, *command.skip_stages)),
        )
    if command.feature_sets:
        settings.features.feature_sets = tuple(
            parse_feature_set(value) for value in command.feature_sets
        )
    if command.deny_examples:
        settings.examples.denylist = tuple(
            dict.fromkeys((*settings.examples.denylist, *command.deny_examples)),
        )
    if command.timeout_seconds is not None:
        settings.execution.timeout_per_task_seconds = command.timeout_seconds
    if command.strict_advisory is not None:
        settings.policy.strict_advisory = command.strict_advisory
    if command.advisory_failures_fatal is not None:
        settings.policy.advisory_failures_fatal = command.advisory_failures_fatal
    settings.validate()
    return settings


def _setup_failure(title: str, error: Exception) -> ReleaseGateResult:
    logger.error("%s: %s", title, error)
    return ReleaseGateResult(
        lines=[f"{title}: {error}", "Release check status: not started"],
        exit_code=EXIT_SETUP_FAILURE,
    )
