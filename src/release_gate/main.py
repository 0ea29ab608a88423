"""CLI entrypoint for release-gate."""

import logging
from pathlib import Path

import rich_click as click

from release_gate import __version__
from release_gate.campaign.controllers import ReleaseGateCliController, ReleaseGateCommand
from release_gate.campaign.models import Stage

click.rich_click.USE_MARKDOWN = True
RELEASE_GATE_CONTROLLER = ReleaseGateCliController()
STAGE_CHOICES = [stage.value for stage in Stage]


@click.command()
@click.version_option(version=__version__, prog_name="release-gate")
@click.option(
    "--project-root",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Crate root containing Cargo.toml. Defaults to RELEASE_GATE_PROJECT_ROOT or cwd.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="YAML config file. Defaults to RELEASE_GATE_CONFIG.",
)
@click.option("--package", default=None, help="Cargo package passed as `-p` to docs/publish.")
@click.option(
    "--skip-stage",
    "skip_stages",
    multiple=True,
    type=click.Choice(STAGE_CHOICES, case_sensitive=False),
    help="Stage to skip. Can be repeated.",
)
@click.option(
    "--feature-set",
    "feature_sets",
    multiple=True,
    help="Feature combination to test, e.g. `none` or `tls,traces`. Can be repeated.",
)
@click.option(
    "--deny-example",
    "deny_examples",
    multiple=True,
    help="Example name to exclude. Can be repeated.",
)
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Default per-task timeout.",
)
@click.option(
    "--strict-advisory/--no-strict-advisory",
    default=None,
    help="Abort the queue on advisory failures (docs, msrv) like blocking ones.",
)
@click.option(
    "--advisory-failures-fatal/--advisory-failures-nonfatal",
    default=None,
    help="Whether advisory failures fail the overall verdict.",
)
@click.option(
    "--plan/--run",
    "plan_only",
    default=False,
    show_default=True,
    help="Print the expanded task queue without running anything.",
)
@click.option(
    "--report-json",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Write the final report as JSON.",
)
@click.option(
    "--show-output/--quiet-output",
    default=True,
    show_default=True,
    help="Include captured output of failed tasks in the report.",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
@click.pass_context
def release_gate(  # noqa: PLR0913
    ctx: click.Context,
    project_root: Path | None,
    config_path: Path | None,
    package: str | None,
    skip_stages: tuple[str, ...],
    feature_sets: tuple[str, ...],
    deny_examples: tuple[str, ...],
    timeout_seconds: float | None,
    strict_advisory: bool | None,
    advisory_failures_fatal: bool | None,
    plan_only: bool,
    report_json: Path | None,
    show_output: bool,
    verbose: bool,
) -> None:
    """Run the pre-release validation campaign for a Cargo crate.

    Examples run first, then the test suite per feature set, then lint,
    docs, MSRV and a publish dry run. Exit code is 0 only when every check
    passed.
    """

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    result = RELEASE_GATE_CONTROLLER.run(
        ReleaseGateCommand(
            project_root=project_root,
            config_path=config_path,
            package=package,
            skip_stages=tuple(stage.lower() for stage in skip_stages),
            feature_sets=feature_sets,
            deny_examples=deny_examples,
            timeout_seconds=timeout_seconds,
            strict_advisory=strict_advisory,
            advisory_failures_fatal=advisory_failures_fatal,
            plan_only=plan_only,
            report_json=report_json,
            show_output=show_output,
        ),
    )
    _emit_lines(result.lines)
    ctx.exit(result.exit_code)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    release_gate()
