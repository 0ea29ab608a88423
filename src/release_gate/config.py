"""Runtime configuration for the release validation campaign."""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from release_gate.campaign.models import Stage

ENV_PREFIX = "RELEASE_GATE_"

_FILE_KEYS = frozenset(
    {
        "project_root",
        "package",
        "cargo",
        "flags",
        "feature_sets",
        "include_flags",
        "exclusive_groups",
        "example_denylist",
        "timeout_per_task",
        "stage_timeouts",
        "strict_advisory",
        "advisory_failures_fatal",
        "skip_stages",
        "log_dir",
        "output_preview_bytes",
        "graceful_shutdown_seconds",
        "static_tasks",
    },
)
_EMPTY_FEATURE_SET_TOKENS = {"", "none", "-"}


@dataclass(slots=True)
class FeatureSettings:
    """Feature flag vocabulary and combination policy."""

    flags: tuple[str, ...] = ()
    feature_sets: tuple[frozenset[str], ...] | None = None
    include_flags: dict[str, bool] = field(default_factory=dict)
    exclusive_groups: tuple[frozenset[str], ...] = ()


@dataclass(slots=True)
class ExampleSettings:
    """Example discovery settings."""

    denylist: tuple[str, ...] = ()


@dataclass(slots=True)
class ExecutionSettings:
    """Process execution limits and log placement."""

    timeout_per_task_seconds: float = 1800.0
    stage_timeouts: dict[str, float] = field(default_factory=dict)
    graceful_shutdown_seconds: float = 10.0
    output_preview_bytes: int = 64_000
    log_dir: Path = Path(".release-gate/logs")


@dataclass(slots=True)
class PolicySettings:
    """Failure policy and stage selection."""

    strict_advisory: bool = False
    advisory_failures_fatal: bool = True
    skip_stages: tuple[str, ...] = ()


@dataclass(slots=True)
class ToolchainSettings:
    """How the crate toolchain is invoked."""

    cargo: tuple[str, ...] = ("cargo",)
    package: str | None = None
    static_tasks: tuple[dict[str, Any], ...] | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    project_root: Path = Path(".")
    features: FeatureSettings = field(default_factory=FeatureSettings)
    examples: ExampleSettings = field(default_factory=ExampleSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    policy: PolicySettings = field(default_factory=PolicySettings)
    toolchain: ToolchainSettings = field(default_factory=ToolchainSettings)

    @classmethod
    def from_env(
        cls,
        config_path: Path | None = None,
        project_root: Path | None = None,
    ) -> Settings:
        """Load settings: environment first, then the YAML config file, then defaults."""

        if config_path is None and os.getenv(f"{ENV_PREFIX}CONFIG"):
            config_path = Path(os.environ[f"{ENV_PREFIX}CONFIG"])
        file_values = load_config_file(config_path) if config_path is not None else {}
        source = _ValueSource(file_values)

        root = project_root or Path(source.get("PROJECT_ROOT", "project_root", "."))
        static_tasks = file_values.get("static_tasks")
        if static_tasks is not None and not isinstance(static_tasks, list):
            raise ValueError("Config key 'static_tasks' must be a list of mappings.")

        return cls(
            project_root=root,
            features=FeatureSettings(
                flags=_parse_name_list(source.get("FLAGS", "flags", ())),
                feature_sets=_parse_feature_sets(source.get("FEATURE_SETS", "feature_sets", None)),
                include_flags=_parse_include_flags(
                    file_value=file_values.get("include_flags"),
                    excluded=_parse_name_list(os.getenv(f"{ENV_PREFIX}EXCLUDE_FLAGS", "")),
                ),
                exclusive_groups=_parse_exclusive_groups(
                    source.get("EXCLUSIVE_GROUPS", "exclusive_groups", ()),
                ),
            ),
            examples=ExampleSettings(
                denylist=_parse_name_list(source.get("EXAMPLE_DENYLIST", "example_denylist", ())),
            ),
            execution=ExecutionSettings(
                timeout_per_task_seconds=float(
                    source.get("TIMEOUT_PER_TASK_SECONDS", "timeout_per_task", 1800.0),
                ),
                stage_timeouts=_parse_stage_timeouts(
                    source.get("STAGE_TIMEOUTS", "stage_timeouts", {}),
                ),
                graceful_shutdown_seconds=float(
                    source.get("GRACEFUL_SHUTDOWN_SECONDS", "graceful_shutdown_seconds", 10.0),
                ),
                output_preview_bytes=int(
                    source.get("OUTPUT_PREVIEW_BYTES", "output_preview_bytes", 64_000),
                ),
                log_dir=Path(source.get("LOG_DIR", "log_dir", ".release-gate/logs")),
            ),
            policy=PolicySettings(
                strict_advisory=_parse_bool(
                    "STRICT_ADVISORY",
                    source.get("STRICT_ADVISORY", "strict_advisory", False),
                ),
                advisory_failures_fatal=_parse_bool(
                    "ADVISORY_FAILURES_FATAL",
                    source.get("ADVISORY_FAILURES_FATAL", "advisory_failures_fatal", True),
                ),
                skip_stages=_parse_name_list(source.get("SKIP_STAGES", "skip_stages", ())),
            ),
            toolchain=ToolchainSettings(
                cargo=_parse_command(source.get("CARGO", "cargo", "cargo")),
                package=source.get("PACKAGE", "package", None) or None,
                static_tasks=tuple(static_tasks) if static_tasks is not None else None,
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if limits or stage names are invalid."""

        if self.execution.timeout_per_task_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}TIMEOUT_PER_TASK_SECONDS must be > 0.")
        if self.execution.graceful_shutdown_seconds < 0:
            raise ValueError(f"{ENV_PREFIX}GRACEFUL_SHUTDOWN_SECONDS must be >= 0.")
        if self.execution.output_preview_bytes <= 0:
            raise ValueError(f"{ENV_PREFIX}OUTPUT_PREVIEW_BYTES must be a positive integer.")
        for stage_name, seconds in self.execution.stage_timeouts.items():
            _validate_stage_name(stage_name, setting="STAGE_TIMEOUTS")
            if seconds <= 0:
                raise ValueError(
                    f"Stage timeout must be positive: {stage_name!r} -> {seconds!r}",
                )
        for stage_name in self.policy.skip_stages:
            _validate_stage_name(stage_name, setting="SKIP_STAGES")
        if not self.toolchain.cargo:
            raise ValueError(f"{ENV_PREFIX}CARGO must not be empty.")
        if len(set(self.features.flags)) != len(self.features.flags):
            raise ValueError(f"{ENV_PREFIX}FLAGS contains duplicate flag names.")

    @property
    def resolved_log_dir(self) -> Path:
        """Log directory, relative paths anchored at the project root."""

        if self.execution.log_dir.is_absolute():
            return self.execution.log_dir
        return self.project_root / self.execution.log_dir

    @property
    def skipped_stages(self) -> frozenset[Stage]:
        return frozenset(Stage(name) for name in self.policy.skip_stages)


def load_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML mapping of recognized options."""

    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except FileNotFoundError as error:
        raise ValueError(f"Config file not found: {path}") from error
    except yaml.YAMLError as error:
        raise ValueError(f"Invalid YAML in {path}: {error}") from error

    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")

    unknown = sorted(str(key) for key in payload if key not in _FILE_KEYS)
    if unknown:
        raise ValueError(f"Unknown config key(s) in {path}: {', '.join(unknown)}")
    return dict(payload)


class _ValueSource:
    """Environment variable first, then config file, then default."""

    def __init__(self, file_values: Mapping[str, Any]) -> None:
        self.file_values = file_values

    def get(self, env_name: str, file_key: str, default: Any) -> Any:
        value = os.getenv(f"{ENV_PREFIX}{env_name}")
        if value is not None:
            return value
        return self.file_values.get(file_key, default)


def _parse_name_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise ValueError(f"Expected a comma-separated string or list, got {value!r}")

    deduped: list[str] = []
    for item in items:
        normalized = item.strip()
        if normalized and normalized not in deduped:
            deduped.append(normalized)
    return tuple(deduped)


def parse_feature_set(value: Any) -> frozenset[str]:
    """Parse ``tls,traces``, ``tls+traces``, ``none`` or a list of flags."""

    if isinstance(value, str):
        token = value.strip()
        if token.lower() in _EMPTY_FEATURE_SET_TOKENS:
            return frozenset()
        parts = token.replace("+", ",").split(",")
        return frozenset(part.strip() for part in parts if part.strip())
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(str(part).strip() for part in value if str(part).strip())
    if value is None:
        return frozenset()
    raise ValueError(f"Invalid feature set: {value!r}")


def _parse_feature_sets(value: Any) -> tuple[frozenset[str], ...] | None:
    """Parse ``none;tls;tls+traces`` or a YAML list of lists/strings."""

    if value is None:
        return None
    if isinstance(value, str):
        return tuple(parse_feature_set(part) for part in value.split(";"))
    if isinstance(value, (list, tuple)):
        return tuple(parse_feature_set(part) for part in value)
    raise ValueError(f"Invalid feature_sets value: {value!r}")


def _parse_exclusive_groups(value: Any) -> tuple[frozenset[str], ...]:
    if isinstance(value, str):
        groups = [parse_feature_set(part) for part in value.split(";") if part.strip()]
    elif isinstance(value, (list, tuple)):
        groups = [parse_feature_set(part) for part in value]
    else:
        raise ValueError(f"Invalid exclusive_groups value: {value!r}")
    return tuple(group for group in groups if group)


def _parse_include_flags(*, file_value: Any, excluded: tuple[str, ...]) -> dict[str, bool]:
    include_flags: dict[str, bool] = {}
    if file_value is not None:
        if not isinstance(file_value, Mapping):
            raise ValueError("Config key 'include_flags' must be a mapping of flag -> bool.")
        for flag, included in file_value.items():
            include_flags[str(flag)] = _parse_bool("include_flags", included)
    for flag in excluded:
        include_flags[flag] = False
    return include_flags


def _parse_stage_timeouts(value: Any) -> dict[str, float]:
    """Parse ``docs=600,tests=3600`` or a YAML mapping."""

    if isinstance(value, Mapping):
        items = [(str(key), raw) for key, raw in value.items()]
    elif isinstance(value, str):
        items = []
        for part in value.split(","):
            token = part.strip()
            if not token:
                continue
            if "=" not in token:
                raise ValueError(
                    f"Invalid {ENV_PREFIX}STAGE_TIMEOUTS entry: "
                    f"{token!r}. Expected format '<stage>=<seconds>'.",
                )
            stage_name, raw = token.split("=", 1)
            items.append((stage_name.strip(), raw.strip()))
    else:
        raise ValueError(f"Invalid stage_timeouts value: {value!r}")

    timeouts: dict[str, float] = {}
    for stage_name, raw in items:
        try:
            timeouts[stage_name.lower()] = float(raw)
        except (TypeError, ValueError) as error:
            raise ValueError(f"Invalid timeout for stage {stage_name!r}: {raw!r}") from error
    return timeouts


def _parse_command(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(shlex.split(value))
    if isinstance(value, (list, tuple)):
        return tuple(str(part) for part in value)
    raise ValueError(f"Invalid cargo command: {value!r}")


def _parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")


def _validate_stage_name(value: str, *, setting: str) -> None:
    valid = {stage.value for stage in Stage}
    if value not in valid:
        raise ValueError(
            f"Invalid stage in {ENV_PREFIX}{setting}: {value!r}. "
            f"Expected one of: {', '.join(stage.value for stage in Stage)}",
        )
