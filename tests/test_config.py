from __future__ import annotations

from pathlib import Path

import allure
import pytest

from release_gate.campaign.models import Stage
from release_gate.config import Settings, load_config_file, parse_feature_set

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings"),
]


def _write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "release-gate.yaml"
    path.write_text(text, "utf-8")
    return path


def test_defaults_without_env_or_file() -> None:
    settings = Settings.from_env()
    settings.validate()

    assert settings.project_root == Path(".")
    assert settings.execution.timeout_per_task_seconds == 1800.0
    assert settings.policy.strict_advisory is False
    assert settings.policy.advisory_failures_fatal is True
    assert settings.toolchain.cargo == ("cargo",)
    assert settings.toolchain.static_tasks is None
    assert settings.features.feature_sets is None
    assert settings.examples.denylist == ()


def test_env_values_are_parsed(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("RELEASE_GATE_PROJECT_ROOT", str(tmp_path))
    monkeypatch.setenv("RELEASE_GATE_FLAGS", "tls, traces,tls")
    monkeypatch.setenv("RELEASE_GATE_FEATURE_SETS", "none;tls;tls+traces")
    monkeypatch.setenv("RELEASE_GATE_EXCLUDE_FLAGS", "compliance_assert")
    monkeypatch.setenv("RELEASE_GATE_EXCLUSIVE_GROUPS", "tls,rustls")
    monkeypatch.setenv("RELEASE_GATE_EXAMPLE_DENYLIST", "basic_consumer")
    monkeypatch.setenv("RELEASE_GATE_TIMEOUT_PER_TASK_SECONDS", "90")
    monkeypatch.setenv("RELEASE_GATE_STAGE_TIMEOUTS", "docs=600, tests=3600")
    monkeypatch.setenv("RELEASE_GATE_STRICT_ADVISORY", "yes")
    monkeypatch.setenv("RELEASE_GATE_ADVISORY_FAILURES_FATAL", "0")
    monkeypatch.setenv("RELEASE_GATE_SKIP_STAGES", "msrv")
    monkeypatch.setenv("RELEASE_GATE_CARGO", "cargo +nightly")
    monkeypatch.setenv("RELEASE_GATE_PACKAGE", "amqprs")

    settings = Settings.from_env()
    settings.validate()

    assert settings.project_root == tmp_path
    assert settings.features.flags == ("tls", "traces")
    assert settings.features.feature_sets == (
        frozenset(),
        frozenset({"tls"}),
        frozenset({"tls", "traces"}),
    )
    assert settings.features.include_flags == {"compliance_assert": False}
    assert settings.features.exclusive_groups == (frozenset({"tls", "rustls"}),)
    assert settings.examples.denylist == ("basic_consumer",)
    assert settings.execution.timeout_per_task_seconds == 90.0
    assert settings.execution.stage_timeouts == {"docs": 600.0, "tests": 3600.0}
    assert settings.policy.strict_advisory is True
    assert settings.policy.advisory_failures_fatal is False
    assert settings.skipped_stages == frozenset({Stage.MSRV})
    assert settings.toolchain.cargo == ("cargo", "+nightly")
    assert settings.toolchain.package == "amqprs"


def test_yaml_config_file_is_loaded(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path,
        "\n".join(
            [
                "package: amqprs",
                "flags: [traces, compliance_assert, tls, urispec]",
                "feature_sets:",
                "  - []",
                "  - [tls]",
                "  - tls+traces",
                "include_flags:",
                "  compliance_assert: false",
                "example_denylist: [basic_consumer]",
                "timeout_per_task: 120",
                "stage_timeouts:",
                "  docs: 30",
                "log_dir: build/logs",
                "static_tasks:",
                "  - id: lint",
                "    command: cargo clippy -- -Dwarnings",
                "",
            ],
        ),
    )

    settings = Settings.from_env(config_path=config_path, project_root=tmp_path)
    settings.validate()

    assert settings.toolchain.package == "amqprs"
    assert settings.features.flags == ("traces", "compliance_assert", "tls", "urispec")
    assert settings.features.feature_sets == (
        frozenset(),
        frozenset({"tls"}),
        frozenset({"tls", "traces"}),
    )
    assert settings.features.include_flags == {"compliance_assert": False}
    assert settings.examples.denylist == ("basic_consumer",)
    assert settings.execution.timeout_per_task_seconds == 120.0
    assert settings.execution.stage_timeouts == {"docs": 30.0}
    assert settings.resolved_log_dir == tmp_path / "build" / "logs"
    assert settings.toolchain.static_tasks == (
        {"id": "lint", "command": "cargo clippy -- -Dwarnings"},
    )


def test_env_overrides_config_file(monkeypatch, tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, "timeout_per_task: 120\npackage: from-file\n")
    monkeypatch.setenv("RELEASE_GATE_TIMEOUT_PER_TASK_SECONDS", "5")

    settings = Settings.from_env(config_path=config_path)

    assert settings.execution.timeout_per_task_seconds == 5.0
    assert settings.toolchain.package == "from-file"


def test_config_path_can_come_from_env(monkeypatch, tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, "strict_advisory: true\n")
    monkeypatch.setenv("RELEASE_GATE_CONFIG", str(config_path))

    settings = Settings.from_env()

    assert settings.policy.strict_advisory is True


def test_empty_config_file_is_accepted(tmp_path: Path) -> None:
    assert load_config_file(_write_config(tmp_path, "")) == {}


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("timeout: 5\nflavor: x\n", "Unknown config key"),
        ("- a\n- b\n", "must contain a YAML mapping"),
        ("flags: [unclosed\n", "Invalid YAML"),
    ],
)
def test_malformed_config_file_is_rejected(tmp_path: Path, text: str, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        load_config_file(_write_config(tmp_path, text))


def test_missing_config_file_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Config file not found"):
        Settings.from_env(config_path=tmp_path / "missing.yaml")


@pytest.mark.parametrize(
    ("env_name", "value", "message"),
    [
        ("RELEASE_GATE_TIMEOUT_PER_TASK_SECONDS", "0", "must be > 0"),
        ("RELEASE_GATE_GRACEFUL_SHUTDOWN_SECONDS", "-1", "must be >= 0"),
        ("RELEASE_GATE_OUTPUT_PREVIEW_BYTES", "0", "positive integer"),
        ("RELEASE_GATE_STAGE_TIMEOUTS", "docs=0", "Stage timeout must be positive"),
        ("RELEASE_GATE_STAGE_TIMEOUTS", "bench=10", "Invalid stage"),
        ("RELEASE_GATE_SKIP_STAGES", "bench", "Invalid stage"),
        ("RELEASE_GATE_CARGO", "", "must not be empty"),
    ],
)
def test_validate_rejects_invalid_values(
    monkeypatch,
    env_name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(env_name, value)

    settings = Settings.from_env()

    with pytest.raises(ValueError, match=message):
        settings.validate()


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("RELEASE_GATE_STRICT_ADVISORY", "sometimes")

    with pytest.raises(ValueError, match="Invalid boolean value"):
        Settings.from_env()


def test_malformed_stage_timeout_entry_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("RELEASE_GATE_STAGE_TIMEOUTS", "docs")

    with pytest.raises(ValueError, match="Expected format"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("none", frozenset()),
        ("", frozenset()),
        ("tls", frozenset({"tls"})),
        ("tls,traces", frozenset({"tls", "traces"})),
        (" tls + traces ", frozenset({"tls", "traces"})),
        (["urispec"], frozenset({"urispec"})),
    ],
)
def test_parse_feature_set(value, expected: frozenset[str]) -> None:
    assert parse_feature_set(value) == expected
