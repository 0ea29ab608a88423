"""Shared test fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from release_gate.campaign.backend import ProcessRunRequest, ProcessRunResult, ProcessStartError


class ScriptedRunner:
    """In-memory process runner keyed by a substring of the joined command."""

    def __init__(self) -> None:
        self.script: dict[str, ProcessRunResult | Exception] = {}
        self.requests: list[ProcessRunRequest] = []

    def fail(self, needle: str, *, exit_status: int = 101, stderr: bytes = b"") -> None:
        self.script[needle] = ProcessRunResult(exit_status=exit_status, stdout=b"", stderr=stderr)

    def time_out(self, needle: str) -> None:
        self.script[needle] = ProcessRunResult(
            exit_status=124,
            stdout=b"",
            stderr=b"",
            timed_out=True,
        )

    def missing(self, needle: str) -> None:
        self.script[needle] = ProcessStartError(f"Command not found: {needle}")

    @property
    def commands(self) -> list[str]:
        return [" ".join(request.command) for request in self.requests]

    def run(self, request: ProcessRunRequest) -> ProcessRunResult:
        self.requests.append(request)
        joined = " ".join(request.command)
        for needle, result in self.script.items():
            if needle in joined:
                if isinstance(result, Exception):
                    raise result
                return result
        return ProcessRunResult(exit_status=0, stdout=f"ok: {joined}\n".encode(), stderr=b"")


@pytest.fixture()
def scripted_runner() -> ScriptedRunner:
    return ScriptedRunner()


@pytest.fixture()
def crate_root(tmp_path: Path) -> Path:
    """Minimal crate tree with three examples and four optional features."""

    root = tmp_path / "crate"
    (root / "examples" / "nested_app").mkdir(parents=True)
    (root / "examples" / "nested_app" / "main.rs").write_text("fn main() {}\n", "utf-8")
    (root / "examples" / "basic_consumer.rs").write_text("fn main() {}\n", "utf-8")
    (root / "examples" / "basic_producer.rs").write_text("fn main() {}\n", "utf-8")
    (root / "examples" / "README.md").write_text("not an example\n", "utf-8")
    (root / "Cargo.toml").write_text(
        "\n".join(
            [
                "[package]",
                'name = "amqprs"',
                'version = "1.0.0"',
                "",
                "[features]",
                "default = []",
                'traces = ["dep:tracing"]',
                "compliance_assert = []",
                'tls = ["dep:tokio-rustls"]',
                'urispec = ["dep:uriparse"]',
                "",
            ],
        ),
        "utf-8",
    )
    return root


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    """Drop RELEASE_GATE_* variables inherited from the developer shell."""

    for name in list(os.environ):
        if name.startswith("RELEASE_GATE_"):
            monkeypatch.delenv(name, raising=False)
