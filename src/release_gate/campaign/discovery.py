"""Discovery of dynamic validation targets: examples and feature sets."""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from release_gate.campaign.models import ExampleTarget, FeatureSet

logger = logging.getLogger(__name__)

CARGO_MANIFEST = "Cargo.toml"
EXAMPLES_DIR = "examples"


class DiscoveryError(RuntimeError):
    """Source tree or discovery policy cannot be read."""


@dataclass(slots=True)
class FeatureSetPolicy:
    """Which feature combinations are worth a full test run.

    ``feature_sets`` is an explicit list and wins when given. Otherwise the
    baseline (no features) plus every flag on its own is used, minus flags
    mapped to ``False`` in ``include_flags``.
    """

    feature_sets: tuple[frozenset[str], ...] | None = None
    include_flags: dict[str, bool] = field(default_factory=dict)
    exclusive_groups: tuple[frozenset[str], ...] = ()


def discover_examples(
    source_root: Path,
    denylist: tuple[str, ...] | list[str] = (),
) -> tuple[ExampleTarget, ...]:
    """Return example programs of the crate at ``source_root``, sorted by name."""

    _ensure_readable_root(source_root)
    denied = set(denylist)
    found: dict[str, ExampleTarget] = {}
    for target in _iter_examples(source_root):
        if target.name in denied:
            logger.debug("Skipping denylisted example %s", target.name)
            continue
        found.setdefault(target.name, target)
    return tuple(found[name] for name in sorted(found))


def discover_feature_flags(source_root: Path) -> tuple[str, ...]:
    """Return the optional feature names declared in ``Cargo.toml``."""

    _ensure_readable_root(source_root)
    manifest = _read_manifest(source_root)
    features = manifest.get("features", {})
    if not isinstance(features, Mapping):
        raise DiscoveryError(f"[features] in {source_root / CARGO_MANIFEST} is not a table.")
    return tuple(sorted(name for name in features if name != "default"))


def discover_feature_sets(
    known_flags: tuple[str, ...] | list[str],
    policy: FeatureSetPolicy,
) -> tuple[FeatureSet, ...]:
    """Return the configured feature combinations in declared order."""

    vocabulary = set(known_flags)
    unknown_policy_flags = sorted(set(policy.include_flags) - vocabulary)
    if unknown_policy_flags:
        raise DiscoveryError(
            f"Feature policy references unknown flag(s): {', '.join(unknown_policy_flags)}",
        )

    if policy.feature_sets is not None:
        candidates = [frozenset(flags) for flags in policy.feature_sets]
    else:
        candidates = [frozenset()]
        candidates.extend(
            frozenset({flag})
            for flag in known_flags
            if policy.include_flags.get(flag, True)
        )

    result: list[FeatureSet] = []
    seen: set[frozenset[str]] = set()
    for flags in candidates:
        unknown = sorted(flags - vocabulary)
        if unknown:
            raise DiscoveryError(f"Feature set uses unknown flag(s): {', '.join(unknown)}")
        for group in policy.exclusive_groups:
            clashing = flags & group
            if len(clashing) > 1:
                raise DiscoveryError(
                    "Feature set combines mutually exclusive flags: "
                    f"{', '.join(sorted(clashing))}",
                )
        if flags in seen:
            continue
        seen.add(flags)
        result.append(FeatureSet.of(flags))
    return tuple(result)


def _iter_examples(source_root: Path) -> Iterator[ExampleTarget]:
    manifest = _read_manifest(source_root)
    package = manifest.get("package", {})
    auto_examples = True
    if isinstance(package, Mapping):
        auto_examples = bool(package.get("autoexamples", True))

    declared = manifest.get("example", [])
    if not isinstance(declared, list):
        raise DiscoveryError(f"[[example]] in {source_root / CARGO_MANIFEST} is not an array.")
    for entry in declared:
        if not isinstance(entry, Mapping) or not isinstance(entry.get("name"), str):
            raise DiscoveryError(f"[[example]] entry without a name in {source_root}.")
        name = entry["name"]
        path = entry.get("path") or f"{EXAMPLES_DIR}/{name}.rs"
        yield ExampleTarget(name=name, path=source_root / path)

    if auto_examples:
        yield from _scan_examples_dir(source_root / EXAMPLES_DIR)


def _scan_examples_dir(examples_dir: Path) -> Iterator[ExampleTarget]:
    if not examples_dir.is_dir():
        return
    try:
        entries = sorted(examples_dir.iterdir())
    except OSError as error:
        raise DiscoveryError(f"Cannot read examples directory {examples_dir}: {error}") from error

    for entry in entries:
        if entry.is_file() and entry.suffix == ".rs":
            yield ExampleTarget(name=entry.stem, path=entry)
        elif entry.is_dir() and (entry / "main.rs").is_file():
            yield ExampleTarget(name=entry.name, path=entry / "main.rs")


def _read_manifest(source_root: Path) -> dict[str, Any]:
    manifest_path = source_root / CARGO_MANIFEST
    if not manifest_path.is_file():
        return {}
    try:
        with manifest_path.open("rb") as handle:
            return tomllib.load(handle)
    except OSError as error:
        raise DiscoveryError(f"Cannot read {manifest_path}: {error}") from error
    except tomllib.TOMLDecodeError as error:
        raise DiscoveryError(f"Invalid TOML in {manifest_path}: {error}") from error


def _ensure_readable_root(source_root: Path) -> None:
    if not source_root.is_dir():
        raise DiscoveryError(f"Source root is not a readable directory: {source_root}")
    try:
        next(source_root.iterdir(), None)
    except OSError as error:
        raise DiscoveryError(f"Cannot read source root {source_root}: {error}") from error
