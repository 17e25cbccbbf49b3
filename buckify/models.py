"""Data models for the buckify pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path


class TargetKind(enum.Enum):
    LIBRARY = "library"
    BINARY = "binary"
    TEST = "test"
    BUILD_SCRIPT = "build-script"


class DepKind(enum.Enum):
    NORMAL = "normal"
    DEV = "dev"
    BUILD = "build"


class Os(enum.Enum):
    LINUX = "linux"
    MACOS = "macos"
    WINDOWS = "windows"

    @property
    def key(self) -> str:
        return self.value

    @property
    def buck_label(self) -> str:
        # Canonical prelude constraint values, so selects line up with
        # platform definitions such as `prelude//os/constraints:linux`.
        return f"prelude//os/constraints:{self.value}"


ALL_OSES: frozenset[Os] = frozenset(Os)


class RuleKind(enum.Enum):
    RUST_LIBRARY = "rust_library"
    RUST_BINARY = "rust_binary"
    RUST_TEST = "rust_test"
    BUILDSCRIPT_RUN = "buildscript_run"
    HTTP_ARCHIVE = "http_archive"
    FILEGROUP = "filegroup"
    CARGO_MANIFEST = "cargo_manifest"
    ALIAS = "alias"


class SyncOutcome(enum.Enum):
    UNCHANGED = "unchanged"
    APPLIED = "applied"
    CONFLICT = "conflict"
    REMOVED = "removed"
    FAILED = "failed"


@dataclass(frozen=True)
class CrateNode:
    """One buildable Cargo target of a resolved package."""
    name: str
    version: str
    kind: TargetKind
    target_name: str
    package_id: str
    crate_root: Path
    manifest_dir: Path
    edition: str = "2021"
    first_party: bool = False
    proc_macro: bool = False
    declared_features: frozenset[str] = frozenset()
    enabled_features: frozenset[str] = frozenset()
    links: str | None = None
    is_unittest: bool = False  # lib target built with --test

    @property
    def identity(self) -> tuple[str, str, TargetKind, str]:
        return (self.name, self.version, self.kind, self.target_name)

    @property
    def crate_name(self) -> str:
        return self.target_name.replace("-", "_")


@dataclass(frozen=True)
class DependencyEdge:
    source: CrateNode
    package_id: str
    dep_name: str
    label: str
    kind: DepKind = DepKind.NORMAL
    alias: str | None = None
    predicate: str | None = None  # None means always active


@dataclass(frozen=True)
class ClassifiedEdge:
    """An edge resolved to a Buck label and a platform set.

    ``platforms`` is None for unconditional edges, otherwise a non-empty
    proper subset of all supported operating systems.
    """
    label: str
    alias: str | None = None
    platforms: frozenset[Os] | None = None

    @property
    def unconditional(self) -> bool:
        return self.platforms is None


@dataclass
class GeneratedRule:
    """A single Starlark rule call, independent of formatting."""
    kind: RuleKind
    name: str
    attrs: dict[str, object] = field(default_factory=dict)
    deps: set[str] = field(default_factory=set)
    named_deps: dict[str, str] = field(default_factory=dict)
    os_deps: dict[str, set[str]] = field(default_factory=dict)
    os_named_deps: dict[str, dict[str, str]] = field(default_factory=dict)
    compatible_with: set[str] = field(default_factory=set)
    target_compatible_with: str | None = None  # raw select() expression
    env: dict[str, str] = field(default_factory=dict)
    rustc_flags: set[str] = field(default_factory=set)

    @property
    def is_rust(self) -> bool:
        return self.kind in (RuleKind.RUST_LIBRARY, RuleKind.RUST_BINARY, RuleKind.RUST_TEST)


@dataclass(frozen=True)
class GeneratedFileState:
    """Baseline for one output file: the region text we last wrote."""
    text: str
    fingerprint: str


@dataclass
class BuckFile:
    """Rules destined for one BUCK file, relative to the workspace root."""
    path: Path
    package: str
    rules: list[GeneratedRule] = field(default_factory=list)


@dataclass
class FileResult:
    path: Path
    outcome: SyncOutcome
    message: str = ""


@dataclass
class SyncReport:
    results: list[FileResult] = field(default_factory=list)

    def by_outcome(self, outcome: SyncOutcome) -> list[FileResult]:
        return [r for r in self.results if r.outcome == outcome]

    @property
    def ok(self) -> bool:
        return not any(
            r.outcome in (SyncOutcome.CONFLICT, SyncOutcome.FAILED)
            for r in self.results
        )


@dataclass
class PipelineConfig:
    """Configuration for one regeneration pass."""
    workspace_root: Path = field(default_factory=lambda: Path("."))
    manifest_path: Path | None = None
    metadata_file: Path | None = None
    force: bool = False
    prune: bool = False
    no_cache: bool = False
    state_dir_name: str = ".buckify"

    @property
    def state_dir(self) -> Path:
        return self.workspace_root / self.state_dir_name
