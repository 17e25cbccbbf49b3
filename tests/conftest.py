"""Shared fixtures: a small Cargo workspace on disk and a scripted command runner."""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from buckify.command_runner import CommandError, CommandResult, CommandRunner
from buckify.metadata import build_workspace_metadata, parse_metadata
from buckify.models import PipelineConfig
from buckify.platform import CfgSnapshot, CfgSnapshotStore, parse_cfg_output

FIXTURES = Path(__file__).parent / "fixtures"
CFG_DIR = FIXTURES / "cfg"
RUSTC_VERSION = "rustc 1.79.0 (129f3b996 2024-06-10)"
FIXTURE_TRIPLES = ("aarch64-apple-darwin", "x86_64-pc-windows-msvc", "x86_64-unknown-linux-gnu")


class FakeRunner(CommandRunner):
    """Answers cargo/rustc invocations from fixture data and records every call."""

    def __init__(self, root: Path, metadata: str):
        self.root = root
        self.metadata = metadata
        self.calls: list[list[str]] = []
        self.search_results: dict[str, str] = {}
        self.failing: set[str] = set()

    def run(self, command, *, cwd=None, check=True, stream=False) -> CommandResult:
        command = list(command)
        self.calls.append(command)
        stdout, code = self._answer(command)
        result = CommandResult(command, code, stdout, "" if code == 0 else "scripted failure", streamed=stream)
        if check and code != 0:
            raise CommandError(result)
        return result

    def _answer(self, command: list[str]) -> tuple[str, int]:
        head = " ".join(command[:2])
        if head in self.failing:
            return "", 101
        if command[:2] == ["cargo", "metadata"]:
            return self.metadata, 0
        if command[:2] == ["cargo", "locate-project"]:
            return f"{self.root / 'Cargo.toml'}\n", 0
        if command[:2] == ["cargo", "search"]:
            name = command[2]
            if name in self.search_results:
                return f'{name} = "{self.search_results[name]}"    # a crate\n', 0
            return "", 0
        if command[:2] == ["cargo", "update"]:
            return "", 0
        if command == ["rustc", "--version"]:
            return RUSTC_VERSION + "\n", 0
        if command[:2] == ["rustc", "--print=cfg"]:
            dump = CFG_DIR / f"{command[-1]}.cfg"
            if dump.exists():
                return dump.read_text(), 0
            return "", 1
        return "", 127

    def commands(self, prefix: str) -> list[list[str]]:
        return [c for c in self.calls if " ".join(c).startswith(prefix)]


def load_snapshots(version: str = RUSTC_VERSION) -> list[CfgSnapshot]:
    return [
        CfgSnapshot(triple=t, rustc_version=version, facts=parse_cfg_output((CFG_DIR / f"{t}.cfg").read_text()))
        for t in FIXTURE_TRIPLES
    ]


def metadata_text(root: Path) -> str:
    return (FIXTURES / "metadata.json").read_text().replace("/WORKSPACE", root.as_posix())


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A two-member workspace: `demo` at the root and `demo-util` in crates/util."""
    root = tmp_path / "ws"
    (root / "src").mkdir(parents=True)
    (root / "tests").mkdir()
    (root / "crates" / "util" / "src").mkdir(parents=True)
    shutil.copy(FIXTURES / "Cargo.toml", root / "Cargo.toml")
    shutil.copy(FIXTURES / "Cargo.lock", root / "Cargo.lock")
    shutil.copy(FIXTURES / "util-Cargo.toml", root / "crates" / "util" / "Cargo.toml")
    (root / "src" / "lib.rs").write_text("pub fn hello() {}\n")
    (root / "src" / "main.rs").write_text("fn main() { demo::hello() }\n")
    (root / "build.rs").write_text("fn main() {}\n")
    (root / "tests" / "smoke.rs").write_text("#[test]\nfn smoke() {}\n")
    (root / "crates" / "util" / "src" / "lib.rs").write_text("\n")
    (root / "metadata.json").write_text(metadata_text(root))
    return root


@pytest.fixture
def runner(workspace: Path) -> FakeRunner:
    return FakeRunner(workspace, metadata_text(workspace))


@pytest.fixture
def cfg_store() -> CfgSnapshotStore:
    return CfgSnapshotStore.from_snapshots(load_snapshots(), rustc_version=RUSTC_VERSION)


@pytest.fixture
def ws_metadata(workspace: Path):
    return build_workspace_metadata(parse_metadata(metadata_text(workspace)))


@pytest.fixture
def config(workspace: Path) -> PipelineConfig:
    return PipelineConfig(workspace_root=workspace, metadata_file=workspace / "metadata.json")
