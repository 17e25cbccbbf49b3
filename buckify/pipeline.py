"""Regeneration pipeline: metadata -> cfg -> graph -> rules -> sync."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from buckify.command_runner import CommandRunner, SubprocessCommandRunner
from buckify.config import RepoConfig, load_repo_config
from buckify.diagnostics import Diagnostics
from buckify.emitter import RuleEmitter, render_buck_file
from buckify.graph import GraphBuilder
from buckify.metadata import MetadataLoader, WorkspaceMetadata
from buckify.models import BuckFile, PipelineConfig, SyncReport
from buckify.platform import CfgSnapshotStore, PlatformMapper
from buckify.sync import BaselineStore, SyncEngine, WorkspaceLock

logger = logging.getLogger(__name__)

CFG_CACHE_FILE = "cfg-cache.json"
BASELINE_FILE = "baseline.json"
LOCK_FILE = "lock"

ProgressCallback = Callable[[str, int, int], None]


@dataclass
class PipelineResult:
    report: SyncReport
    diagnostics: Diagnostics
    files: list[BuckFile] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.report.ok and not self.diagnostics.has_errors


def workspace_lock(config: PipelineConfig) -> WorkspaceLock:
    return WorkspaceLock(config.state_dir / LOCK_FILE)


def load_workspace(config: PipelineConfig, runner: CommandRunner | None = None) -> WorkspaceMetadata:
    loader = MetadataLoader(runner)
    if config.metadata_file is not None:
        return loader.load_file(config.metadata_file, config.manifest_path)
    return loader.load(config.workspace_root, config.manifest_path)


def regenerate(
    config: PipelineConfig,
    runner: CommandRunner | None = None,
    progress: ProgressCallback | None = None,
    diagnostics: Diagnostics | None = None,
    cfg_store: CfgSnapshotStore | None = None,
) -> PipelineResult:
    """Run one regeneration pass. The caller is expected to hold the workspace lock."""
    runner = runner or SubprocessCommandRunner()
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()

    # Stage 1: Resolve
    if progress:
        progress("Resolving", 0, 1)
    ws = load_workspace(config, runner)
    root = ws.workspace_root
    if root.resolve() != config.workspace_root.resolve():
        logger.debug("workspace root from metadata is %s (given %s)", root, config.workspace_root)
    repo_config = load_repo_config(root)
    if progress:
        progress("Resolving", 1, 1)

    # Stage 2: Platform facts
    if progress:
        progress("Probing platforms", 0, 1)
    if cfg_store is None:
        cfg_store = CfgSnapshotStore(
            cache_path=config.state_dir / CFG_CACHE_FILE,
            runner=runner,
            read_cache=not config.no_cache,
        )
    cfg_store.ensure(diagnostics)
    if progress:
        progress("Probing platforms", 1, 1)

    # Stage 3: Graph + rules
    files = emit_files(ws, repo_config, cfg_store, diagnostics)
    rendered: dict[str, str] = {}
    for i, buck in enumerate(files):
        if progress:
            progress("Generating", i, len(files))
        logger.info("Flushing %s", _display(buck))
        rendered[buck.path.as_posix()] = render_buck_file(buck)
    if progress:
        progress("Generating", len(files), len(files))

    # Stage 4: Sync
    engine = SyncEngine(
        root,
        BaselineStore(config.state_dir / BASELINE_FILE),
        diagnostics,
        force=config.force,
        prune_root=repo_config.crates_dir,
    )
    stale = engine.stale(rendered)

    def on_file(index: int, total: int, rel: str) -> None:
        if progress:
            progress("Syncing", index, total)

    report = engine.sync(rendered, prune=config.prune, on_file=on_file)
    if progress:
        progress("Syncing", len(report.results), len(report.results))

    if stale and not config.prune:
        diagnostics.note(
            "sync",
            f"{len(stale)} generated file(s) no longer correspond to any crate; "
            "run `cargo-buckify autoremove` to delete them",
        )
    return PipelineResult(report=report, diagnostics=diagnostics, files=files, stale=stale)


def emit_files(
    ws: WorkspaceMetadata,
    repo_config: RepoConfig,
    cfg_store: CfgSnapshotStore,
    diagnostics: Diagnostics,
) -> list[BuckFile]:
    graph = GraphBuilder(repo_config).build(ws)
    mapper = PlatformMapper(cfg_store, diagnostics)
    emitter = RuleEmitter(graph, mapper, repo_config, ws.checksums, diagnostics)
    return emitter.emit_all()


def run_migrate(
    config: PipelineConfig,
    runner: CommandRunner | None = None,
    progress: ProgressCallback | None = None,
    cfg_store: CfgSnapshotStore | None = None,
) -> PipelineResult:
    """Regenerate every BUCK file of the workspace under the workspace lock."""
    with workspace_lock(config):
        return regenerate(config, runner=runner, progress=progress, cfg_store=cfg_store)


def _display(buck: BuckFile) -> str:
    name, _, version = buck.package.partition(" ")
    return f"{name} v{version}" if version else name
