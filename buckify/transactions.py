"""Dependency edits that end in a regeneration pass.

Each transaction holds the workspace lock, snapshots the files it may
touch, edits them, and regenerates with pruning. If the graph cannot be
resolved afterwards, or anything else fails before the pass completes,
the snapshots are restored.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from buckify.command_runner import CommandError, CommandRunner, SubprocessCommandRunner
from buckify.diagnostics import Diagnostics
from buckify.errors import ManifestError, MetadataError
from buckify.manifest import DEP_TABLES, DependencySpec, Manifest
from buckify.models import DepKind, PipelineConfig, SyncOutcome
from buckify.pipeline import PipelineResult, ProgressCallback, load_workspace, regenerate, workspace_lock
from buckify.platform import CfgSnapshotStore
from buckify.sync import atomic_write_bytes

logger = logging.getLogger(__name__)

_SEARCH_LINE = re.compile(r'^(?P<name>[A-Za-z0-9_-]+)\s*=\s*"(?P<version>[^"]+)"')


@dataclass
class TransactionResult:
    changes: list[str] = field(default_factory=list)
    pipeline: PipelineResult | None = None
    out_of_sync: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.out_of_sync and (self.pipeline is None or self.pipeline.ok)


class Snapshot:
    """Byte-for-byte copies of files, restorable after a failed transaction."""

    def __init__(self, paths: Iterable[Path]):
        self._saved: dict[Path, bytes | None] = {}
        for path in paths:
            if path in self._saved:
                continue
            try:
                self._saved[path] = path.read_bytes()
            except FileNotFoundError:
                self._saved[path] = None

    @property
    def paths(self) -> list[Path]:
        return list(self._saved)

    def restore(self) -> None:
        for path, content in self._saved.items():
            if content is None:
                path.unlink(missing_ok=True)
            else:
                atomic_write_bytes(path, content)
            logger.debug("restored %s", path)


def fetch_latest_version(runner: CommandRunner, name: str, cwd: Path | None = None) -> str:
    """Newest published version of ``name`` according to `cargo search`."""
    try:
        result = runner.run(["cargo", "search", name, "--limit", "1"], cwd=cwd)
    except CommandError as e:
        raise ManifestError(f"cannot look up the latest version of `{name}`: {e}") from e
    for line in result.stdout.splitlines():
        match = _SEARCH_LINE.match(line.strip())
        if match and match.group("name") == name:
            return match.group("version")
    raise ManifestError(f"could not determine the latest version of `{name}`")


class Transaction:
    """One add / remove / update / autoremove invocation."""

    def __init__(
        self,
        config: PipelineConfig,
        runner: CommandRunner | None = None,
        progress: ProgressCallback | None = None,
        cfg_store: CfgSnapshotStore | None = None,
    ):
        self.config = dataclasses.replace(config, prune=True)
        self.runner = runner or SubprocessCommandRunner()
        self.progress = progress
        self.cfg_store = cfg_store
        self.diagnostics = Diagnostics()

    @property
    def root_manifest(self) -> Path:
        return self.config.workspace_root / "Cargo.toml"

    @property
    def member_manifest(self) -> Path:
        return self.config.manifest_path or self.root_manifest

    @property
    def lock_file(self) -> Path:
        return self.config.workspace_root / "Cargo.lock"

    # ── Operations ────────────────────────────────────────────

    def add(self, spec: DependencySpec) -> TransactionResult:
        with workspace_lock(self.config):
            return self._run([self.root_manifest, self.member_manifest], lambda: self._add(spec))

    def remove(
        self,
        names: list[str],
        kind: DepKind = DepKind.NORMAL,
        target: str | None = None,
        workspace: bool = False,
    ) -> TransactionResult:
        with workspace_lock(self.config):
            return self._run(
                [self.root_manifest, self.member_manifest],
                lambda: self._remove(names, kind, target, workspace),
            )

    def update(self, names: list[str] | None = None, workspace_only: bool = False, dry_run: bool = False) -> TransactionResult:
        command = ["cargo", "update"]
        if workspace_only:
            command.append("--workspace")
        if dry_run:
            command.append("--dry-run")
        command.extend(names or [])

        with workspace_lock(self.config):
            if dry_run:
                self._cargo(command)
                return TransactionResult(changes=["dry run: nothing regenerated"])
            return self._run([], lambda: self._update(command))

    def autoremove(self) -> TransactionResult:
        with workspace_lock(self.config):
            return self._run([], lambda: [])

    # ── Machinery ─────────────────────────────────────────────

    def _run(self, manifests: list[Path], edit) -> TransactionResult:
        snapshot = Snapshot([*manifests, self.lock_file])
        try:
            changes = edit()
            pipeline = regenerate(
                self.config,
                runner=self.runner,
                progress=self.progress,
                diagnostics=self.diagnostics,
                cfg_store=self.cfg_store,
            )
        except Exception:
            logger.warning("Rolling back %s", ", ".join(str(p) for p in snapshot.paths))
            snapshot.restore()
            raise

        result = TransactionResult(changes=changes, pipeline=pipeline)
        result.out_of_sync = [
            r.path.as_posix()
            for r in pipeline.report.results
            if r.outcome in (SyncOutcome.CONFLICT, SyncOutcome.FAILED)
        ]
        if result.out_of_sync:
            self.diagnostics.warn(
                "sync",
                "Cargo.toml was updated but these BUCK files are out of sync: "
                + ", ".join(result.out_of_sync),
            )
        return result

    def _cargo(self, command: list[str]) -> None:
        try:
            self.runner.run(command, cwd=self.config.workspace_root, stream=True)
        except CommandError as e:
            raise MetadataError(str(e)) from e

    def _update(self, command: list[str]) -> list[str]:
        self._cargo(command)
        return ["updated Cargo.lock"]

    def _add(self, spec: DependencySpec) -> list[str]:
        changes: list[str] = []
        version = spec.version or fetch_latest_version(self.runner, spec.name, self.config.workspace_root)

        if spec.workspace:
            root = Manifest.load(self.root_manifest)
            if root.add_workspace_dependency(spec.key, version, package=spec.name):
                root.save()
                changes.append(f"added {spec.key} v{version} to [workspace.dependencies]")
            else:
                changes.append(f"{spec.key} is already in [workspace.dependencies]")
            if self.member_manifest == self.root_manifest and root.package_name is None:
                return changes
            member_spec = dataclasses.replace(spec, version=None)
        else:
            member_spec = dataclasses.replace(spec, version=version)

        member = Manifest.load(self.member_manifest)
        table = _table_name(spec.kind, spec.target)
        if member.add_dependency(member_spec):
            member.save()
            changes.append(f"added {spec.key} to {table} of {_display_manifest(member)}")
        else:
            changes.append(f"{spec.key} is already in {table} of {_display_manifest(member)}")
        return changes

    def _remove(self, names: list[str], kind: DepKind, target: str | None, workspace: bool) -> list[str]:
        changes: list[str] = []
        member = Manifest.load(self.member_manifest)
        table = _table_name(kind, target)
        removed = []
        for name in names:
            if member.remove_dependency(name, kind, target):
                removed.append(name)
                changes.append(f"removed {name} from {table} of {_display_manifest(member)}")
            else:
                changes.append(f"{name} not found in {table} of {_display_manifest(member)}")
        if not removed:
            return changes
        member.save()

        if workspace:
            root = member if self.member_manifest == self.root_manifest else Manifest.load(self.root_manifest)
            users = self._other_member_keys()
            root_changed = False
            for name in removed:
                if name in users:
                    changes.append(f"kept {name} in [workspace.dependencies] (used by other members)")
                elif root.remove_workspace_dependency(name):
                    root_changed = True
                    changes.append(f"removed {name} from [workspace.dependencies]")
            if root_changed:
                root.save()
        return changes

    def _other_member_keys(self) -> set[str]:
        """Dependency keys used by every workspace member except the edited one."""
        ws = load_workspace(self.config, self.runner)
        current = self.member_manifest.resolve()
        keys: set[str] = set()
        for package in ws.members:
            path = Path(package.manifest_path)
            if path.resolve() == current:
                continue
            keys |= Manifest.load(path).dependency_keys()
        return keys


def _table_name(kind: DepKind, target: str | None) -> str:
    name = DEP_TABLES[kind]
    return f"[target.'{target}'.{name}]" if target else f"[{name}]"


def _display_manifest(manifest: Manifest) -> str:
    return manifest.package_name or str(manifest.path)
