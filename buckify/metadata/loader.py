"""Load the resolved dependency graph from cargo."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

import toml
from pydantic import ValidationError

from buckify.command_runner import CommandError, CommandRunner, SubprocessCommandRunner
from buckify.errors import MetadataError
from buckify.metadata.schema import CargoMetadata, Node, Package

logger = logging.getLogger(__name__)


@dataclass
class WorkspaceMetadata:
    """Parsed metadata with lookup tables the graph builder needs."""
    metadata: CargoMetadata
    root: Package
    packages: dict[str, Package] = field(default_factory=dict)
    nodes: dict[str, Node] = field(default_factory=dict)
    checksums: dict[str, str] = field(default_factory=dict)  # "name-version" -> sha256

    @property
    def workspace_root(self) -> Path:
        return Path(self.metadata.workspace_root)

    @property
    def members(self) -> list[Package]:
        return [self.packages[m] for m in self.metadata.workspace_members if m in self.packages]


def parse_metadata(raw: str | bytes | dict) -> CargoMetadata:
    try:
        if isinstance(raw, dict):
            metadata = CargoMetadata.model_validate(raw)
        else:
            metadata = CargoMetadata.model_validate_json(raw)
    except ValidationError as e:
        raise MetadataError(f"invalid cargo metadata: {e}") from e
    if metadata.version != 1:
        raise MetadataError(f"unsupported cargo metadata format version {metadata.version}")
    if metadata.resolve is None:
        raise MetadataError("cargo metadata has no `resolve` section (was --no-deps used?)")
    return metadata


def load_checksums(lock_path: Path) -> dict[str, str]:
    """Read package checksums from Cargo.lock."""
    if not lock_path.exists():
        return {}
    try:
        lock = toml.loads(lock_path.read_text(encoding="utf-8"))
    except (OSError, toml.TomlDecodeError) as e:
        raise MetadataError(f"failed to read {lock_path}: {e}") from e
    checksums: dict[str, str] = {}
    for pkg in lock.get("package", []):
        checksum = pkg.get("checksum")
        if checksum:
            checksums[f"{pkg['name']}-{pkg['version']}"] = checksum
    return checksums


def _pick_root(metadata: CargoMetadata, packages: dict[str, Package], manifest_path: Path | None) -> Package:
    if metadata.resolve and metadata.resolve.root and metadata.resolve.root in packages:
        return packages[metadata.resolve.root]
    members = [packages[m] for m in metadata.workspace_members if m in packages]
    if manifest_path is not None:
        wanted = manifest_path.resolve()
        for member in members:
            if Path(member.manifest_path).resolve() == wanted:
                return member
    # Virtual workspace: fall back to the first member by manifest path.
    if members:
        return sorted(members, key=lambda p: p.manifest_path)[0]
    raise MetadataError("workspace has no member packages")


def build_workspace_metadata(
    metadata: CargoMetadata,
    manifest_path: Path | None = None,
    checksums: dict[str, str] | None = None,
) -> WorkspaceMetadata:
    if metadata.resolve is None:
        raise MetadataError("cargo metadata has no `resolve` section")
    packages = {p.id: p for p in metadata.packages}
    nodes = {n.id: n for n in metadata.resolve.nodes}
    root = _pick_root(metadata, packages, manifest_path)
    if checksums is None:
        checksums = load_checksums(Path(metadata.workspace_root) / "Cargo.lock")
    return WorkspaceMetadata(
        metadata=metadata,
        root=root,
        packages=packages,
        nodes=nodes,
        checksums=checksums,
    )


class MetadataLoader:
    """Obtain the resolved graph from `cargo metadata` or a saved JSON file."""

    def __init__(self, runner: CommandRunner | None = None):
        self.runner = runner or SubprocessCommandRunner()

    def load(self, workspace_root: Path, manifest_path: Path | None = None) -> WorkspaceMetadata:
        command = ["cargo", "metadata", "--format-version", "1"]
        if manifest_path is not None:
            command += ["--manifest-path", str(manifest_path)]
        try:
            result = self.runner.run(command, cwd=workspace_root)
        except CommandError as e:
            raise MetadataError(str(e)) from e
        metadata = parse_metadata(result.stdout)
        logger.debug("loaded %d packages from cargo metadata", len(metadata.packages))
        return build_workspace_metadata(metadata, manifest_path)

    def load_file(self, path: Path, manifest_path: Path | None = None) -> WorkspaceMetadata:
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise MetadataError(f"failed to read {path}: {e}") from e
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MetadataError(f"{path} is not valid JSON: {e}") from e
        return build_workspace_metadata(parse_metadata(data), manifest_path)

    def locate_workspace_root(self, start: Path) -> Path:
        """Directory of the workspace root manifest, as cargo sees it from ``start``."""
        command = ["cargo", "locate-project", "--workspace", "--message-format", "plain"]
        try:
            result = self.runner.run(command, cwd=start)
        except CommandError as e:
            raise MetadataError(f"no Cargo workspace found from {start}: {e}") from e
        manifest = result.stdout.strip()
        if not manifest:
            raise MetadataError(f"cargo locate-project printed nothing in {start}")
        return Path(manifest).parent
