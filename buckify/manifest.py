"""Reading and editing Cargo.toml dependency tables."""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from pathlib import Path

import tomlkit
from tomlkit.exceptions import TOMLKitError

from buckify.errors import ManifestError
from buckify.models import DepKind
from buckify.sync.atomic import atomic_write_text

logger = logging.getLogger(__name__)

DEP_TABLES = {
    DepKind.NORMAL: "dependencies",
    DepKind.DEV: "dev-dependencies",
    DepKind.BUILD: "build-dependencies",
}


def parse_package_spec(spec: str) -> tuple[str, str | None]:
    """Split ``name@version``; the version part is optional."""
    name, sep, version = spec.partition("@")
    if not name or (sep and not version):
        raise ManifestError(f"invalid package spec `{spec}`; expected NAME or NAME@VERSION")
    return name, version or None


def dep_kind_for(dev: bool = False, build: bool = False) -> DepKind:
    if dev and build:
        raise ManifestError("--dev and --build are mutually exclusive")
    if dev:
        return DepKind.DEV
    if build:
        return DepKind.BUILD
    return DepKind.NORMAL


@dataclass
class DependencySpec:
    """A dependency to write into a manifest."""
    name: str
    version: str | None = None
    features: list[str] = field(default_factory=list)
    rename: str | None = None
    optional: bool = False
    kind: DepKind = DepKind.NORMAL
    target: str | None = None  # e.g. 'cfg(unix)'
    workspace: bool = False

    @property
    def key(self) -> str:
        return self.rename or self.name

    def entry(self) -> str | MutableMapping:
        """Value for the dependency table: a bare version string when possible."""
        table = tomlkit.inline_table()
        if self.workspace:
            table["workspace"] = True
        elif self.version is not None:
            table["version"] = self.version
        # Inherited dependencies may only add features and optional; the
        # rename lives in [workspace.dependencies].
        if self.rename and not self.workspace:
            table["package"] = self.name
        if self.features:
            table["features"] = list(self.features)
        if self.optional:
            table["optional"] = True
        if list(table) == ["version"]:
            return self.version
        return table


class Manifest:
    """A parsed Cargo.toml that can be edited and written back.

    The document is kept as a tomlkit tree, so everything the user wrote
    outside the edited keys is written back unchanged.
    """

    def __init__(self, path: Path, data: MutableMapping):
        self.path = path
        self.data = data

    @classmethod
    def load(cls, path: Path) -> "Manifest":
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ManifestError(f"{path} does not exist") from e
        except OSError as e:
            raise ManifestError(f"cannot read {path}: {e}") from e
        try:
            data = tomlkit.parse(text)
        except TOMLKitError as e:
            raise ManifestError(f"{path} is not valid TOML: {e}") from e
        return cls(path, data)

    def save(self) -> None:
        try:
            atomic_write_text(self.path, tomlkit.dumps(self.data))
        except OSError as e:
            raise ManifestError(f"cannot write {self.path}: {e}") from e

    @property
    def is_workspace_root(self) -> bool:
        return isinstance(self.data.get("workspace"), MutableMapping)

    @property
    def package_name(self) -> str | None:
        package = self.data.get("package")
        if not isinstance(package, MutableMapping) or "name" not in package:
            return None
        return str(package["name"])

    # ── Dependency tables ─────────────────────────────────────

    def dependency_table(self, kind: DepKind, target: str | None = None, create: bool = False) -> MutableMapping | None:
        parent = self.data
        if target is not None:
            # Super tables: only [target.'cfg(..)'.dependencies] gets a header.
            parent = self._subtable(self.data, "target", create, super_table=True)
            if parent is None:
                return None
            parent = self._subtable(parent, target, create, super_table=True)
            if parent is None:
                return None
        return self._subtable(parent, DEP_TABLES[kind], create)

    def _subtable(
        self, parent: MutableMapping, key: str, create: bool, super_table: bool = False,
    ) -> MutableMapping | None:
        value = parent.get(key)
        if value is None:
            if not create:
                return None
            parent[key] = tomlkit.table(is_super_table=super_table)
            value = parent[key]
        if not isinstance(value, MutableMapping):
            raise ManifestError(f"{self.path}: `{key}` is not a table")
        return value

    def add_dependency(self, spec: DependencySpec) -> bool:
        """Insert ``spec``; returns False if the key is already present."""
        table = self.dependency_table(spec.kind, spec.target, create=True)
        if spec.key in table:
            logger.debug("%s already lists %s", self.path, spec.key)
            return False
        table[spec.key] = spec.entry()
        return True

    def remove_dependency(self, key: str, kind: DepKind, target: str | None = None) -> bool:
        table = self.dependency_table(kind, target)
        if table is None or key not in table:
            return False
        del table[key]
        if not table:
            self._drop_empty(kind, target)
        return True

    def _drop_empty(self, kind: DepKind, target: str | None) -> None:
        if target is None:
            self.data.pop(DEP_TABLES[kind], None)
            return
        targets = self.data.get("target", {})
        platform = targets.get(target, {})
        platform.pop(DEP_TABLES[kind], None)
        if not platform:
            targets.pop(target, None)
        if not targets:
            self.data.pop("target", None)

    def dependency_keys(self) -> set[str]:
        """Keys used in every dependency table, target-specific ones included."""
        keys: set[str] = set()
        tables = [self.data]
        tables.extend(t for t in self.data.get("target", {}).values() if isinstance(t, MutableMapping))
        for parent in tables:
            for name in DEP_TABLES.values():
                table = parent.get(name)
                if isinstance(table, MutableMapping):
                    keys.update(table)
        return keys

    # ── [workspace.dependencies] ──────────────────────────────

    def workspace_dependencies(self, create: bool = False) -> MutableMapping | None:
        workspace = self.data.get("workspace")
        if not isinstance(workspace, MutableMapping):
            raise ManifestError(f"{self.path} has no [workspace] table")
        return self._subtable(workspace, "dependencies", create)

    def add_workspace_dependency(self, key: str, version: str, package: str | None = None) -> bool:
        table = self.workspace_dependencies(create=True)
        if key in table:
            logger.debug("[workspace.dependencies] already lists %s", key)
            return False
        if package is None or package == key:
            table[key] = version
        else:
            entry = tomlkit.inline_table()
            entry.update({"version": version, "package": package})
            table[key] = entry
        return True

    def remove_workspace_dependency(self, key: str) -> bool:
        table = self.workspace_dependencies()
        if table is None or key not in table:
            return False
        del table[key]
        return True
