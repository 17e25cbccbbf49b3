"""Typed view of `cargo metadata --format-version 1` output."""

from __future__ import annotations

from pydantic import BaseModel, Field

LIB_KINDS = frozenset({"lib", "rlib", "dylib", "cdylib", "staticlib", "proc-macro"})


class Target(BaseModel):
    name: str
    kind: list[str]
    src_path: str
    edition: str = "2021"
    test: bool = True

    @property
    def is_lib(self) -> bool:
        return bool(LIB_KINDS.intersection(self.kind))

    @property
    def is_bin(self) -> bool:
        return "bin" in self.kind

    @property
    def is_test(self) -> bool:
        return "test" in self.kind

    @property
    def is_custom_build(self) -> bool:
        return "custom-build" in self.kind

    @property
    def is_proc_macro(self) -> bool:
        return "proc-macro" in self.kind


class Dependency(BaseModel):
    """A declared (unresolved) dependency from a package manifest."""
    name: str
    req: str = "*"
    kind: str | None = None
    rename: str | None = None
    optional: bool = False
    target: str | None = None


class Package(BaseModel):
    name: str
    version: str
    id: str
    source: str | None = None
    manifest_path: str
    edition: str = "2021"
    links: str | None = None
    targets: list[Target] = Field(default_factory=list)
    features: dict[str, list[str]] = Field(default_factory=dict)
    dependencies: list[Dependency] = Field(default_factory=list)

    @property
    def first_party(self) -> bool:
        return self.source is None

    def lib_targets(self) -> list[Target]:
        return [t for t in self.targets if t.is_lib]

    def bin_targets(self) -> list[Target]:
        return [t for t in self.targets if t.is_bin]

    def test_targets(self) -> list[Target]:
        return [t for t in self.targets if t.is_test]

    def build_script(self) -> Target | None:
        return next((t for t in self.targets if t.is_custom_build), None)


class DepKindInfo(BaseModel):
    kind: str | None = None  # None is a normal dependency
    target: str | None = None


class NodeDep(BaseModel):
    name: str
    pkg: str
    dep_kinds: list[DepKindInfo] = Field(default_factory=list)


class Node(BaseModel):
    id: str
    deps: list[NodeDep] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)


class Resolve(BaseModel):
    nodes: list[Node]
    root: str | None = None


class CargoMetadata(BaseModel):
    packages: list[Package]
    workspace_members: list[str]
    workspace_root: str
    resolve: Resolve | None = None
    version: int = 1
