"""Crate graph builder: turns resolved cargo metadata into per-target nodes and edges."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import networkx as nx

from buckify.config import RepoConfig
from buckify.errors import MetadataError
from buckify.metadata.loader import WorkspaceMetadata
from buckify.metadata.schema import Package, Target
from buckify.models import CrateNode, DepKind, DependencyEdge, TargetKind

logger = logging.getLogger(__name__)

_DEP_KINDS = {None: DepKind.NORMAL, "normal": DepKind.NORMAL, "dev": DepKind.DEV, "build": DepKind.BUILD}


def dep_kind_matches(target_kind: TargetKind, dep_kind: DepKind) -> bool:
    """Which cargo dependency kinds feed which kind of target."""
    if target_kind == TargetKind.BUILD_SCRIPT:
        return dep_kind == DepKind.BUILD
    if target_kind == TargetKind.TEST:
        # Test targets see both dev-dependencies and regular dependencies.
        return dep_kind in (DepKind.NORMAL, DepKind.DEV)
    return dep_kind == DepKind.NORMAL


@dataclass
class CrateGraph:
    workspace_root: Path
    root_id: str
    packages: dict[str, Package] = field(default_factory=dict)
    nodes: dict[tuple, CrateNode] = field(default_factory=dict)
    edges: dict[tuple, list[DependencyEdge]] = field(default_factory=dict)
    by_package: dict[str, list[CrateNode]] = field(default_factory=dict)
    package_graph: nx.DiGraph = field(default_factory=nx.DiGraph)
    member_ids: list[str] = field(default_factory=list)

    def edges_of(self, node: CrateNode) -> list[DependencyEdge]:
        return self.edges.get(node.identity, [])

    def nodes_of(self, package_id: str, kind: TargetKind | None = None) -> list[CrateNode]:
        nodes = self.by_package.get(package_id, [])
        if kind is None:
            return list(nodes)
        return [n for n in nodes if n.kind == kind]

    def reachable_packages(self) -> set[str]:
        """Package ids reachable from any workspace member."""
        reachable: set[str] = set()
        for member in self.member_ids:
            if member in self.package_graph:
                reachable.add(member)
                reachable |= nx.descendants(self.package_graph, member)
        return reachable

    def third_party_packages(self) -> list[Package]:
        return sorted(
            (p for pid, p in self.packages.items() if not p.first_party),
            key=lambda p: (p.name, p.version),
        )

    def first_party_packages(self) -> list[Package]:
        return sorted(
            (p for p in self.packages.values() if p.first_party),
            key=lambda p: p.manifest_path,
        )


class GraphBuilder:
    """Build the crate graph from resolved cargo metadata."""

    def __init__(self, repo_config: RepoConfig | None = None):
        self.repo_config = repo_config or RepoConfig()

    def build(self, ws: WorkspaceMetadata) -> CrateGraph:
        graph = CrateGraph(
            workspace_root=ws.workspace_root,
            root_id=ws.root.id,
            member_ids=list(ws.metadata.workspace_members),
        )

        # Step 1: package-level graph, used to drop anything unreachable
        for node in ws.nodes.values():
            graph.package_graph.add_node(node.id)
            for dep in node.deps:
                graph.package_graph.add_edge(node.id, dep.pkg)
        for pid in graph.reachable_packages():
            if pid in ws.packages:
                graph.packages[pid] = ws.packages[pid]

        # Step 2: one node per buildable target
        for pid, package in graph.packages.items():
            resolved = ws.nodes.get(pid)
            enabled = frozenset(resolved.features) if resolved else frozenset()
            for node in self._target_nodes(package, enabled):
                if node.identity in graph.nodes:
                    raise MetadataError(f"duplicate crate target {node.identity!r}")
                graph.nodes[node.identity] = node
                graph.by_package.setdefault(pid, []).append(node)

        # Step 3: edges from the resolved dependency kinds
        for pid, nodes in graph.by_package.items():
            resolved = ws.nodes.get(pid)
            if resolved is None:
                continue
            use_alias = self.repo_config.inherit_workspace_deps and pid == ws.root.id
            for node in nodes:
                graph.edges[node.identity] = self._edges_for(node, resolved.deps, ws, graph, use_alias)

        logger.debug(
            "crate graph: %d packages, %d nodes, %d edges",
            len(graph.packages), len(graph.nodes), sum(len(e) for e in graph.edges.values()),
        )
        return graph

    # ── Nodes ─────────────────────────────────────────────────

    def _target_nodes(self, package: Package, enabled: frozenset[str]) -> list[CrateNode]:
        nodes: list[CrateNode] = []
        libs = package.lib_targets()
        bins = package.bin_targets()

        if package.first_party:
            for target in bins:
                nodes.append(self._node(package, target, TargetKind.BINARY, enabled))
            for target in libs:
                nodes.append(self._node(package, target, TargetKind.LIBRARY, enabled))
            if not self.repo_config.ignore_tests:
                for target in libs:
                    if target.test:
                        nodes.append(self._node(
                            package, target, TargetKind.TEST, enabled,
                            name_override=f"{target.name}-unittest",
                            is_unittest=True,
                        ))
                for target in package.test_targets():
                    nodes.append(self._node(package, target, TargetKind.TEST, enabled))
        else:
            if not libs:
                logger.debug("skipping %s %s: no library target", package.name, package.version)
                return nodes
            nodes.append(self._node(package, libs[0], TargetKind.LIBRARY, enabled))

        build_script = package.build_script()
        if build_script is not None and nodes:
            nodes.append(self._node(package, build_script, TargetKind.BUILD_SCRIPT, enabled))
        return nodes

    @staticmethod
    def _node(
        package: Package,
        target: Target,
        kind: TargetKind,
        enabled: frozenset[str],
        name_override: str | None = None,
        is_unittest: bool = False,
    ) -> CrateNode:
        manifest_dir = Path(package.manifest_path).parent
        return CrateNode(
            name=package.name,
            version=package.version,
            kind=kind,
            target_name=name_override or target.name,
            package_id=package.id,
            crate_root=Path(target.src_path),
            manifest_dir=manifest_dir,
            edition=target.edition or package.edition,
            first_party=package.first_party,
            proc_macro=target.is_proc_macro,
            declared_features=frozenset(package.features),
            enabled_features=enabled,
            links=package.links,
            is_unittest=is_unittest,
        )

    # ── Edges ─────────────────────────────────────────────────

    def _edges_for(self, node, deps, ws: WorkspaceMetadata, graph: CrateGraph, use_alias: bool) -> list[DependencyEdge]:
        edges: list[DependencyEdge] = []
        for dep in deps:
            dep_package = graph.packages.get(dep.pkg)
            if dep_package is None:
                continue
            if not dep_package.lib_targets():
                continue
            alias = dep.name if dep.name != dep_package.name.replace("-", "_") else None
            label = self.label_for(dep_package, graph.workspace_root, use_alias)
            for dk in dep.dep_kinds:
                kind = _DEP_KINDS.get(dk.kind)
                if kind is None or not dep_kind_matches(node.kind, kind):
                    continue
                edges.append(DependencyEdge(
                    source=node,
                    package_id=dep.pkg,
                    dep_name=dep.name,
                    label=label,
                    kind=kind,
                    alias=alias,
                    predicate=dk.target,
                ))
        return edges

    def label_for(self, package: Package, workspace_root: Path, use_alias: bool = False) -> str:
        if package.first_party:
            return first_party_label(package, workspace_root)
        if use_alias:
            return f"//{self.repo_config.third_party_dir.strip('/')}:{package.name}"
        return f"//{self.repo_config.crates_dir}/{package.name}/{package.version}:{package.name}"


def package_dir(package: Package, workspace_root: Path) -> PurePosixPath:
    """Manifest directory relative to the workspace root, with forward slashes."""
    manifest_dir = Path(package.manifest_path).parent
    try:
        relative = manifest_dir.resolve().relative_to(workspace_root.resolve())
    except ValueError as e:
        raise MetadataError(
            f"package `{package.name}` at {manifest_dir} is outside the workspace root {workspace_root}"
        ) from e
    return PurePosixPath(relative.as_posix())


def lib_rule_name(package: Package) -> str:
    """Rule name of a package's library; `lib` prefixed when a binary shares its name."""
    libs = package.lib_targets()
    if len(libs) != 1:
        raise MetadataError(
            f"expected exactly one library target for `{package.name}`, found {len(libs)}"
        )
    lib = libs[0]
    if any(b.name == lib.name for b in package.bin_targets()):
        return f"lib{lib.name}"
    return lib.name


def first_party_label(package: Package, workspace_root: Path) -> str:
    relative = package_dir(package, workspace_root)
    path = "" if str(relative) == "." else str(relative)
    return f"//{path}:{lib_rule_name(package)}"
