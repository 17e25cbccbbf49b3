"""Build GeneratedRule objects for every package in the crate graph."""

from __future__ import annotations

import logging
import re
from pathlib import Path, PurePosixPath

from buckify.config import RepoConfig
from buckify.diagnostics import Diagnostics
from buckify.emitter.starlark import Raw
from buckify.graph.builder import CrateGraph, lib_rule_name, package_dir
from buckify.metadata.schema import Package
from buckify.models import (
    BuckFile,
    ClassifiedEdge,
    CrateNode,
    GeneratedRule,
    RuleKind,
    TargetKind,
)
from buckify.platform.mapper import PlatformMapper
from buckify.platform.targets import buck_labels

logger = logging.getLogger(__name__)

# Test rules become incompatible under the cross platform; whether tests are
# actually skipped is decided when the build is invoked.
CROSS_SELECT_EXPR = 'select({"//platforms:cross": ["config//:none"], "DEFAULT": []})'

CRATES_IO_URL = "https://static.crates.io/crates/{name}/{name}-{version}.crate"


def build_name(target_name: str) -> str:
    return target_name[: -len("-build")] if target_name.endswith("-build") else target_name


def _version_key(version: str) -> tuple:
    parts = re.split(r"[.+-]", version)
    return tuple((0, int(p)) if p.isdigit() else (1, p) for p in parts)


class RuleEmitter:
    """Render the crate graph into BUCK file contents, one BuckFile per package."""

    def __init__(
        self,
        graph: CrateGraph,
        mapper: PlatformMapper,
        repo_config: RepoConfig | None = None,
        checksums: dict[str, str] | None = None,
        diagnostics: Diagnostics | None = None,
    ):
        self.graph = graph
        self.mapper = mapper
        self.repo_config = repo_config or RepoConfig()
        self.checksums = checksums or {}
        self.diagnostics = diagnostics if diagnostics is not None else mapper.diagnostics

    def emit_all(self) -> list[BuckFile]:
        files: list[BuckFile] = []
        for package in self.graph.first_party_packages():
            files.append(self.emit_first_party(package))
        for package in self.graph.third_party_packages():
            if self.graph.nodes_of(package.id):
                files.append(self.emit_third_party(package))
        if self.repo_config.inherit_workspace_deps:
            aliases = self.emit_aliases()
            if aliases is not None:
                files.append(aliases)
        files.sort(key=lambda f: f.path.as_posix())
        return files

    # ── Packages ──────────────────────────────────────────────

    def emit_third_party(self, package: Package) -> BuckFile:
        path = PurePosixPath(self.repo_config.crates_dir) / package.name / package.version / "BUCK"
        buck = BuckFile(path=Path(path), package=f"{package.name} {package.version}")

        buck.rules.append(self._http_archive(package))
        buck.rules.append(self._cargo_manifest(package))
        for node in self.graph.nodes_of(package.id, TargetKind.LIBRARY):
            buck.rules.append(self._rust_rule(RuleKind.RUST_LIBRARY, node, package.name))
        self._add_build_script(buck, package)
        return buck

    def emit_first_party(self, package: Package) -> BuckFile:
        relative = package_dir(package, self.graph.workspace_root)
        buck = BuckFile(path=Path(relative / "BUCK"), package=f"{package.name} {package.version}")

        buck.rules.append(GeneratedRule(
            kind=RuleKind.FILEGROUP,
            name=f"{package.name}-vendor",
            attrs={"srcs": Raw('glob(["**/**"])'), "out": "vendor"},
        ))
        buck.rules.append(self._cargo_manifest(package))

        libs = self.graph.nodes_of(package.id, TargetKind.LIBRARY)
        bins = self.graph.nodes_of(package.id, TargetKind.BINARY)
        lib_names = {n.target_name for n in libs}
        bin_names = {n.target_name for n in bins}

        for node in bins:
            rule = self._rust_rule(RuleKind.RUST_BINARY, node, node.target_name)
            if node.target_name in lib_names:
                # main.rs may use lib.rs items through the crate's own name.
                rule.deps.add(f":lib{node.target_name}")
            buck.rules.append(rule)

        for node in libs:
            buck.rules.append(self._rust_rule(RuleKind.RUST_LIBRARY, node, lib_rule_name(package)))

        for node in self.graph.nodes_of(package.id, TargetKind.TEST):
            rule = self._rust_rule(RuleKind.RUST_TEST, node, node.target_name)
            if not node.is_unittest:
                # Integration tests link the package library and may run its binary.
                if package.name in bin_names:
                    rule.env[f"CARGO_BIN_EXE_{package.name}"] = f"$(location :{package.name})"
                if libs:
                    rule.deps.add(f":{lib_rule_name(package)}")
            buck.rules.append(rule)

        self._add_build_script(buck, package)
        return buck

    def emit_aliases(self) -> BuckFile | None:
        """Alias rules under the third-party dir for crates first-party code depends on."""
        latest: dict[str, Package] = {}
        for package in self.graph.first_party_packages():
            for node in self.graph.nodes_of(package.id):
                for edge in self.graph.edges_of(node):
                    dep = self.graph.packages.get(edge.package_id)
                    if dep is None or dep.first_party:
                        continue
                    current = latest.get(dep.name)
                    if current is None or _version_key(dep.version) > _version_key(current.version):
                        latest[dep.name] = dep
        if not latest:
            return None

        third_party = self.repo_config.third_party_dir.strip("/")
        buck = BuckFile(path=Path(third_party) / "BUCK", package="third-party-aliases")
        for name in sorted(latest):
            dep = latest[name]
            buck.rules.append(GeneratedRule(
                kind=RuleKind.ALIAS,
                name=name,
                attrs={
                    "actual": f"//{self.repo_config.crates_dir}/{name}/{dep.version}:{name}",
                    "visibility": ["PUBLIC"],
                },
            ))
        return buck

    # ── Rules ─────────────────────────────────────────────────

    def _http_archive(self, package: Package) -> GeneratedRule:
        key = f"{package.name}-{package.version}"
        checksum = self.checksums.get(key)
        if checksum is None:
            self.diagnostics.warn("rule", "no checksum in Cargo.lock; http_archive is emitted without sha256", subject=key)
            checksum = ""
        return GeneratedRule(
            kind=RuleKind.HTTP_ARCHIVE,
            name=f"{package.name}-vendor",
            attrs={
                "urls": [CRATES_IO_URL.format(name=package.name, version=package.version)],
                "sha256": checksum,
                "type": "tar.gz",
                "strip_prefix": key,
                "out": "vendor",
            },
        )

    @staticmethod
    def _cargo_manifest(package: Package) -> GeneratedRule:
        return GeneratedRule(
            kind=RuleKind.CARGO_MANIFEST,
            name=f"{package.name}-manifest",
            attrs={"vendor": f":{package.name}-vendor"},
        )

    def _rust_rule(self, kind: RuleKind, node: CrateNode, name: str) -> GeneratedRule:
        crate = node.crate_name
        if node.is_unittest:
            crate = crate[: -len("_unittest")]
        attrs: dict[str, object] = {
            "srcs": [f":{node.name}-vendor"],
            "crate": crate,
            "crate_root": self._crate_root(node),
            "edition": node.edition,
            "features": set(node.enabled_features),
        }
        if node.proc_macro and kind == RuleKind.RUST_LIBRARY:
            attrs["proc_macro"] = True
        if node.kind != TargetKind.BUILD_SCRIPT:
            attrs["visibility"] = ["PUBLIC"]

        rule = GeneratedRule(kind=kind, name=name, attrs=attrs)
        rule.rustc_flags.add(f"@$(location :{node.name}-manifest[env_flags])")

        if node.kind != TargetKind.BUILD_SCRIPT:
            platforms = self.mapper.exclusive_platforms(node.name)
            if platforms is not None:
                rule.compatible_with = buck_labels(platforms)
        if kind == RuleKind.RUST_TEST:
            rule.target_compatible_with = CROSS_SELECT_EXPR

        self._set_deps(rule, node)
        return rule

    @staticmethod
    def _crate_root(node: CrateNode) -> str:
        try:
            relative = node.crate_root.relative_to(node.manifest_dir)
        except ValueError:
            relative = Path(node.crate_root.name)
        return "vendor/" + relative.as_posix().replace("\\", "/")

    def _add_build_script(self, buck: BuckFile, package: Package) -> None:
        scripts = self.graph.nodes_of(package.id, TargetKind.BUILD_SCRIPT)
        if not scripts:
            return
        node = scripts[0]
        run_name = f"{package.name}-{build_name(node.target_name)}-run"

        for rule in buck.rules:
            if rule.is_rust:
                rule.env["OUT_DIR"] = f"$(location :{run_name}[out_dir])"
                rule.rustc_flags.add(f"@$(location :{run_name}[rustc_flags])")

        buck.rules.append(self._rust_rule(RuleKind.RUST_BINARY, node, f"{package.name}-{node.target_name}"))

        env_srcs = {f":{package.name}-manifest[env_dict]"}
        env_srcs |= self._links_metadata(package)
        buck.rules.append(GeneratedRule(
            kind=RuleKind.BUILDSCRIPT_RUN,
            name=run_name,
            attrs={
                "package_name": package.name,
                "buildscript_rule": f":{package.name}-{node.target_name}",
                "env_srcs": env_srcs,
                "features": set(node.enabled_features),
                "version": package.version,
                "manifest_dir": f":{package.name}-vendor",
                "visibility": ["PUBLIC"],
            },
        ))

    def _links_metadata(self, package: Package) -> set[str]:
        """Build script metadata of normal dependencies that declare `links`."""
        sources: set[str] = set()
        for lib in self.graph.nodes_of(package.id, TargetKind.LIBRARY):
            for edge in self.graph.edges_of(lib):
                dep = self.graph.packages.get(edge.package_id)
                if dep is None or dep.links is None or dep.first_party:
                    continue
                script = dep.build_script()
                if script is None:
                    self.diagnostics.warn(
                        "rule", f"`{dep.name}` declares links but has no build script", subject=package.name,
                    )
                    continue
                if edge.predicate is not None and self.mapper.oses_for(edge.predicate) != self.mapper.oses_for(None):
                    self.diagnostics.note(
                        "rule",
                        f"links metadata of platform-specific dependency `{dep.name}` is not forwarded",
                        subject=package.name,
                    )
                    continue
                sources.add(
                    f"//{self.repo_config.crates_dir}/{dep.name}/{dep.version}:"
                    f"{dep.name}-{build_name(script.name)}-run[metadata]"
                )
        return sources

    # ── Dependencies ──────────────────────────────────────────

    def _set_deps(self, rule: GeneratedRule, node: CrateNode) -> None:
        grouped: dict[tuple[str, str | None], list[str | None]] = {}
        for edge in self.graph.edges_of(node):
            grouped.setdefault((edge.label, edge.alias), []).append(edge.predicate)

        subject = f"{node.name} {node.version} ({rule.name})"
        for (label, alias), predicates in sorted(grouped.items(), key=lambda kv: (kv[0][0], kv[0][1] or "")):
            classified = self.mapper.classify(label, predicates, alias=alias, subject=subject)
            if classified is not None:
                self._insert_dep(rule, classified, subject)

    def _insert_dep(self, rule: GeneratedRule, edge: ClassifiedEdge, subject: str) -> None:
        if edge.platforms is None:
            if edge.alias is None:
                rule.deps.add(edge.label)
            else:
                self._put_named(rule.named_deps, edge.alias, edge.label, subject, "named_deps")
            return

        for os_ in sorted(edge.platforms, key=lambda o: o.value):
            if edge.alias is None:
                rule.os_deps.setdefault(os_.key, set()).add(edge.label)
            else:
                entries = rule.os_named_deps.setdefault(os_.key, {})
                self._put_named(entries, edge.alias, edge.label, subject, f"os_named_deps[{os_.key}]")

    def _put_named(self, entries: dict[str, str], alias: str, label: str, subject: str, attr: str) -> None:
        existing = entries.get(alias)
        if existing is None:
            entries[alias] = label
            return
        if existing != label:
            keep = min(existing, label)
            self.diagnostics.warn(
                "rule",
                f"{attr} alias `{alias}` has conflicting targets `{existing}` and `{label}`; keeping `{keep}`",
                subject=subject,
            )
            entries[alias] = keep
