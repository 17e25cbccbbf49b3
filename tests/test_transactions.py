"""Tests for add / remove / update / autoremove transactions."""

import dataclasses
import json

import pytest
import toml

from buckify.errors import LockError, ManifestError, MetadataError
from buckify.manifest import DependencySpec
from buckify.models import DepKind, SyncOutcome
from buckify.pipeline import run_migrate, workspace_lock
from buckify.sync import BaselineStore, replace_region
from buckify.transactions import Transaction, fetch_latest_version

from conftest import FakeRunner, metadata_text

STALE = "third-party/rust/crates/gone/1.0.0/BUCK"
ANYHOW_ID = "registry+https://github.com/rust-lang/crates.io-index#anyhow@1.0.86"
ANYHOW_LABEL = "//third-party/rust/crates/anyhow/1.0.86:anyhow"
ANYHOW_BUCK = "third-party/rust/crates/anyhow/1.0.86/BUCK"


def _with_anyhow(metadata: str) -> str:
    """The fixture metadata as cargo reports it once `demo` depends on anyhow."""
    data = json.loads(metadata)
    demo = next(p for p in data["packages"] if p["name"] == "demo")
    demo["dependencies"].append(
        {"name": "anyhow", "req": "^1.0", "kind": None, "rename": None, "optional": False, "target": None}
    )
    registry = "/CARGO_HOME/registry/src/index.crates.io/anyhow-1.0.86"
    data["packages"].append({
        "name": "anyhow",
        "version": "1.0.86",
        "id": ANYHOW_ID,
        "source": "registry+https://github.com/rust-lang/crates.io-index",
        "manifest_path": f"{registry}/Cargo.toml",
        "edition": "2018",
        "links": None,
        "features": {},
        "dependencies": [],
        "targets": [
            {"name": "anyhow", "kind": ["lib"], "crate_types": ["lib"], "src_path": f"{registry}/src/lib.rs", "edition": "2018", "test": True},
        ],
    })
    node = next(n for n in data["resolve"]["nodes"] if n["id"] == demo["id"])
    node["deps"].append({"name": "anyhow", "pkg": ANYHOW_ID, "dep_kinds": [{"kind": None, "target": None}]})
    data["resolve"]["nodes"].append({"id": ANYHOW_ID, "features": [], "deps": []})
    return json.dumps(data)


class ManifestDrivenRunner(FakeRunner):
    """Answers `cargo metadata` with anyhow resolved whenever Cargo.toml lists it."""

    def _answer(self, command):
        if command[:2] == ["cargo", "metadata"] and "anyhow" in (self.root / "Cargo.toml").read_text():
            if " ".join(command[:2]) not in self.failing:
                return _with_anyhow(self.metadata), 0
        return super()._answer(command)


@pytest.fixture
def runner_with_anyhow(workspace) -> ManifestDrivenRunner:
    return ManifestDrivenRunner(workspace, metadata_text(workspace))


def _make_transaction(config, runner, cfg_store, **overrides) -> Transaction:
    if overrides:
        config = dataclasses.replace(config, **overrides)
    return Transaction(config, runner, cfg_store=cfg_store)


def _deps(path) -> dict:
    return toml.loads(path.read_text())


# ── Version lookup ────────────────────────────────────────────

class TestFetchLatestVersion:
    def test_parses_search_output(self, runner):
        runner.search_results["anyhow"] = "1.0.86"
        assert fetch_latest_version(runner, "anyhow") == "1.0.86"
        assert runner.commands("cargo search anyhow") == [["cargo", "search", "anyhow", "--limit", "1"]]

    def test_unknown_crate(self, runner):
        with pytest.raises(ManifestError, match="latest version of `nope`"):
            fetch_latest_version(runner, "nope")

    def test_search_failure(self, runner):
        runner.failing.add("cargo search")
        with pytest.raises(ManifestError):
            fetch_latest_version(runner, "anyhow")


# ── add / remove ──────────────────────────────────────────────

class TestAdd:
    def test_add_regenerates(self, workspace, config, runner, cfg_store):
        result = _make_transaction(config, runner, cfg_store).add(DependencySpec("anyhow", "1.0"))
        assert result.ok
        assert result.changes == ["added anyhow to [dependencies] of demo"]
        assert _deps(workspace / "Cargo.toml")["dependencies"]["anyhow"] == "1.0"
        assert (workspace / "BUCK").exists()
        assert (workspace / "crates" / "util" / "BUCK").exists()

    def test_latest_version_from_registry(self, workspace, config, runner, cfg_store):
        runner.search_results["anyhow"] = "1.0.86"
        _make_transaction(config, runner, cfg_store).add(DependencySpec("anyhow", features=["backtrace"]))
        assert _deps(workspace / "Cargo.toml")["dependencies"]["anyhow"] == {"version": "1.0.86", "features": ["backtrace"]}

    def test_already_present(self, workspace, config, runner, cfg_store):
        before = (workspace / "Cargo.toml").read_text()
        result = _make_transaction(config, runner, cfg_store).add(DependencySpec("cc", "1.0", kind=DepKind.BUILD))
        assert result.changes == ["cc is already in [build-dependencies] of demo"]
        assert (workspace / "Cargo.toml").read_text() == before

    def test_target_specific(self, workspace, config, runner, cfg_store):
        result = _make_transaction(config, runner, cfg_store).add(
            DependencySpec("nix", "0.27", target="cfg(unix)")
        )
        assert result.changes == ["added nix to [target.'cfg(unix)'.dependencies] of demo"]
        assert _deps(workspace / "Cargo.toml")["target"]["cfg(unix)"]["dependencies"]["nix"] == "0.27"

    def test_add_then_remove_round_trip(self, workspace, config, runner_with_anyhow, cfg_store):
        config = dataclasses.replace(config, metadata_file=None)
        run_migrate(config, runner_with_anyhow, cfg_store=cfg_store)
        manifest_before = (workspace / "Cargo.toml").read_text()
        buck_before = (workspace / "BUCK").read_text()

        _make_transaction(config, runner_with_anyhow, cfg_store).add(DependencySpec("anyhow", "1.0"))
        buck_added = (workspace / "BUCK").read_text()
        assert buck_added != buck_before
        assert ANYHOW_LABEL in buck_added
        assert (workspace / ANYHOW_BUCK).exists()

        result = _make_transaction(config, runner_with_anyhow, cfg_store).remove(["anyhow"])
        assert result.ok
        assert (workspace / "BUCK").read_text() == buck_before
        assert (workspace / "Cargo.toml").read_text() == manifest_before
        assert not (workspace / ANYHOW_BUCK).exists()

    def test_workspace_add_from_root(self, workspace, config, runner, cfg_store):
        result = _make_transaction(config, runner, cfg_store).add(DependencySpec("anyhow", "1.0", workspace=True))
        data = _deps(workspace / "Cargo.toml")
        assert data["workspace"]["dependencies"]["anyhow"] == "1.0"
        assert data["dependencies"]["anyhow"] == {"workspace": True}
        assert result.changes[0] == "added anyhow v1.0 to [workspace.dependencies]"

    def test_workspace_add_to_member_with_rename(self, workspace, config, runner, cfg_store):
        member = workspace / "crates" / "util" / "Cargo.toml"
        transaction = _make_transaction(config, runner, cfg_store, manifest_path=member)
        transaction.add(DependencySpec("anyhow", "1.0", rename="err", workspace=True))
        assert _deps(workspace / "Cargo.toml")["workspace"]["dependencies"]["err"] == {"version": "1.0", "package": "anyhow"}
        assert "err" not in _deps(workspace / "Cargo.toml")["dependencies"]
        assert _deps(member)["dependencies"]["err"] == {"workspace": True}


class TestRemove:
    def test_remove(self, workspace, config, runner, cfg_store):
        result = _make_transaction(config, runner, cfg_store).remove(["winapi", "missing"], target="cfg(windows)")
        assert result.changes == [
            "removed winapi from [target.'cfg(windows)'.dependencies] of demo",
            "missing not found in [target.'cfg(windows)'.dependencies] of demo",
        ]
        assert "winapi" not in _deps(workspace / "Cargo.toml")["target"]["cfg(windows)"]["dependencies"]

    def test_nothing_removed_leaves_manifest(self, workspace, config, runner, cfg_store):
        before = (workspace / "Cargo.toml").read_text()
        _make_transaction(config, runner, cfg_store).remove(["missing"])
        assert (workspace / "Cargo.toml").read_text() == before

    def test_workspace_dependency_kept_while_used(self, workspace, config, runner, cfg_store):
        result = _make_transaction(config, runner, cfg_store).remove(["serde"], workspace=True)
        data = _deps(workspace / "Cargo.toml")
        assert "serde" not in data["dependencies"]
        assert data["workspace"]["dependencies"]["serde"] == "1.0"
        assert "kept serde in [workspace.dependencies] (used by other members)" in result.changes

    def test_workspace_dependency_dropped_when_unused(self, workspace, config, runner, cfg_store):
        _make_transaction(config, runner, cfg_store).add(DependencySpec("anyhow", "1.0", workspace=True))
        result = _make_transaction(config, runner, cfg_store).remove(["anyhow"], workspace=True)
        assert "removed anyhow from [workspace.dependencies]" in result.changes
        assert "anyhow" not in _deps(workspace / "Cargo.toml")["workspace"]["dependencies"]


# ── Failure handling ──────────────────────────────────────────

class TestRollback:
    def test_metadata_failure_restores_manifest(self, workspace, config, runner, cfg_store):
        before = (workspace / "Cargo.toml").read_bytes()
        runner.failing.add("cargo metadata")
        transaction = _make_transaction(config, runner, cfg_store, metadata_file=None)
        with pytest.raises(MetadataError):
            transaction.add(DependencySpec("anyhow", "1.0"))
        assert (workspace / "Cargo.toml").read_bytes() == before
        assert not (workspace / "BUCK").exists()

    def test_failed_update_restores_lockfile(self, workspace, config, runner, cfg_store):
        before = (workspace / "Cargo.lock").read_bytes()
        runner.failing.add("cargo update")
        with pytest.raises(MetadataError):
            _make_transaction(config, runner, cfg_store).update(["serde"])
        assert (workspace / "Cargo.lock").read_bytes() == before

    def test_unexpected_failure_restores_manifest(self, workspace, config, runner, cfg_store, monkeypatch):
        before = (workspace / "Cargo.toml").read_bytes()

        def broken_regenerate(*args, **kwargs):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr("buckify.transactions.regenerate", broken_regenerate)
        with pytest.raises(PermissionError):
            _make_transaction(config, runner, cfg_store).add(DependencySpec("anyhow", "1.0"))
        assert (workspace / "Cargo.toml").read_bytes() == before
        assert sorted(p.name for p in workspace.iterdir() if p.name.endswith(".tmp")) == []

    def test_conflict_keeps_manifest_edit(self, workspace, config, runner, cfg_store):
        run_migrate(config, runner, cfg_store=cfg_store)
        buck = workspace / "BUCK"
        buck.write_text(buck.read_text().replace("# @buckify-end", "mine()\n# @buckify-end"))

        transaction = _make_transaction(config, runner, cfg_store)
        result = transaction.add(DependencySpec("anyhow", "1.0"))

        assert result.out_of_sync == ["BUCK"]
        assert not result.ok
        assert "anyhow" in _deps(workspace / "Cargo.toml")["dependencies"]
        assert any("out of sync" in d.message for d in transaction.diagnostics.of("sync"))

    def test_refuses_when_locked(self, config, runner, cfg_store):
        with workspace_lock(config):
            with pytest.raises(LockError):
                _make_transaction(config, runner, cfg_store).add(DependencySpec("anyhow", "1.0"))


# ── update / autoremove ───────────────────────────────────────

class TestUpdate:
    def test_dry_run(self, workspace, config, runner, cfg_store):
        result = _make_transaction(config, runner, cfg_store).update(dry_run=True)
        assert result.pipeline is None
        assert runner.commands("cargo update") == [["cargo", "update", "--dry-run"]]
        assert not (workspace / "BUCK").exists()

    def test_update_regenerates(self, workspace, config, runner, cfg_store):
        result = _make_transaction(config, runner, cfg_store).update(["serde"], workspace_only=True)
        assert runner.commands("cargo update") == [["cargo", "update", "--workspace", "serde"]]
        assert result.changes == ["updated Cargo.lock"]
        assert result.ok
        assert (workspace / "BUCK").exists()


class TestAutoremove:
    def test_prunes_stale_files(self, workspace, config, runner, cfg_store):
        run_migrate(config, runner, cfg_store=cfg_store)
        baseline = BaselineStore(config.state_dir / "baseline.json")
        baseline.record(STALE, "gone()\n")
        baseline.save()
        stale = workspace / STALE
        stale.parent.mkdir(parents=True)
        stale.write_text(replace_region(None, "gone()\n"))

        result = _make_transaction(config, runner, cfg_store).autoremove()

        removed = [r.path.as_posix() for r in result.pipeline.report.by_outcome(SyncOutcome.REMOVED)]
        assert removed == [STALE]
        assert not stale.exists()
        assert not (workspace / "third-party" / "rust" / "crates" / "gone").exists()
        assert (workspace / "third-party" / "rust" / "crates" / "serde" / "1.0.200" / "BUCK").exists()
