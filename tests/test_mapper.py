"""Tests for platform classification of dependency edges."""

import itertools

import pytest

from buckify.diagnostics import Diagnostics, Severity
from buckify.models import ALL_OSES, Os
from buckify.platform.cfg_store import CfgSnapshotStore
from buckify.platform.mapper import PlatformMapper

from conftest import RUSTC_VERSION, load_snapshots

LABEL = "//third-party/rust/crates/dep/1.0.0:dep"


def _mapper(cfg_store, diagnostics=None):
    return PlatformMapper(cfg_store, diagnostics if diagnostics is not None else Diagnostics())


class TestWorkedExamples:
    def test_os_exclusive_edge(self, cfg_store):
        edge = _mapper(cfg_store).classify(LABEL, ['cfg(target_os = "windows")'])
        assert edge.platforms == frozenset({Os.WINDOWS})
        assert not edge.unconditional

    def test_always_true_edge(self, cfg_store):
        predicate = 'cfg(any(target_os = "linux", target_os = "macos", target_os = "windows"))'
        edge = _mapper(cfg_store).classify(LABEL, [predicate])
        assert edge.unconditional

    def test_unmappable_predicate_fails_open(self, cfg_store):
        diagnostics = Diagnostics()
        edge = _mapper(cfg_store, diagnostics).classify(LABEL, ['cfg(target_flavor = "fancy")'])
        assert edge.unconditional
        assert len(diagnostics.of("predicate")) == 1
        assert diagnostics.of("predicate")[0].severity == Severity.WARNING

    def test_exclusive_crate(self):
        assert PlatformMapper.exclusive_platforms("windows") == frozenset({Os.WINDOWS})
        assert PlatformMapper.exclusive_platforms("system-configuration") == frozenset({Os.MACOS})
        assert PlatformMapper.exclusive_platforms("serde") is None


class TestClassify:
    def test_no_predicate_is_unconditional(self, cfg_store):
        assert _mapper(cfg_store).classify(LABEL, [None]).unconditional

    def test_unix_is_linux_and_macos(self, cfg_store):
        edge = _mapper(cfg_store).classify(LABEL, ["cfg(unix)"])
        assert edge.platforms == frozenset({Os.LINUX, Os.MACOS})

    def test_malformed_predicate_fails_open(self, cfg_store):
        diagnostics = Diagnostics()
        edge = _mapper(cfg_store, diagnostics).classify(LABEL, ["cfg(unix"])
        assert edge.unconditional
        assert diagnostics.of("predicate")

    def test_cfg_false_everywhere_is_kept(self, cfg_store):
        diagnostics = Diagnostics()
        edge = _mapper(cfg_store, diagnostics).classify(LABEL, ['cfg(target_os = "android")'], subject="demo")
        assert edge.unconditional
        warnings = diagnostics.of("predicate")
        assert warnings and warnings[0].severity == Severity.WARNING
        assert "android" in warnings[0].message

    def test_unsupported_triple_is_omitted(self, cfg_store):
        diagnostics = Diagnostics()
        edge = _mapper(cfg_store, diagnostics).classify(LABEL, ["x86_64-linux-android"], subject="demo")
        assert edge is None
        notes = diagnostics.of("predicate")
        assert notes and notes[0].severity == Severity.NOTE

    def test_unsupported_triple_beside_cfg_keeps_cfg_platforms(self, cfg_store):
        edge = _mapper(cfg_store).classify(LABEL, ["wasm32-unknown-unknown", "cfg(windows)"])
        assert edge.platforms == frozenset({Os.WINDOWS})

    def test_triple_predicate(self, cfg_store):
        edge = _mapper(cfg_store).classify(LABEL, ["aarch64-apple-darwin"])
        assert edge.platforms == frozenset({Os.MACOS})

    def test_unconditional_kind_wins(self, cfg_store):
        edge = _mapper(cfg_store).classify(LABEL, ["cfg(windows)", None])
        assert edge.unconditional

    def test_kinds_are_unioned(self, cfg_store):
        edge = _mapper(cfg_store).classify(LABEL, ['cfg(target_os = "linux")', 'cfg(target_os = "macos")'])
        assert edge.platforms == frozenset({Os.LINUX, Os.MACOS})

    def test_union_covering_everything_collapses(self, cfg_store):
        edge = _mapper(cfg_store).classify(LABEL, ["cfg(unix)", "cfg(windows)"])
        assert edge.unconditional

    def test_alias_is_kept(self, cfg_store):
        edge = _mapper(cfg_store).classify(LABEL, [None], alias="random")
        assert edge.alias == "random"

    def test_os_without_snapshot_counts_as_active(self):
        linux_only = [s for s in load_snapshots() if s.os == Os.LINUX]
        store = CfgSnapshotStore.from_snapshots(linux_only, rustc_version=RUSTC_VERSION)
        mapper = _mapper(store)
        assert mapper.oses_for('cfg(target_os = "linux")') == ALL_OSES
        assert mapper.oses_for('cfg(target_os = "windows")') == frozenset({Os.MACOS, Os.WINDOWS})

    def test_memoized_per_predicate(self, cfg_store):
        mapper = _mapper(cfg_store)
        first = mapper.oses_for("cfg(unix)")
        assert mapper.oses_for("cfg(unix)") is first


PREDICATES = [
    None,
    "cfg(unix)",
    "cfg(windows)",
    'cfg(target_os = "macos")',
    'cfg(all(unix, target_arch = "x86_64"))',
    'cfg(not(target_env = "msvc"))',
    'cfg(target_os = "android")',
    'cfg(target_flavor = "fancy")',
    "x86_64-pc-windows-msvc",
    "cfg(any(",
]


class TestProperties:
    @pytest.mark.parametrize("predicate", PREDICATES)
    def test_totality(self, cfg_store, predicate):
        # Exactly one of: omitted, unconditional, or a non-empty proper subset.
        edge = _mapper(cfg_store).classify(LABEL, [predicate])
        if edge is None:
            return
        if edge.platforms is not None:
            assert edge.platforms
            assert edge.platforms < ALL_OSES

    @pytest.mark.parametrize("predicate", PREDICATES)
    def test_snapshot_order_does_not_matter(self, predicate):
        results = set()
        for order in itertools.permutations(load_snapshots()):
            store = CfgSnapshotStore.from_snapshots(order, rustc_version=RUSTC_VERSION)
            results.add(_mapper(store).classify(LABEL, [predicate]))
        assert len(results) == 1

    def test_predicate_order_does_not_matter(self, cfg_store):
        predicates = ["cfg(windows)", 'cfg(target_os = "macos")']
        forward = _mapper(cfg_store).classify(LABEL, predicates)
        backward = _mapper(cfg_store).classify(LABEL, list(reversed(predicates)))
        assert forward == backward
