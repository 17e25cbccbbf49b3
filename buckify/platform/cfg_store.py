"""Per-triple `rustc --print=cfg` snapshots, cached on disk by compiler version."""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from buckify.command_runner import CommandError, CommandRunner, SubprocessCommandRunner
from buckify.diagnostics import Diagnostics
from buckify.models import Os
from buckify.platform.targets import SUPPORTED_TARGETS, SUPPORTED_TRIPLES, os_for_triple
from buckify.sync.atomic import atomic_write_text

logger = logging.getLogger(__name__)

CfgFact = tuple[str, str | None]


@dataclass(frozen=True)
class CfgSnapshot:
    triple: str
    rustc_version: str
    facts: frozenset[CfgFact]

    @property
    def os(self) -> Os | None:
        return os_for_triple(self.triple)

    def keys(self) -> set[str]:
        return {key for key, _ in self.facts}

    def matches(self, key: str, value: str | None) -> bool:
        if value is None:
            return any(k == key for k, _ in self.facts)
        return (key, value) in self.facts


def parse_cfg_output(text: str) -> frozenset[CfgFact]:
    """Parse `rustc --print=cfg` lines: ``key`` or ``key="value"``."""
    facts: set[CfgFact] = set()
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("warning"):
            continue
        if "=" in line:
            key, _, value = line.partition("=")
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] == '"':
                value = value[1:-1]
            facts.add((key.strip(), value))
        else:
            facts.add((line, None))
    return frozenset(facts)


class CfgSnapshotStore:
    """Cache of cfg snapshots keyed by (triple, rustc version).

    Entries are immutable once stored. A different compiler version gets its
    own entries; nothing is invalidated implicitly.
    """

    def __init__(
        self,
        cache_path: Path | None = None,
        runner: CommandRunner | None = None,
        triples: Iterable[str] = SUPPORTED_TRIPLES,
        rustc_version: str | None = None,
        max_workers: int | None = None,
        read_cache: bool = True,
    ):
        self.cache_path = cache_path
        self.runner = runner or SubprocessCommandRunner()
        self.triples = tuple(triples)
        self.max_workers = max_workers
        self._rustc_version = rustc_version
        self._entries: dict[str, dict[str, CfgSnapshot]] = {}
        self._dirty = False
        if cache_path is not None and read_cache:
            self._load()

    @classmethod
    def from_snapshots(cls, snapshots: Iterable[CfgSnapshot], rustc_version: str = "test") -> "CfgSnapshotStore":
        snapshots = list(snapshots)
        store = cls(triples=[s.triple for s in snapshots], rustc_version=rustc_version)
        for snapshot in snapshots:
            store.put(snapshot)
        return store

    # ── Persistence ───────────────────────────────────────────

    def _load(self) -> None:
        if self.cache_path is None or not self.cache_path.exists():
            return
        try:
            data = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable cfg cache %s: %s", self.cache_path, e)
            return
        for version, triples in data.items():
            for triple, facts in triples.items():
                self._entries.setdefault(version, {})[triple] = CfgSnapshot(
                    triple=triple,
                    rustc_version=version,
                    facts=frozenset((k, v) for k, v in facts),
                )

    def save(self) -> None:
        if self.cache_path is None or not self._dirty:
            return
        data = {
            version: {
                triple: sorted([k, v] for k, v in snap.facts)
                for triple, snap in sorted(triples.items())
            }
            for version, triples in sorted(self._entries.items())
        }
        atomic_write_text(self.cache_path, json.dumps(data, indent=2, sort_keys=True) + "\n")
        self._dirty = False

    # ── Access ────────────────────────────────────────────────

    def rustc_version(self) -> str:
        if self._rustc_version is None:
            result = self.runner.run(["rustc", "--version"])
            self._rustc_version = result.stdout.strip()
        return self._rustc_version

    def put(self, snapshot: CfgSnapshot) -> None:
        existing = self._entries.get(snapshot.rustc_version, {}).get(snapshot.triple)
        if existing is not None:
            if existing.facts != snapshot.facts:
                raise ValueError(
                    f"cfg snapshot for {snapshot.triple} ({snapshot.rustc_version}) is already cached"
                )
            return
        self._entries.setdefault(snapshot.rustc_version, {})[snapshot.triple] = snapshot
        self._dirty = True

    def get(self, triple: str) -> CfgSnapshot | None:
        return self._entries.get(self.rustc_version(), {}).get(triple)

    def snapshots(self) -> list[CfgSnapshot]:
        """Snapshots available for the current compiler, in supported-triple order."""
        entries = self._entries.get(self.rustc_version(), {})
        return [entries[t] for t in self.triples if t in entries]

    def known_keys(self) -> set[str]:
        keys: set[str] = set()
        for snapshot in self.snapshots():
            keys |= snapshot.keys()
        return keys

    def covered_oses(self) -> set[Os]:
        return {s.os for s in self.snapshots() if s.os is not None}

    # ── Fetching ──────────────────────────────────────────────

    def _fetch(self, triple: str) -> str:
        result = self.runner.run(["rustc", "--print=cfg", "--target", triple])
        return result.stdout

    def ensure(self, diagnostics: Diagnostics | None = None) -> list[CfgSnapshot]:
        """Fetch snapshots for every triple not cached under the current compiler.

        Fetches are independent and run concurrently; all are joined before
        returning. A failing triple is skipped and reported.
        """
        try:
            version = self.rustc_version()
        except CommandError as e:
            if diagnostics is not None:
                diagnostics.warn("cfg", f"cannot determine rustc version: {e}")
            self._rustc_version = "unknown"
            version = self._rustc_version

        missing = [t for t in self.triples if t not in self._entries.get(version, {})]
        if missing:
            logger.debug("fetching cfg for %d triple(s): %s", len(missing), ", ".join(missing))
            with ThreadPoolExecutor(max_workers=self.max_workers or len(missing)) as pool:
                futures = {triple: pool.submit(self._fetch, triple) for triple in missing}
            for triple, future in futures.items():
                try:
                    facts = parse_cfg_output(future.result())
                except CommandError as e:
                    if diagnostics is not None:
                        diagnostics.warn("cfg", f"rustc --print=cfg failed: {e}", subject=triple)
                    continue
                self.put(CfgSnapshot(triple=triple, rustc_version=version, facts=facts))
        else:
            logger.debug("cfg cache hit for all %d triples (%s)", len(self.triples), version)

        snapshots = self.snapshots()
        if diagnostics is not None:
            for os_ in sorted({o for o, t in SUPPORTED_TARGETS if t in self.triples}, key=lambda o: o.value):
                if os_ not in self.covered_oses():
                    diagnostics.warn(
                        "cfg",
                        f"no cfg snapshot available for {os_.value}; predicates are assumed true there",
                    )
        self.save()
        return snapshots
