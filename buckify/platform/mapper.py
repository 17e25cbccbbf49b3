"""Classify dependency edges by the operating systems they are active on."""

from __future__ import annotations

import logging
from typing import Iterable

from buckify.diagnostics import Diagnostics
from buckify.errors import PredicateEvaluationIssue
from buckify.models import ALL_OSES, ClassifiedEdge, Os
from buckify.platform.cfg_store import CfgSnapshotStore
from buckify.platform.predicate import PredicateEvaluator, Triple
from buckify.platform.targets import lookup_platforms

logger = logging.getLogger(__name__)


class PlatformMapper:
    """Evaluate edge predicates against every supported triple.

    An OS is active for a predicate when any of its triples evaluates true.
    Predicates that cannot be evaluated precisely fail open: the edge is
    treated as unconditional and a diagnostic is recorded.
    """

    def __init__(
        self,
        store: CfgSnapshotStore,
        diagnostics: Diagnostics | None = None,
        evaluator: PredicateEvaluator | None = None,
    ):
        self.store = store
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.evaluator = evaluator or PredicateEvaluator(store)
        self._memo: dict[str, frozenset[Os]] = {}

    def oses_for(self, predicate: str | None) -> frozenset[Os]:
        """Set of OSes on which ``predicate`` holds; all OSes for no predicate."""
        if predicate is None:
            return ALL_OSES
        cached = self._memo.get(predicate)
        if cached is not None:
            return cached

        try:
            expr = self.evaluator.check_keys(predicate)
            snapshots = self.store.snapshots()
            active = {s.os for s in snapshots if s.os is not None and self.evaluator.evaluate(predicate, s)}
            # No snapshot for an OS: we cannot rule it out.
            active |= ALL_OSES - self.store.covered_oses()
            result = frozenset(active)
            # Only a bare triple can name a platform we do not build for;
            # a cfg() that holds nowhere is kept on every platform.
            if not result and not isinstance(expr, Triple):
                self.diagnostics.warn(
                    "predicate",
                    f"`{predicate}` holds on no supported platform; treating it as active on every platform",
                )
                result = ALL_OSES
        except PredicateEvaluationIssue as e:
            self.diagnostics.warn(
                "predicate",
                f"{e.reason}; treating `{predicate}` as active on every platform",
            )
            result = ALL_OSES

        self._memo[predicate] = result
        return result

    def classify(
        self,
        label: str,
        predicates: Iterable[str | None],
        alias: str | None = None,
        subject: str = "",
    ) -> ClassifiedEdge | None:
        """Merge the predicates of every dependency kind that applies to an edge.

        Returns None when every predicate names an unsupported target triple.
        """
        active: set[Os] = set()
        for predicate in predicates:
            active |= self.oses_for(predicate)
            if active == ALL_OSES:
                break

        if not active:
            self.diagnostics.note(
                "predicate",
                f"dependency `{label}` targets only unsupported platforms and is omitted",
                subject=subject,
            )
            return None
        if active == ALL_OSES:
            return ClassifiedEdge(label=label, alias=alias)
        return ClassifiedEdge(label=label, alias=alias, platforms=frozenset(active))

    @staticmethod
    def exclusive_platforms(package_name: str) -> frozenset[Os] | None:
        return lookup_platforms(package_name)
