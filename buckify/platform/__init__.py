"""Platform handling: cfg snapshots, predicates, and edge classification."""

from buckify.platform.cfg_store import CfgSnapshot, CfgSnapshotStore, parse_cfg_output
from buckify.platform.mapper import PlatformMapper
from buckify.platform.predicate import PredicateEvaluator, parse_predicate
from buckify.platform.targets import SUPPORTED_TARGETS, SUPPORTED_TRIPLES, lookup_platforms

__all__ = [
    "CfgSnapshot",
    "CfgSnapshotStore",
    "PlatformMapper",
    "PredicateEvaluator",
    "SUPPORTED_TARGETS",
    "SUPPORTED_TRIPLES",
    "lookup_platforms",
    "parse_cfg_output",
    "parse_predicate",
]
