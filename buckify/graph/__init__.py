"""Crate graph construction."""

from buckify.graph.builder import (
    CrateGraph,
    GraphBuilder,
    dep_kind_matches,
    first_party_label,
    lib_rule_name,
    package_dir,
)

__all__ = [
    "CrateGraph",
    "GraphBuilder",
    "dep_kind_matches",
    "first_party_label",
    "lib_rule_name",
    "package_dir",
]
