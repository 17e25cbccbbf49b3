"""Assemble the generated text of one BUCK file."""

from __future__ import annotations

from buckify.emitter.starlark import render_load, render_rule
from buckify.models import BuckFile, GeneratedRule, RuleKind

GENERATED_HEADER = "# @generated by cargo-buckify"

CARGO_MANIFEST_BZL = "@buckify//:cargo_manifest.bzl"
WRAPPER_BZL = "@buckify//:wrapper.bzl"

_WRAPPED_KINDS = (
    RuleKind.RUST_LIBRARY,
    RuleKind.RUST_BINARY,
    RuleKind.RUST_TEST,
    RuleKind.BUILDSCRIPT_RUN,
)


def load_statements(rules: list[GeneratedRule]) -> list[str]:
    """load() lines for the macro rule kinds actually used."""
    kinds = {rule.kind for rule in rules}
    loads: list[str] = []
    if RuleKind.CARGO_MANIFEST in kinds:
        loads.append(render_load(CARGO_MANIFEST_BZL, {RuleKind.CARGO_MANIFEST.value}))
    wrapped = {kind.value for kind in _WRAPPED_KINDS if kind in kinds}
    if wrapped:
        loads.append(render_load(WRAPPER_BZL, wrapped))
    return loads


def render_buck_file(buck: BuckFile) -> str:
    parts = [GENERATED_HEADER + "\n\n"]
    loads = load_statements(buck.rules)
    if loads:
        parts.append("".join(loads) + "\n")
    parts.append("\n".join(render_rule(rule) for rule in buck.rules))
    return "".join(parts)
