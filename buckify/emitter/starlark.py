"""Deterministic Starlark rendering of generated rules."""

from __future__ import annotations

import json

from buckify.models import GeneratedRule

INDENT = "    "


class Raw(str):
    """A Starlark expression emitted verbatim (select(), glob(), ...)."""


def quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def render_value(value: object, level: int = 1) -> str:
    if isinstance(value, Raw):
        return str(value)
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, str):
        return quote(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return _render_list(sorted(value), level)
    if isinstance(value, (list, tuple)):
        return _render_list(list(value), level)
    if isinstance(value, dict):
        return _render_dict(value, level)
    raise TypeError(f"cannot render {type(value).__name__} as Starlark")


def _render_list(items: list, level: int) -> str:
    if not items:
        return "[]"
    if len(items) == 1 and not isinstance(items[0], (dict, list, tuple, set, frozenset)):
        return f"[{render_value(items[0], level + 1)}]"
    pad = INDENT * (level + 1)
    body = "".join(f"{pad}{render_value(item, level + 1)},\n" for item in items)
    return f"[\n{body}{INDENT * level}]"


def _render_dict(mapping: dict, level: int) -> str:
    if not mapping:
        return "{}"
    pad = INDENT * (level + 1)
    body = "".join(
        f"{pad}{quote(key)}: {render_value(mapping[key], level + 1)},\n"
        for key in sorted(mapping)
    )
    return f"{{\n{body}{INDENT * level}}}"


def _is_empty(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, set, frozenset, dict)) and not isinstance(value, Raw):
        return len(value) == 0
    return False


def rule_fields(rule: GeneratedRule) -> list[tuple[str, object]]:
    """Attributes in output order; empty ones are dropped."""
    fields: list[tuple[str, object]] = [("name", rule.name)]
    fields.extend(rule.attrs.items())
    fields.extend([
        ("env", rule.env),
        ("rustc_flags", rule.rustc_flags),
        ("compatible_with", rule.compatible_with),
        ("target_compatible_with", Raw(rule.target_compatible_with) if rule.target_compatible_with else None),
        ("named_deps", rule.named_deps),
        ("os_named_deps", rule.os_named_deps),
        ("os_deps", rule.os_deps),
        ("deps", rule.deps),
    ])
    return [(key, value) for key, value in fields if not _is_empty(value)]


def render_rule(rule: GeneratedRule) -> str:
    lines = [f"{rule.kind.value}("]
    for key, value in rule_fields(rule):
        lines.append(f"{INDENT}{key} = {render_value(value)},")
    lines.append(")")
    return "\n".join(lines) + "\n"


def render_load(bzl: str, symbols: set[str]) -> str:
    args = ", ".join(quote(s) for s in [bzl, *sorted(symbols)])
    return f"load({args})\n"
