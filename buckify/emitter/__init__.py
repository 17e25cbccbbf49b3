"""Rule construction and Starlark rendering."""

from buckify.emitter.buck_file import GENERATED_HEADER, load_statements, render_buck_file
from buckify.emitter.rules import CROSS_SELECT_EXPR, RuleEmitter, build_name
from buckify.emitter.starlark import Raw, render_rule, render_value

__all__ = [
    "CROSS_SELECT_EXPR",
    "GENERATED_HEADER",
    "Raw",
    "RuleEmitter",
    "build_name",
    "load_statements",
    "render_buck_file",
    "render_rule",
    "render_value",
]
