"""Target predicate parser and evaluator.

Predicates follow Cargo's platform syntax: either a bare target triple
(``x86_64-pc-windows-msvc``) or a cfg expression, with or without the
``cfg(...)`` wrapper::

    all(unix, target_arch = "x86_64")
    any(windows, target_os = "macos")
    not(target_env = "msvc")

The text is parsed into a small expression tree (All / Any / Not / Atom /
Triple) and evaluated recursively against one CfgSnapshot.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, Union

from buckify.errors import PredicateSyntaxError, UnknownCfgKeyError
from buckify.platform.cfg_store import CfgSnapshot, CfgSnapshotStore


@dataclass(frozen=True)
class Atom:
    key: str
    value: str | None = None


@dataclass(frozen=True)
class Not:
    child: "Expr"


@dataclass(frozen=True)
class All:
    children: tuple["Expr", ...]


@dataclass(frozen=True)
class Any:
    children: tuple["Expr", ...]


@dataclass(frozen=True)
class Triple:
    name: str


Expr = Union[Atom, Not, All, Any, Triple]

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<string>"(?:[^"\\]|\\.)*")
  | (?P<ident>[A-Za-z_][A-Za-z0-9_.\-]*)
  | (?P<punct>[(),=])
    """,
    re.VERBOSE,
)

_OPERATORS = ("all", "any", "not")


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m:
            raise PredicateSyntaxError(text, f"unexpected character {text[pos]!r} at offset {pos}")
        pos = m.end()
        kind = m.lastgroup
        if kind == "ws":
            continue
        value = m.group()
        if kind == "string":
            value = re.sub(r"\\(.)", r"\1", value[1:-1])
        tokens.append((kind, value))
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def next(self) -> tuple[str, str]:
        token = self.peek()
        if token is None:
            raise PredicateSyntaxError(self.text, "unexpected end of predicate")
        self.pos += 1
        return token

    def expect(self, value: str) -> None:
        kind, got = self.next()
        if kind != "punct" or got != value:
            raise PredicateSyntaxError(self.text, f"expected `{value}`, found `{got}`")

    def at(self, value: str) -> bool:
        token = self.peek()
        return token is not None and token[0] == "punct" and token[1] == value

    def parse(self) -> Expr:
        if not self.tokens:
            raise PredicateSyntaxError(self.text, "empty predicate")

        first_kind, first = self.tokens[0]
        if len(self.tokens) == 1 and first_kind == "ident" and "-" in first:
            self.pos = 1
            return Triple(first)

        if first_kind == "ident" and first == "cfg" and len(self.tokens) > 1 and self.tokens[1] == ("punct", "("):
            self.pos = 2
            expr = self.parse_expr()
            self.expect(")")
        else:
            expr = self.parse_expr()

        if self.peek() is not None:
            raise PredicateSyntaxError(self.text, f"trailing input `{self.peek()[1]}`")
        return expr

    def parse_expr(self) -> Expr:
        kind, name = self.next()
        if kind != "ident":
            raise PredicateSyntaxError(self.text, f"expected identifier, found `{name}`")

        if self.at("("):
            if name not in _OPERATORS:
                raise PredicateSyntaxError(self.text, f"unknown operator `{name}`")
            self.next()
            children = self.parse_list()
            if name == "not":
                if len(children) != 1:
                    raise PredicateSyntaxError(self.text, "not() takes exactly one argument")
                return Not(children[0])
            return All(children) if name == "all" else Any(children)

        if self.at("="):
            self.next()
            kind, value = self.next()
            if kind != "string":
                raise PredicateSyntaxError(self.text, f"expected string after `{name} =`")
            return Atom(name, value)

        return Atom(name)

    def parse_list(self) -> tuple[Expr, ...]:
        children: list[Expr] = []
        while not self.at(")"):
            children.append(self.parse_expr())
            if self.at(","):
                self.next()
            elif not self.at(")"):
                kind, got = self.next()
                raise PredicateSyntaxError(self.text, f"expected `,` or `)`, found `{got}`")
        self.expect(")")
        return tuple(children)


def parse_predicate(text: str) -> Expr:
    return _Parser(text.strip()).parse()


def evaluate(expr: Expr, snapshot: CfgSnapshot) -> bool:
    if isinstance(expr, Atom):
        return snapshot.matches(expr.key, expr.value)
    if isinstance(expr, Not):
        return not evaluate(expr.child, snapshot)
    if isinstance(expr, All):
        return all(evaluate(c, snapshot) for c in expr.children)
    if isinstance(expr, Any):
        return any(evaluate(c, snapshot) for c in expr.children)
    if isinstance(expr, Triple):
        return expr.name == snapshot.triple
    raise TypeError(f"not a predicate expression: {expr!r}")


def iter_atoms(expr: Expr) -> Iterator[Atom]:
    if isinstance(expr, Atom):
        yield expr
    elif isinstance(expr, Not):
        yield from iter_atoms(expr.child)
    elif isinstance(expr, (All, Any)):
        for child in expr.children:
            yield from iter_atoms(child)


class PredicateEvaluator:
    """Evaluate predicate strings against snapshots from one store."""

    def __init__(self, store: CfgSnapshotStore):
        self.store = store
        self._parsed: dict[str, Expr] = {}

    def parse(self, predicate: str) -> Expr:
        expr = self._parsed.get(predicate)
        if expr is None:
            expr = parse_predicate(predicate)
            self._parsed[predicate] = expr
        return expr

    def check_keys(self, predicate: str) -> Expr:
        """Parse and reject atoms whose key no snapshot knows about."""
        expr = self.parse(predicate)
        known = self.store.known_keys()
        for atom in iter_atoms(expr):
            if atom.key not in known:
                raise UnknownCfgKeyError(predicate, atom.key)
        return expr

    def evaluate(self, predicate: str, snapshot: CfgSnapshot) -> bool:
        return evaluate(self.check_keys(predicate), snapshot)
