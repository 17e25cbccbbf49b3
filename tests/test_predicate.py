"""Tests for the target predicate grammar and evaluator."""

import pytest

from buckify.errors import PredicateEvaluationIssue, PredicateSyntaxError, UnknownCfgKeyError
from buckify.platform.predicate import (
    All,
    Any,
    Atom,
    Not,
    PredicateEvaluator,
    Triple,
    evaluate,
    iter_atoms,
    parse_predicate,
)

from conftest import load_snapshots


def _snapshots():
    return {s.triple: s for s in load_snapshots()}


# ── Parsing ───────────────────────────────────────────────────

class TestParse:
    def test_bare_key(self):
        assert parse_predicate("cfg(unix)") == Atom("unix")

    def test_key_value(self):
        assert parse_predicate('cfg(target_os = "macos")') == Atom("target_os", "macos")

    def test_wrapper_is_optional(self):
        assert parse_predicate('target_os = "macos"') == parse_predicate('cfg(target_os = "macos")')

    def test_nested(self):
        expr = parse_predicate('cfg(all(unix, not(target_os = "macos")))')
        assert expr == All((Atom("unix"), Not(Atom("target_os", "macos"))))

    def test_any_with_trailing_comma(self):
        expr = parse_predicate("cfg(any(windows, unix,))")
        assert expr == Any((Atom("windows"), Atom("unix")))

    def test_empty_all_and_any(self):
        assert parse_predicate("cfg(all())") == All(())
        assert parse_predicate("cfg(any())") == Any(())

    def test_escaped_string(self):
        assert parse_predicate(r'cfg(feature = "a\"b")') == Atom("feature", 'a"b')

    def test_triple(self):
        assert parse_predicate("x86_64-pc-windows-msvc") == Triple("x86_64-pc-windows-msvc")

    def test_whitespace_is_ignored(self):
        assert parse_predicate('  cfg( target_env = "msvc" ) ') == Atom("target_env", "msvc")

    @pytest.mark.parametrize("text", [
        "",
        "cfg(",
        "cfg(unix",
        "cfg(unix))",
        'cfg(target_os = )',
        "cfg(not(unix, windows))",
        "cfg(not())",
        "cfg(maybe(unix))",
        "cfg(unix windows)",
        "cfg(target_os = macos)",
        "cfg(@)",
    ])
    def test_malformed(self, text):
        with pytest.raises(PredicateSyntaxError):
            parse_predicate(text)

    def test_syntax_error_is_an_evaluation_issue(self):
        with pytest.raises(PredicateEvaluationIssue):
            parse_predicate("cfg(")

    def test_iter_atoms(self):
        expr = parse_predicate('cfg(any(unix, all(windows, not(target_env = "gnu"))))')
        assert [a.key for a in iter_atoms(expr)] == ["unix", "windows", "target_env"]


# ── Evaluation ────────────────────────────────────────────────

class TestEvaluate:
    def test_unix(self):
        snaps = _snapshots()
        expr = parse_predicate("cfg(unix)")
        assert evaluate(expr, snaps["x86_64-unknown-linux-gnu"])
        assert evaluate(expr, snaps["aarch64-apple-darwin"])
        assert not evaluate(expr, snaps["x86_64-pc-windows-msvc"])

    def test_not(self):
        snaps = _snapshots()
        expr = parse_predicate('cfg(not(target_os = "linux"))')
        assert not evaluate(expr, snaps["x86_64-unknown-linux-gnu"])
        assert evaluate(expr, snaps["aarch64-apple-darwin"])

    def test_all_and_any_identities(self):
        snap = _snapshots()["x86_64-unknown-linux-gnu"]
        assert evaluate(All(()), snap)
        assert not evaluate(Any(()), snap)

    def test_empty_value(self):
        snap = _snapshots()["aarch64-apple-darwin"]
        assert evaluate(parse_predicate('cfg(target_env = "")'), snap)

    def test_multi_valued_key(self):
        snap = _snapshots()["x86_64-unknown-linux-gnu"]
        assert evaluate(parse_predicate('cfg(target_feature = "sse2")'), snap)
        assert evaluate(parse_predicate('cfg(target_has_atomic = "64")'), snap)

    def test_triple_matches_only_itself(self):
        snaps = _snapshots()
        expr = parse_predicate("x86_64-pc-windows-msvc")
        assert evaluate(expr, snaps["x86_64-pc-windows-msvc"])
        assert not evaluate(expr, snaps["x86_64-unknown-linux-gnu"])


class TestPredicateEvaluator:
    def test_unknown_key(self, cfg_store):
        evaluator = PredicateEvaluator(cfg_store)
        with pytest.raises(UnknownCfgKeyError) as exc:
            evaluator.check_keys('cfg(target_flavor = "fancy")')
        assert exc.value.key == "target_flavor"

    def test_known_keys_pass(self, cfg_store):
        evaluator = PredicateEvaluator(cfg_store)
        snap = cfg_store.get("x86_64-pc-windows-msvc")
        assert evaluator.evaluate("cfg(windows)", snap)

    def test_parse_is_memoized(self, cfg_store):
        evaluator = PredicateEvaluator(cfg_store)
        assert evaluator.parse("cfg(unix)") is evaluator.parse("cfg(unix)")
