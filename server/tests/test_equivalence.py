"""
Tests for the equivalence decision protocol.
"""

import pytest

import equivalence
from equivalence import canonicalize_expression, check_equivalence, create_rule_engine
from latex_parser import parse_latex, simplify_tree
from rule_base import Rule
from rule_engine import RuleEngine
from schemas import EquivalenceConfig, FallbackVerdict, Method, Region
from serializer import serialize

RULES_ONLY = EquivalenceConfig(use_algebrite=False)


class RecordingFallback:
    """Returns a fixed verdict (or raises) and records every call."""

    def __init__(self, verdict=None, error=None):
        self.verdict = verdict or FallbackVerdict(equivalent=True, method=Method.ALGEBRITE_SIMPLIFY,
                                                  simplified="x")
        self.error = error
        self.calls = []

    def decide(self, expr1, expr2):
        self.calls.append((expr1, expr2))
        if self.error is not None:
            raise self.error
        return self.verdict


def canonical(text, region=Region.US, strict=False):
    tree = simplify_tree(parse_latex(text).ast)
    return create_rule_engine(region, strict).canonicalize(tree)


@pytest.mark.parametrize("expr1,expr2", [
    ("(x+2)^2", "x^2+4x+4"),
    ("(x+2)(x+2)", "x^2+4x+4"),
    ("x^2+4x+4", "4x+x^2+4"),
    ("2x+3y", "3y+2x"),
    ("ab", "ba"),
    ("2x+3x", "5x"),
    ("x \\cdot x", "x^2"),
    ("0.5", "\\frac{1}{2}"),
    ("0.999999", "1"),
    ("\\sin^2(x)+\\cos^2(x)", "1"),
    ("\\tan(x)", "\\frac{\\sin(x)}{\\cos(x)}"),
    ("\\cos(-x)", "\\cos(x)"),
    ("--x", "x"),
])
def test_rule_engine_proves_equivalence(expr1, expr2):
    fallback = RecordingFallback()
    result = check_equivalence(expr1, expr2, EquivalenceConfig(), fallback=fallback)
    assert result.equivalent is True
    assert result.method == Method.CANONICALIZATION
    assert result.canonical1 == result.canonical2
    assert fallback.calls == []


def test_equivalence_is_symmetric():
    forward = check_equivalence("(x+2)^2", "x^2+4x+4", RULES_ONLY)
    backward = check_equivalence("x^2+4x+4", "(x+2)^2", RULES_ONLY)
    assert forward.equivalent is backward.equivalent is True
    assert forward.canonical1 == backward.canonical2


def test_check_is_deterministic():
    first = check_equivalence("3x + 2(x - 1)", "5x - 2", RULES_ONLY)
    second = check_equivalence("3x + 2(x - 1)", "5x - 2", RULES_ONLY)
    assert first.model_dump(exclude={"time"}) == second.model_dump(exclude={"time"})


@pytest.mark.parametrize("text", ["x^2+4x+4", "2x+3y+4", "x \\cdot x + 2x + x"])
def test_canonical_form_is_stable(text):
    once = canonical(text)
    again = create_rule_engine().canonicalize(once.ast)
    assert serialize(again.ast) == serialize(once.ast)
    assert again.applied_rules == []


@pytest.mark.parametrize("text", ["(x+2)^2", "(x+1)(x-1)", "\\sin^2(x)+\\cos^2(x)+x"])
def test_strict_canonical_form_is_a_fixpoint(text):
    once = canonical(text, strict=True)
    assert once.converged is True
    again = create_rule_engine(strict=True).canonicalize(once.ast)
    assert again.applied_rules == []
    assert again.iterations == 1


def test_strict_fixpoint_option_still_proves_equivalence():
    config = EquivalenceConfig(use_algebrite=False, strict_fixpoint=True)
    assert check_equivalence("(x+2)^2", "x^2+4x+4", config).equivalent is True


def test_float_tolerance_is_configurable():
    loose = check_equivalence("0.999", "1", EquivalenceConfig(use_algebrite=False, float_tolerance=1e-2))
    tight = check_equivalence("0.999", "1", RULES_ONLY)
    assert loose.equivalent is True
    assert tight.equivalent is False


def test_different_expressions_without_fallback():
    fallback = RecordingFallback()
    result = check_equivalence("x+1", "x+2", RULES_ONLY, fallback=fallback)
    assert result.equivalent is False
    assert result.method == Method.CANONICALIZATION_FAILED
    assert result.canonical1 != result.canonical2
    assert result.error is None
    assert fallback.calls == []


def test_fallback_receives_original_text():
    fallback = RecordingFallback()
    result = check_equivalence("\\frac{x^2-1}{x-1}", "x+1", fallback=fallback)
    assert fallback.calls == [("\\frac{x^2-1}{x-1}", "x+1")]
    assert result.equivalent is True
    assert result.method == Method.ALGEBRITE_SIMPLIFY
    assert result.algebrite.simplified == "x"
    assert result.canonical1 is not None and result.canonical2 is not None
    assert result.forced is False


def test_fallback_negative_verdict():
    verdict = FallbackVerdict(equivalent=False, method=Method.ALGEBRITE_NOT_EQUIVALENT,
                              difference="-1", expr1="x + 1", expr2="x + 2")
    result = check_equivalence("x+1", "x+2", fallback=RecordingFallback(verdict))
    assert result.equivalent is False
    assert result.method == Method.ALGEBRITE_NOT_EQUIVALENT
    assert result.algebrite.difference == "-1"


def test_fallback_failure_is_reported():
    fallback = RecordingFallback(error=RuntimeError("engine exploded"))
    result = check_equivalence("x+1", "x+2", fallback=fallback)
    assert result.equivalent is False
    assert result.method == Method.ALGEBRITE_ERROR
    assert "engine exploded" in result.error
    assert result.canonical1 is not None


@pytest.mark.parametrize("expr1,expr2", [("\\frac{1}{", "1"), ("1", "\\frac{1}{"), ("", "x")])
def test_parse_failure_on_either_side(expr1, expr2):
    fallback = RecordingFallback()
    result = check_equivalence(expr1, expr2, fallback=fallback)
    assert result.equivalent is False
    assert result.method == Method.PARSE_ERROR
    assert result.error
    assert fallback.calls == []


def test_uninterpretable_tree_is_a_parse_error():
    result = check_equivalence("(x+1)_2", "x", RULES_ONLY)
    assert result.method == Method.PARSE_ERROR
    assert result.error.startswith("Could not interpret expression")


def test_custom_parser_collaborator():
    def failing_parser(text):
        return parse_latex("")

    result = check_equivalence("x", "x", RULES_ONLY, parser=failing_parser)
    assert result.method == Method.PARSE_ERROR


def test_force_mode_skips_canonicalization():
    fallback = RecordingFallback()
    config = EquivalenceConfig(force_algebrite=True)
    result = check_equivalence("x+1", "1+x", config, fallback=fallback)
    assert fallback.calls == [("x+1", "1+x")]
    assert result.forced is True
    assert result.method == Method.ALGEBRITE_SIMPLIFY
    assert result.canonical1 is None
    assert result.applied_rules is None


def test_force_mode_failure_keeps_forced_flag():
    config = EquivalenceConfig(force_algebrite=True)
    result = check_equivalence("x", "x", config, fallback=RecordingFallback(error=ValueError("nope")))
    assert result.method == Method.ALGEBRITE_ERROR
    assert result.forced is True


def test_force_mode_still_reports_parse_errors():
    fallback = RecordingFallback()
    result = check_equivalence("\\frac{1}{", "1", EquivalenceConfig(force_algebrite=True), fallback=fallback)
    assert result.method == Method.PARSE_ERROR
    assert result.forced is True
    assert fallback.calls == []


def test_decimal_comma_only_in_eu():
    eu = check_equivalence("3,5", "3.5", EquivalenceConfig(region="EU", use_algebrite=False))
    us = check_equivalence("3,5", "3.5", RULES_ONLY)
    assert eu.equivalent is True
    assert us.equivalent is False


def test_debug_flag_does_not_change_verdict():
    plain = check_equivalence("(x+2)^2", "x^2+4x+4", RULES_ONLY)
    debug = check_equivalence("(x+2)^2", "x^2+4x+4", EquivalenceConfig(use_algebrite=False, debug=True))
    assert plain.model_dump(exclude={"time"}) == debug.model_dump(exclude={"time"})


def test_iteration_cap_still_returns_a_verdict():
    config = EquivalenceConfig(use_algebrite=False, max_canonicalization_iterations=1)
    result = check_equivalence("(x+2)^2", "x^2+4x+4", config)
    assert result.method in (Method.CANONICALIZATION, Method.CANONICALIZATION_FAILED)


def _broken_engine(region=Region.US, strict=False):
    engine = RuleEngine(region, strict=strict)
    engine.add_rule(Rule(
        name="broken",
        description="always fails",
        match=lambda node: True,
        transform=lambda node: 1 / 0,
    ))
    return engine


def test_rule_failure_without_fallback(monkeypatch):
    monkeypatch.setattr(equivalence, "create_rule_engine", _broken_engine)
    result = check_equivalence("x", "x", RULES_ONLY)
    assert result.equivalent is False
    assert result.method == Method.CANONICALIZATION_FAILED
    assert result.error.startswith("Canonicalization failed")


def test_rule_failure_falls_back(monkeypatch):
    monkeypatch.setattr(equivalence, "create_rule_engine", _broken_engine)
    fallback = RecordingFallback()
    result = check_equivalence("x", "x", fallback=fallback)
    assert fallback.calls == [("x", "x")]
    assert result.equivalent is True
    assert result.canonical1 is None


def test_canonicalize_expression_reports_trace():
    response = canonicalize_expression("2x + 3x")
    assert response.success is True
    assert response.canonical == "num:5|op:\\cdot|sym:x"
    assert response.converged is True
    assert response.iterations >= 2
    assert [step.rule_name for step in response.applied_rules][0] == "explicit-multiplication"


def test_canonicalize_expression_failure():
    response = canonicalize_expression("\\frac{1}{")
    assert response.success is False
    assert response.canonical is None


@pytest.mark.parametrize("expr1,expr2", [
    ("x-", "x"),
    ("x+", "x"),
    ("-", "0"),
    ("x+y-", "y+x"),
    ("\\cdot x", "x"),
])
def test_incomplete_line_is_not_proven_equal(expr1, expr2):
    result = check_equivalence(expr1, expr2, RULES_ONLY)
    assert result.equivalent is False
    assert result.method == Method.CANONICALIZATION_FAILED


def test_incomplete_line_keeps_its_dangling_sign():
    assert canonicalize_expression("x-").canonical == "sym:x|op:-"


def test_incomplete_line_is_rejected_by_the_symbolic_engine():
    result = check_equivalence("x-", "x")
    assert result.equivalent is False
    assert result.method == Method.ALGEBRITE_ERROR


def test_deep_nesting_is_a_parse_error():
    deep = "(" * 600 + "x" + ")" * 600
    result = check_equivalence(deep, "x", RULES_ONLY)
    assert result.equivalent is False
    assert result.method == Method.PARSE_ERROR
    assert result.error == "Expression is nested too deeply"


def test_nested_parentheses_within_limit_still_canonicalize():
    nested = "(" * 20 + "x" + ")" * 20
    result = check_equivalence(nested, "x", RULES_ONLY)
    assert result.equivalent is True
    assert result.method == Method.CANONICALIZATION


def test_recursion_in_simplifier_is_a_parse_error():
    def runaway(raw):
        raise RecursionError("maximum recursion depth exceeded")

    result = check_equivalence("x", "x", RULES_ONLY, simplifier=runaway)
    assert result.method == Method.PARSE_ERROR
    assert "recursion" in result.error


def test_canonicalize_expression_reports_rule_failure(monkeypatch):
    monkeypatch.setattr(equivalence, "create_rule_engine", _broken_engine)
    response = canonicalize_expression("x")
    assert response.success is False
    assert response.error.startswith("Canonicalization failed")


def test_canonicalize_expression_rejects_deep_nesting():
    response = canonicalize_expression("(" * 300 + "x" + ")" * 300)
    assert response.success is False
    assert response.error == "Expression is nested too deeply"
