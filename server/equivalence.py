"""
Equivalence decision protocol.

parse -> simplify -> canonicalize -> serialize -> compare, with the
symbolic engine as a fallback. Every outcome, including failures, comes back
as a tagged ``EquivalenceResult``; nothing is raised past ``check_equivalence``.
"""

import logging
from time import perf_counter
from typing import List, Optional, Sequence

from algebra_rules import get_algebra_rules
from cas_fallback import SymbolicFallback
from latex_parser import parse_latex, simplify_tree
from nodes import to_dict
from rule_engine import RuleEngine
from schemas import (
    AppliedRulesPair,
    CanonicalizeResponse,
    EquivalenceConfig,
    EquivalenceResult,
    LineResult,
    Method,
    Region,
)
from serializer import serialize
from trig_rules import get_trig_rules

logger = logging.getLogger(__name__)


def create_rule_engine(region=Region.US, strict: bool = False) -> RuleEngine:
    """A fresh engine loaded with every catalog rule active for ``region``."""
    engine = RuleEngine(region, strict=strict)
    engine.add_rules(get_algebra_rules() + get_trig_rules())
    return engine


def _elapsed(start: float) -> float:
    return (perf_counter() - start) * 1000


def _ask_fallback(expr1, expr2, config, fallback, start, **extra) -> EquivalenceResult:
    if fallback is None:
        fallback = SymbolicFallback(timeout=config.algebrite_timeout)
    try:
        verdict = fallback.decide(expr1, expr2)
    except Exception as exc:
        logger.warning("Symbolic fallback failed for %r vs %r: %s", expr1, expr2, exc)
        return EquivalenceResult(
            equivalent=False,
            method=Method.ALGEBRITE_ERROR,
            error=str(exc),
            time=_elapsed(start),
            **extra,
        )
    if config.debug:
        logger.debug("Fallback verdict: %s via %s", verdict.equivalent, verdict.method.value)
    return EquivalenceResult(
        equivalent=verdict.equivalent,
        method=verdict.method,
        algebrite=verdict,
        time=_elapsed(start),
        **extra,
    )


def check_equivalence(
    expr1: str,
    expr2: str,
    config: Optional[EquivalenceConfig] = None,
    *,
    parser=parse_latex,
    simplifier=simplify_tree,
    fallback=None,
) -> EquivalenceResult:
    """Decide whether two LaTeX expressions are equivalent.

    Args:
        expr1: first expression
        expr2: second expression
        config: check options; defaults to ``EquivalenceConfig()``
        parser: ``text -> ParseResult`` collaborator
        simplifier: ``raw tree -> Node`` collaborator
        fallback: object with ``decide(expr1, expr2) -> FallbackVerdict``;
            a SymPy-backed ``SymbolicFallback`` is built when omitted
    """
    start = perf_counter()
    config = config or EquivalenceConfig()
    forced = config.force_algebrite

    parsed1, parsed2 = parser(expr1), parser(expr2)
    if not parsed1.success or not parsed2.success:
        error = parsed1.error if not parsed1.success else parsed2.error
        if config.debug:
            logger.debug("Parse failed: %s", error)
        return EquivalenceResult(equivalent=False, method=Method.PARSE_ERROR, error=error,
                                 forced=forced, time=_elapsed(start))

    try:
        tree1 = simplifier(parsed1.ast)
        tree2 = simplifier(parsed2.ast)
    except (ValueError, KeyError, TypeError, RecursionError) as exc:
        return EquivalenceResult(equivalent=False, method=Method.PARSE_ERROR,
                                 error=f"Could not interpret expression: {exc}",
                                 forced=forced, time=_elapsed(start))
    if config.debug:
        logger.debug("Parsed %r -> %r", expr1, tree1)
        logger.debug("Parsed %r -> %r", expr2, tree2)

    if forced:
        return _ask_fallback(expr1, expr2, config, fallback, start, forced=True)

    canonical1 = canonical2 = None
    rule_error = None
    try:
        result1 = create_rule_engine(config.region, config.strict_fixpoint).canonicalize(
            tree1, config.max_canonicalization_iterations)
        result2 = create_rule_engine(config.region, config.strict_fixpoint).canonicalize(
            tree2, config.max_canonicalization_iterations)
        serialized = (serialize(result1.ast, config.float_tolerance),
                      serialize(result2.ast, config.float_tolerance))
    except Exception as exc:
        logger.exception("Rule failed while canonicalizing %r / %r", expr1, expr2)
        rule_error = f"Canonicalization failed: {exc}"
    else:
        canonical1, canonical2 = serialized
        if config.debug:
            logger.debug("Canonical forms: %s | %s (converged: %s, %s)",
                         canonical1, canonical2, result1.converged, result2.converged)
        if canonical1 == canonical2:
            return EquivalenceResult(
                equivalent=True,
                method=Method.CANONICALIZATION,
                canonical1=canonical1,
                canonical2=canonical2,
                applied_rules=AppliedRulesPair(expr1=result1.applied_rules, expr2=result2.applied_rules),
                time=_elapsed(start),
            )

    if config.use_algebrite:
        return _ask_fallback(expr1, expr2, config, fallback, start,
                             canonical1=canonical1, canonical2=canonical2)

    return EquivalenceResult(
        equivalent=False,
        method=Method.CANONICALIZATION_FAILED,
        canonical1=canonical1,
        canonical2=canonical2,
        error=rule_error,
        time=_elapsed(start),
    )


def check_sequence(lines: Sequence[str], config: Optional[EquivalenceConfig] = None,
                   **collaborators) -> List[LineResult]:
    """Check each line of a derivation against the line before it."""
    results = []
    for index in range(1, len(lines)):
        result = check_equivalence(lines[index - 1], lines[index], config, **collaborators)
        results.append(LineResult(
            line_number=index + 1,
            previous=lines[index - 1],
            current=lines[index],
            **result.model_dump(),
        ))
    return results


def canonicalize_expression(expression: str, region=Region.US, max_iterations: int = 100,
                            float_tolerance: float = 1e-6, strict: bool = False) -> CanonicalizeResponse:
    parsed = parse_latex(expression)
    if not parsed.success:
        return CanonicalizeResponse(success=False, error=parsed.error)
    try:
        tree = simplify_tree(parsed.ast)
    except (ValueError, KeyError, TypeError, RecursionError) as exc:
        return CanonicalizeResponse(success=False, error=f"Could not interpret expression: {exc}")
    try:
        result = create_rule_engine(region, strict).canonicalize(tree, max_iterations)
        canonical = serialize(result.ast, float_tolerance)
        ast = to_dict(result.ast)
    except Exception as exc:
        logger.exception("Rule failed while canonicalizing %r", expression)
        return CanonicalizeResponse(success=False, error=f"Canonicalization failed: {exc}")
    return CanonicalizeResponse(
        success=True,
        canonical=canonical,
        ast=ast,
        iterations=result.iterations,
        applied_rules=result.applied_rules,
        converged=result.converged,
    )
