"""
Fixpoint rule engine that rewrites an expression tree into canonical form.

Rules are applied in priority order (higher first, registration order on
ties). One *sweep* runs every active rule over the whole tree, post-order.
By default a rule that changes nothing during a sweep is considered at
fixpoint and skipped for the rest of the call; ``strict=True`` keeps every
rule active until a full sweep changes nothing.
"""

import logging
from typing import Any, Iterable, List, Mapping, Union

from nodes import Node, map_children
from rule_base import Rule, RuleRegistrationError
from schemas import AppliedRule, CanonicalizationResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 100


class RuleEngine:
    def __init__(self, region: str = "US", strict: bool = False):
        self.region = getattr(region, "value", region)
        self.strict = strict
        self._rules: List[Rule] = []
        self.applied_rules: List[AppliedRule] = []

    @property
    def rules(self) -> List[Rule]:
        return list(self._rules)

    def add_rule(self, rule: Union[Rule, Mapping[str, Any]]) -> bool:
        """Register a rule; returns False when its region excludes this engine.

        Raises RuleRegistrationError for an incomplete record or a duplicate name.
        """
        if not isinstance(rule, Rule):
            if not isinstance(rule, Mapping):
                raise RuleRegistrationError(f"Cannot register {type(rule).__name__} as a rule")
            rule = Rule.from_mapping(rule)
        elif not rule.name or not callable(rule.match) or not callable(rule.transform):
            raise RuleRegistrationError(f"Rule '{rule.name}' needs a name, match and transform")

        if any(existing.name == rule.name for existing in self._rules):
            raise RuleRegistrationError(f"Rule '{rule.name}' is already registered")
        if not rule.applies_to(self.region):
            return False

        self._rules.append(rule)
        # sorted() is stable, so equal priorities keep registration order
        self._rules = sorted(self._rules, key=lambda r: r.priority, reverse=True)
        return True

    def add_rules(self, rules: Iterable[Union[Rule, Mapping[str, Any]]]) -> None:
        for rule in rules:
            self.add_rule(rule)

    def clear_rules(self) -> None:
        self._rules = []

    def canonicalize(self, ast: Node, max_iterations: int = DEFAULT_MAX_ITERATIONS) -> CanonicalizationResult:
        current = ast
        trace: List[AppliedRule] = []
        at_fixpoint = set()
        iterations = 0
        converged = False

        while iterations < max_iterations:
            iterations += 1
            sweep_changed = False
            for rule in self._rules:
                if rule.name in at_fixpoint:
                    continue
                applied_before = len(trace)
                current = self._apply(rule, current, iterations, trace)
                if len(trace) > applied_before:
                    sweep_changed = True
                elif not self.strict:
                    at_fixpoint.add(rule.name)
            if not sweep_changed:
                converged = True
                break

        if not converged:
            logger.warning("Canonicalization stopped at the iteration cap (%d) without converging",
                           max_iterations)

        self.applied_rules = trace
        return CanonicalizationResult(
            ast=current,
            iterations=iterations,
            applied_rules=list(trace),
            converged=converged,
        )

    def _apply(self, rule: Rule, node: Node, iteration: int, trace: List[AppliedRule]) -> Node:
        node = map_children(node, lambda child: self._apply(rule, child, iteration, trace))
        if not rule.match(node):
            return node
        result = rule.transform(node)
        if result == node:
            return node
        trace.append(AppliedRule(iteration=iteration, rule_name=rule.name, description=rule.description))
        return result
