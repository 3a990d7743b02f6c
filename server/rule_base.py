"""
Rule record and the term/factor helpers the rule catalogs are written with.

A ``Sequence`` is a flat infix run. Catalog rules look at it two ways:

* as signed *terms* separated by ``+``/``-`` (``split_terms``/``join_terms``)
* a term as *factors* joined by multiplication or division
  (``split_factors``/``join_factors``); adjacent operands count as multiplied.
"""

from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Iterable, List, Mapping, NamedTuple, Optional, Sequence as Seq, Tuple

from nodes import Delimited, Node, Number, Operator, Sequence

ADDITIVE_OPS = frozenset({"+", "-"})
MULTIPLY_OPS = frozenset({"\\cdot", "\\times", "*", "·", "×"})
DIVIDE_OPS = frozenset({"/", "\\div", "÷"})
MULTIPLICATIVE_OPS = MULTIPLY_OPS | DIVIDE_OPS
ALGEBRAIC_OPS = ADDITIVE_OPS | MULTIPLICATIVE_OPS

CDOT = "\\cdot"


class RuleRegistrationError(ValueError):
    """Raised when a rule record is incomplete or clashes with a registered one."""


@dataclass(frozen=True)
class Rule:
    name: str
    description: str
    match: Callable[[Node], bool]
    transform: Callable[[Node], Node]
    priority: int = 0
    region: Optional[FrozenSet[str]] = None

    def applies_to(self, region: str) -> bool:
        return self.region is None or region in self.region

    @classmethod
    def from_mapping(cls, record: Mapping[str, Any]) -> "Rule":
        """Build a rule from a plain ``{name, description, match, ...}`` record."""
        name = record.get("name")
        if not name or not isinstance(name, str):
            raise RuleRegistrationError("Rule is missing a name")
        for key in ("match", "transform"):
            if not callable(record.get(key)):
                raise RuleRegistrationError(f"Rule '{name}' is missing a callable '{key}'")
        region = record.get("region")
        return cls(
            name=name,
            description=record.get("description", ""),
            match=record["match"],
            transform=record["transform"],
            priority=int(record.get("priority", 0)),
            region=frozenset(region) if region is not None else None,
        )


def rule_from_rewrite(name: str, description: str, rewrite: Callable[[Node], Optional[Node]],
                      priority: int = 0, region: Optional[Iterable[str]] = None) -> Rule:
    """Wrap a ``node -> new node or None`` function as a match/transform pair."""
    def match(node: Node) -> bool:
        return rewrite(node) is not None

    def transform(node: Node) -> Node:
        result = rewrite(node)
        return node if result is None else result

    return Rule(
        name=name,
        description=description,
        match=match,
        transform=transform,
        priority=priority,
        region=frozenset(region) if region is not None else None,
    )


def is_operator(node: Node, ops: Optional[FrozenSet[str]] = None) -> bool:
    return isinstance(node, Operator) and (ops is None or node.op in ops)


def is_algebraic(node: Node) -> bool:
    """True for a complete arithmetic Sequence.

    Every operator is arithmetic, the run ends on an operand and a
    multiplicative operator has an operand right before it. Signs may lead
    (``-x``) or follow another operator (``2 \\cdot -3``); ``x -`` is
    incomplete and is left for the serializer to keep as written.
    """
    if not isinstance(node, Sequence) or not node.items:
        return False
    if isinstance(node.items[-1], Operator):
        return False
    prev = None
    for item in node.items:
        if isinstance(item, Operator):
            if item.op not in ALGEBRAIC_OPS:
                return False
            if item.op in MULTIPLICATIVE_OPS and (prev is None or isinstance(prev, Operator)):
                return False
        prev = item
    return True


def number_value(node: Node) -> Optional[float]:
    if isinstance(node, Number):
        return node.value
    return None


def single_operand(node: Node) -> Optional[Node]:
    """The lone non-operator item of a one-item Sequence, else None."""
    if isinstance(node, Sequence) and len(node.items) == 1 and not isinstance(node.items[0], Operator):
        return node.items[0]
    return None


def as_sequence(items: Seq[Node]) -> Sequence:
    return Sequence(tuple(items))


def group(items: Seq[Node]) -> Node:
    """A single operand standing for ``items``; wraps runs in a Delimited."""
    items = tuple(items)
    if len(items) == 1 and not isinstance(items[0], Operator):
        return items[0]
    return Delimited(Sequence(items))


# --- terms ---

class Term(NamedTuple):
    sign: int
    items: Tuple[Node, ...]


def split_terms(items: Seq[Node]) -> List[Term]:
    """Split an infix run into signed terms.

    Runs of signs collapse (``- -x`` is ``+x``) and a sign right after a
    multiplicative operator (``2 \\cdot -3``) flips the term it sits in.
    """
    terms: List[Term] = []
    sign = 1
    current: List[Node] = []
    for item in items:
        if is_operator(item, ADDITIVE_OPS):
            if current and not is_operator(current[-1], MULTIPLICATIVE_OPS):
                terms.append(Term(sign, tuple(current)))
                current = []
                sign = 1
            if item.op == "-":
                sign = -sign
            continue
        current.append(item)
    if current:
        terms.append(Term(sign, tuple(current)))
    return terms


def join_terms(terms: Seq[Term]) -> Tuple[Node, ...]:
    out: List[Node] = []
    for index, term in enumerate(terms):
        if term.sign < 0:
            out.append(Operator("-"))
        elif index:
            out.append(Operator("+"))
        out.extend(term.items)
    if not out:
        return (Number(0.0),)
    return tuple(out)


def has_sign_noise(items: Seq[Node]) -> bool:
    """Leading ``+`` or a sign directly after another operator."""
    if items and is_operator(items[0], frozenset({"+"})):
        return True
    for prev, item in zip(items, items[1:]):
        if is_operator(item, ADDITIVE_OPS) and isinstance(prev, Operator):
            return True
    return False


# --- factors ---

class Factor(NamedTuple):
    node: Node
    divide: bool = False


def split_factors(items: Seq[Node]) -> Optional[List[Factor]]:
    """Factors of a single term, or None when it holds a non-arithmetic operator."""
    factors: List[Factor] = []
    divide = False
    for item in items:
        if isinstance(item, Operator):
            if item.op in MULTIPLY_OPS:
                divide = False
                continue
            if item.op in DIVIDE_OPS:
                divide = True
                continue
            return None
        factors.append(Factor(item, divide))
        divide = False
    return factors


def join_factors(factors: Seq[Factor]) -> Tuple[Node, ...]:
    out: List[Node] = []
    for index, factor in enumerate(factors):
        if index == 0:
            if factor.divide:
                out.extend((Number(1.0), Operator("/")))
        else:
            out.append(Operator("/") if factor.divide else Operator(CDOT))
        out.append(factor.node)
    if not out:
        return (Number(1.0),)
    return tuple(out)


def coefficient_and_rest(factors: Seq[Factor]) -> Tuple[float, List[Factor]]:
    """Leading multiplied Number as coefficient (default 1) and the remaining factors."""
    if factors and not factors[0].divide and isinstance(factors[0].node, Number):
        return factors[0].node.value, list(factors[1:])
    return 1.0, list(factors)


def term_from_coefficient(sign: int, coefficient: float, rest: Seq[Factor]) -> Optional[Term]:
    """Rebuild a term from a signed numeric coefficient; None when it vanishes."""
    value = sign * coefficient
    if value == 0:
        return None
    sign = -1 if value < 0 else 1
    value = abs(value)
    if not rest:
        return Term(sign, (Number(value),))
    if value == 1 and not rest[0].divide:
        return Term(sign, join_factors(rest))
    return Term(sign, join_factors([Factor(Number(value))] + list(rest)))
