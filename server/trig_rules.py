"""
Trigonometry rule catalog.
"""

import math
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from algebra_rules import strip_negation
from nodes import Delimited, Fraction, Function, Node, Number, Operator, Power, Sequence, Symbol
from rule_base import (
    Factor,
    Rule,
    Term,
    coefficient_and_rest,
    is_algebraic,
    join_terms,
    number_value,
    rule_from_rewrite,
    split_factors,
    split_terms,
    term_from_coefficient,
)

PI_SYMBOLS = frozenset({"\\pi", "π"})

_EVALUATORS = {"sin": math.sin, "cos": math.cos, "tan": math.tan}

# Special angles are integer multiples of pi over one of these.
_ANGLE_DENOMINATORS = (1, 2, 3, 4, 6)

_SNAP = 1e-10


def numeric_value(node: Node) -> Optional[float]:
    """Value of a tree built only from numbers, pi and arithmetic, else None."""
    if isinstance(node, Number):
        return node.value
    if isinstance(node, Symbol):
        return math.pi if node.value in PI_SYMBOLS else None
    if isinstance(node, Delimited):
        return numeric_value(node.body)
    if isinstance(node, Fraction):
        numerator, denominator = numeric_value(node.numerator), numeric_value(node.denominator)
        if numerator is None or not denominator:
            return None
        return numerator / denominator
    if not is_algebraic(node):
        return None
    total = 0.0
    for term in split_terms(node.items):
        factors = split_factors(term.items)
        if factors is None:
            return None
        product = float(term.sign)
        for factor in factors:
            value = numeric_value(factor.node)
            if value is None or (factor.divide and value == 0):
                return None
            product = product / value if factor.divide else product * value
        total += product
    return total


def special_angle(node: Node) -> Optional[float]:
    angle = numeric_value(node)
    if angle is None:
        return None
    ratio = angle / math.pi
    for denominator in _ANGLE_DENOMINATORS:
        scaled = ratio * denominator
        if abs(scaled - round(scaled)) < 1e-9:
            return angle
    return None


def tan_identity(node: Node) -> Optional[Node]:
    if isinstance(node, Function) and node.name == "tan" and node.arg is not None:
        return Fraction(Function("sin", node.arg), Function("cos", node.arg))
    return None


def trig_special_values(node: Node) -> Optional[Node]:
    if not isinstance(node, Function) or node.name not in _EVALUATORS or node.arg is None:
        return None
    angle = special_angle(node.arg)
    if angle is None:
        return None
    if node.name == "tan" and abs(math.cos(angle)) < _SNAP:
        return None
    value = _EVALUATORS[node.name](angle)
    nearest = round(value)
    if abs(value - nearest) < _SNAP:
        value = float(nearest)
    return Number(value + 0.0)


def cos_even_function(node: Node) -> Optional[Node]:
    if not isinstance(node, Function) or node.name != "cos" or node.arg is None:
        return None
    sign, arg = strip_negation(node.arg)
    return replace(node, arg=arg) if sign < 0 else None


def _positive_sine(node: Node) -> Optional[Tuple[int, Node]]:
    """``sin(-u)`` as ``(-1, sin(u))``; integer powers of it flip by parity."""
    if isinstance(node, Function) and node.name == "sin" and node.arg is not None:
        sign, arg = strip_negation(node.arg)
        return (-1, replace(node, arg=arg)) if sign < 0 else None
    if isinstance(node, Power):
        exponent = number_value(node.exponent)
        inner = _positive_sine(node.base)
        if inner is None or exponent is None or not exponent.is_integer():
            return None
        sign = -1 if int(exponent) % 2 else 1
        return sign, replace(node, base=inner[1])
    return None


def sin_odd_function(node: Node) -> Optional[Node]:
    if isinstance(node, Fraction):
        flipped = _positive_sine(node.numerator)
        if flipped is None:
            return None
        sign, numerator = flipped
        if sign < 0:
            numerator = Sequence((Operator("-"), numerator))
        return replace(node, numerator=numerator)
    if not is_algebraic(node):
        return None
    out: List[Term] = []
    changed = False
    for term in split_terms(node.items):
        sign = term.sign
        items: List[Node] = []
        for item in term.items:
            flipped = _positive_sine(item)
            if flipped is not None:
                changed = True
                sign *= flipped[0]
                item = flipped[1]
            items.append(item)
        out.append(Term(sign, tuple(items)))
    if not changed:
        return None
    return replace(node, items=join_terms(out))


def _trig_square(factor: Factor) -> Optional[Tuple[str, Node]]:
    node = factor.node
    if factor.divide or not isinstance(node, Power) or number_value(node.exponent) != 2:
        return None
    base = node.base
    if isinstance(base, Function) and base.name in ("sin", "cos") and base.arg is not None:
        return base.name, base.arg
    return None


def _pythagorean_parts(term: Term):
    factors = split_factors(term.items)
    if factors is None:
        return None
    coefficient, rest = coefficient_and_rest(factors)
    for index, factor in enumerate(rest):
        found = _trig_square(factor)
        if found is None:
            continue
        name, arg = found
        others = rest[:index] + rest[index + 1:]
        return name, (term.sign, coefficient, arg, tuple(others)), coefficient, others
    return None


def pythagorean_identity(node: Node) -> Optional[Node]:
    if not is_algebraic(node):
        return None
    terms = split_terms(node.items)
    parts = [_pythagorean_parts(term) for term in terms]
    replaced: Dict[int, Optional[Term]] = {}
    for i, first in enumerate(parts):
        if first is None or i in replaced:
            continue
        for j in range(i + 1, len(parts)):
            second = parts[j]
            if second is None or j in replaced:
                continue
            if first[0] != second[0] and first[1] == second[1]:
                replaced[i] = term_from_coefficient(terms[i].sign, first[2], first[3])
                replaced[j] = None
                break
    if not replaced:
        return None
    out = [replaced.get(index, term) for index, term in enumerate(terms)]
    return replace(node, items=join_terms([term for term in out if term is not None]))


def get_trig_rules() -> List[Rule]:
    """Return the trigonometry catalog in registration order."""
    return [
        rule_from_rewrite("tan-identity", "tan(x) = sin(x)/cos(x)", tan_identity, priority=96),
        rule_from_rewrite("trig-special-values", "Evaluate trig functions at special angles",
                          trig_special_values, priority=95),
        rule_from_rewrite("cos-even-function", "cos(-x) = cos(x)", cos_even_function, priority=94),
        rule_from_rewrite("sin-odd-function", "sin(-x) = -sin(x)", sin_odd_function, priority=94),
        rule_from_rewrite("pythagorean-identity", "sin^2(x) + cos^2(x) = 1",
                          pythagorean_identity, priority=83),
    ]
