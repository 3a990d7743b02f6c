"""
Algebra rule catalog.

Priorities form a pipeline: structural clean-up first (flattening, unwrapping,
signs, explicit multiplication), then expansion, numeric folding and finally
the combining/sorting rules that fix the canonical order.
"""

import math
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from nodes import Delimited, Fraction, Function, Node, Number, Operator, Power, Sequence, Sqrt, map_children, sort_key
from rule_base import (
    CDOT,
    Factor,
    Rule,
    Term,
    coefficient_and_rest,
    group,
    has_sign_noise,
    is_algebraic,
    join_factors,
    join_terms,
    number_value,
    rule_from_rewrite,
    single_operand,
    split_factors,
    split_terms,
    term_from_coefficient,
)

# Upper bound on the number of terms a single distribution may produce.
_MAX_EXPANSION_TERMS = 64

_OPERATOR_ALIASES = {
    "\\times": CDOT,
    "*": CDOT,
    "·": CDOT,
    "×": CDOT,
    "\\div": "/",
    "÷": "/",
    "−": "-",
}

_COMPOSITES = (Power, Fraction, Sqrt, Function, Delimited)


def _rebuild(node: Sequence, terms: List[Term]) -> Optional[Node]:
    items = join_terms(terms)
    if items == node.items:
        return None
    return replace(node, items=items)


def _factors_of(items) -> List[Factor]:
    factors = split_factors(items)
    if factors is None:
        return [Factor(group(items))]
    return factors


# --- structural ---

def _unwrap_child(child: Node) -> Node:
    inner = single_operand(child)
    return child if inner is None else inner


def unwrap_singleton_groups(node: Node) -> Optional[Node]:
    if not isinstance(node, _COMPOSITES):
        return None
    rebuilt = map_children(node, _unwrap_child)
    return None if rebuilt is node else rebuilt


def _spliceable(items) -> Optional[Tuple[Node, ...]]:
    if len(items) != 1:
        return None
    item = items[0]
    if isinstance(item, Delimited):
        item = item.body
    if isinstance(item, Sequence) and is_algebraic(item):
        return item.items
    return None


def flatten_addition(node: Node) -> Optional[Node]:
    if not is_algebraic(node):
        return None
    out: List[Term] = []
    changed = False
    for term in split_terms(node.items):
        inner = _spliceable(term.items)
        if inner is None:
            out.append(term)
            continue
        changed = True
        out.extend(Term(term.sign * t.sign, t.items) for t in split_terms(inner))
    if not changed:
        return None
    return replace(node, items=join_terms(out))


def _is_digits(node: Node) -> bool:
    return isinstance(node, Number) and node.text is not None and node.text.isdigit()


def join_decimal_comma(node: Node) -> Optional[Node]:
    if not isinstance(node, Sequence):
        return None
    items = node.items
    out: List[Node] = []
    index = 0
    while index < len(items):
        window = items[index:index + 3]
        if (len(window) == 3 and _is_digits(window[0]) and _is_digits(window[2])
                and isinstance(window[1], Operator) and window[1].op == ","):
            text = f"{window[0].text}.{window[2].text}"
            out.append(Number(float(text), text=text))
            index += 3
            continue
        out.append(items[index])
        index += 1
    if len(out) == len(items):
        return None
    return replace(node, items=tuple(out))


def unwrap_trivial_delimiter(node: Node) -> Optional[Node]:
    if not isinstance(node, Delimited):
        return None
    body = node.body
    if isinstance(body, Sequence):
        return single_operand(body)
    if isinstance(body, Operator):
        return None
    return body


def simplify_double_negative(node: Node) -> Optional[Node]:
    if not is_algebraic(node) or not has_sign_noise(node.items):
        return None
    return _rebuild(node, split_terms(node.items))


def explicit_multiplication(node: Node) -> Optional[Node]:
    if not isinstance(node, Sequence):
        return None
    out: List[Node] = []
    for item in node.items:
        if isinstance(item, Operator):
            alias = _OPERATOR_ALIASES.get(item.op)
            if alias is not None:
                item = replace(item, op=alias)
        elif out and not isinstance(out[-1], Operator):
            out.append(Operator(CDOT))
        out.append(item)
    items = tuple(out)
    return None if items == node.items else replace(node, items=items)


# --- signs ---

def strip_negation(node: Node) -> Tuple[int, Node]:
    """Split a leading minus off ``node``: ``(-1, x)`` for ``-x``, else ``(1, node)``."""
    if isinstance(node, Number) and node.value < 0:
        return -1, Number(-node.value)
    if is_algebraic(node):
        terms = split_terms(node.items)
        if len(terms) == 1 and terms[0].sign < 0:
            items = terms[0].items
            inner = single_operand(Sequence(items))
            return -1, inner if inner is not None else Sequence(items)
    return 1, node


def normalize_fraction_signs(node: Node) -> Optional[Node]:
    if not is_algebraic(node):
        return None
    out: List[Term] = []
    changed = False
    for term in split_terms(node.items):
        sign = term.sign
        items: List[Node] = []
        for item in term.items:
            if isinstance(item, Fraction):
                num_sign, numerator = strip_negation(item.numerator)
                den_sign, denominator = strip_negation(item.denominator)
                if num_sign < 0 or den_sign < 0:
                    changed = True
                    sign *= num_sign * den_sign
                    item = replace(item, numerator=numerator, denominator=denominator)
            items.append(item)
        out.append(Term(sign, tuple(items)))
    return _rebuild(node, out) if changed else None


# --- expansion ---

def square_node(node: Node) -> Node:
    if isinstance(node, Number):
        return Number(node.value * node.value)
    if isinstance(node, Power) and isinstance(node.exponent, Number):
        return Power(node.base, Number(node.exponent.value * 2))
    if isinstance(node, Sqrt) and node.index is None:
        body = node.body
        return group(body.items) if isinstance(body, Sequence) else body
    return Power(node, Number(2.0))


def _square_items(items) -> Tuple[Node, ...]:
    factors = split_factors(items)
    if factors is None:
        return (Power(group(items), Number(2.0)),)
    return join_factors([Factor(square_node(f.node), f.divide) for f in factors])


def _binomial_terms(node: Node) -> Optional[List[Term]]:
    if not isinstance(node, Power) or number_value(node.exponent) != 2:
        return None
    base = node.base
    if not isinstance(base, Delimited) or not is_algebraic(base.body):
        return None
    terms = split_terms(base.body.items)
    return terms if len(terms) == 2 else None


def expand_binomial(first: Term, second: Term) -> List[Term]:
    """``(a + b)^2`` as the three terms ``a^2``, ``2ab`` and ``b^2``."""
    cross = [Factor(Number(2.0))] + _factors_of(first.items) + _factors_of(second.items)
    return [
        Term(1, _square_items(first.items)),
        Term(first.sign * second.sign, join_factors(cross)),
        Term(1, _square_items(second.items)),
    ]


def expand_binomial_square(node: Node) -> Optional[Node]:
    if not is_algebraic(node):
        return None
    out: List[Term] = []
    changed = False
    for term in split_terms(node.items):
        factors = split_factors(term.items)
        position = None
        if factors is not None:
            position = next((i for i, f in enumerate(factors)
                             if not f.divide and _binomial_terms(f.node) is not None), None)
        if position is None:
            out.append(term)
            continue
        changed = True
        before, after = factors[:position], factors[position + 1:]
        for part in expand_binomial(*_binomial_terms(factors[position].node)):
            merged = before + _factors_of(part.items) + after
            out.append(Term(term.sign * part.sign, join_factors(merged)))
    return _rebuild(node, out) if changed else None


def _distributable(factor: Factor) -> Optional[List[Term]]:
    if factor.divide or not isinstance(factor.node, Delimited):
        return None
    body = factor.node.body
    if not is_algebraic(body):
        return None
    return split_terms(body.items) or None


def distribute_multiplication(node: Node) -> Optional[Node]:
    if not is_algebraic(node):
        return None
    out: List[Term] = []
    changed = False
    for term in split_terms(node.items):
        factors = split_factors(term.items)
        if factors is None or len(factors) < 2:
            out.append(term)
            continue
        sums = [_distributable(f) for f in factors]
        size = math.prod(len(s) for s in sums if s)
        if not any(sums) or size > _MAX_EXPANSION_TERMS:
            out.append(term)
            continue
        changed = True
        partial: List[Tuple[int, List[Factor]]] = [(term.sign, [])]
        for factor, inner in zip(factors, sums):
            if inner:
                partial = [(sign * t.sign, acc + _factors_of(t.items)) for sign, acc in partial for t in inner]
            else:
                partial = [(sign, acc + [factor]) for sign, acc in partial]
        out.extend(Term(sign, join_factors(acc)) for sign, acc in partial)
    return _rebuild(node, out) if changed else None


# --- numeric folding ---

def evaluate_numeric_power(node: Node) -> Optional[Node]:
    if not isinstance(node, Power):
        return None
    base, exponent = number_value(node.base), number_value(node.exponent)
    if base is None or exponent is None:
        return None
    if base == 0 and exponent <= 0:
        return None
    if base < 0 and not exponent.is_integer():
        return None
    try:
        value = base ** exponent
    except (OverflowError, ZeroDivisionError):
        return None
    if isinstance(value, complex) or not math.isfinite(value):
        return None
    return Number(float(value))


def evaluate_numeric_root(node: Node) -> Optional[Node]:
    if not isinstance(node, Sqrt):
        return None
    radicand = number_value(node.body)
    index = 2.0 if node.index is None else number_value(node.index)
    if radicand is None or index is None or not index.is_integer() or index < 2:
        return None
    if not radicand.is_integer() or (radicand < 0 and index % 2 == 0):
        return None
    degree = int(index)
    root = round(abs(radicand) ** (1.0 / degree))
    if root ** degree != abs(radicand):
        return None
    return Number(math.copysign(float(root), radicand))


def evaluate_numeric_fraction(node: Node) -> Optional[Node]:
    if not isinstance(node, Fraction):
        return None
    numerator, denominator = number_value(node.numerator), number_value(node.denominator)
    if numerator is None or not denominator:
        return None
    return Number(numerator / denominator)


def _fold_term(term: Term) -> Optional[Term]:
    factors = split_factors(term.items)
    if factors is None:
        return term
    coefficient = 1.0
    rest: List[Factor] = []
    numeric = False
    for factor in factors:
        if not isinstance(factor.node, Number):
            rest.append(factor)
            continue
        if factor.divide:
            if factor.node.value == 0:
                return term
            coefficient /= factor.node.value
        else:
            coefficient *= factor.node.value
        numeric = True
    if not numeric:
        return term
    return term_from_coefficient(term.sign, coefficient, rest)


def _constant(term: Term) -> Optional[float]:
    if len(term.items) == 1 and isinstance(term.items[0], Number):
        return term.sign * term.items[0].value
    return None


def combine_constants(node: Node) -> Optional[Node]:
    if not is_algebraic(node):
        return None
    folded = [t for t in (_fold_term(term) for term in split_terms(node.items)) if t is not None]
    constants = [index for index, term in enumerate(folded) if _constant(term) is not None]
    if len(constants) > 1:
        total = sum(_constant(folded[index]) for index in constants)
        merged = term_from_coefficient(1, total, [])
        first = constants[0]
        folded = [term for index, term in enumerate(folded) if index not in constants[1:]]
        if merged is None:
            del folded[first]
        else:
            folded[first] = merged
    return _rebuild(node, folded)


# --- combining and ordering ---

def _power_parts(node: Node) -> Tuple[Node, float]:
    if isinstance(node, Power) and isinstance(node.exponent, Number):
        return node.base, node.exponent.value
    return node, 1.0


def _merged_power(base: Node, exponent: float) -> Node:
    if exponent == 0:
        return Number(1.0)
    if exponent == 1:
        return base
    return Power(base, Number(exponent))


def _combine_factors(factors: List[Factor]) -> Optional[List[Factor]]:
    exponents: Dict[Node, float] = {}
    counts: Dict[Node, int] = {}
    for factor in factors:
        if factor.divide or isinstance(factor.node, Number):
            continue
        base, exponent = _power_parts(factor.node)
        exponents[base] = exponents.get(base, 0.0) + exponent
        counts[base] = counts.get(base, 0) + 1
    if all(count == 1 for count in counts.values()):
        return None
    out: List[Factor] = []
    emitted = set()
    for factor in factors:
        if factor.divide or isinstance(factor.node, Number):
            out.append(factor)
            continue
        base, _ = _power_parts(factor.node)
        if counts[base] == 1:
            out.append(factor)
        elif base not in emitted:
            emitted.add(base)
            out.append(Factor(_merged_power(base, exponents[base])))
    return out


def combine_like_factors(node: Node) -> Optional[Node]:
    if not is_algebraic(node):
        return None
    out: List[Term] = []
    changed = False
    for term in split_terms(node.items):
        factors = split_factors(term.items)
        combined = _combine_factors(factors) if factors is not None else None
        if combined is None:
            out.append(term)
            continue
        changed = True
        out.append(Term(term.sign, join_factors(combined)))
    return _rebuild(node, out) if changed else None


def _ordered_factors(factors: List[Factor]) -> List[Factor]:
    coefficient = [f for f in factors if not f.divide and isinstance(f.node, Number)]
    multiplied = [f for f in factors if not f.divide and not isinstance(f.node, Number)]
    divided = [f for f in factors if f.divide]

    def key(factor: Factor) -> str:
        return sort_key(factor.node)

    return coefficient + sorted(multiplied, key=key) + sorted(divided, key=key)


def sort_product_factors(node: Node) -> Optional[Node]:
    if not is_algebraic(node):
        return None
    out: List[Term] = []
    for term in split_terms(node.items):
        factors = split_factors(term.items)
        if factors is None or len(factors) < 2:
            out.append(term)
            continue
        out.append(Term(term.sign, join_factors(_ordered_factors(factors))))
    return _rebuild(node, out)


def like_term_key(term: Term) -> Optional[Tuple[Node, ...]]:
    """Everything but the numeric coefficient; None when the term has no factor form."""
    factors = split_factors(term.items)
    if factors is None:
        return None
    _, rest = coefficient_and_rest(factors)
    return join_factors(rest) if rest else ()


def combine_like_terms(node: Node) -> Optional[Node]:
    if not is_algebraic(node):
        return None
    terms = split_terms(node.items)
    groups: Dict[Tuple[Node, ...], List[int]] = {}
    for index, term in enumerate(terms):
        key = like_term_key(term)
        if key is not None:
            groups.setdefault(key, []).append(index)
    if all(len(members) == 1 for members in groups.values()):
        return None
    replaced: Dict[int, Optional[Term]] = {}
    for members in groups.values():
        if len(members) == 1:
            continue
        total = 0.0
        for index in members:
            coefficient, _ = coefficient_and_rest(split_factors(terms[index].items))
            total += terms[index].sign * coefficient
        _, rest = coefficient_and_rest(split_factors(terms[members[0]].items))
        replaced[members[0]] = term_from_coefficient(1, total, rest)
        for index in members[1:]:
            replaced[index] = None
    out = [replaced.get(index, term) for index, term in enumerate(terms)]
    return _rebuild(node, [term for term in out if term is not None])


def _term_order(term: Term):
    factors = split_factors(term.items)
    if factors is None:
        return (1, "".join(sort_key(item) for item in term.items), term.sign, 0.0)
    coefficient, rest = coefficient_and_rest(factors)
    if not rest:
        return (2, "", term.sign, coefficient)
    key = "".join(("/" if f.divide else "*") + sort_key(f.node) for f in rest)
    return (0, key, term.sign, coefficient)


def sort_addition_terms(node: Node) -> Optional[Node]:
    if not is_algebraic(node):
        return None
    terms = split_terms(node.items)
    if len(terms) < 2:
        return None
    return _rebuild(node, sorted(terms, key=_term_order))


def get_algebra_rules() -> List[Rule]:
    """Return the algebra catalog in registration order."""
    return [
        rule_from_rewrite("unwrap-singleton-group",
                          "Unwrap one-operand groups in exponents, fractions, roots and arguments",
                          unwrap_singleton_groups, priority=101),
        rule_from_rewrite("flatten-addition", "Flatten nested additions into a single sequence",
                          flatten_addition, priority=100),
        rule_from_rewrite("decimal-comma", "Read 3{,}5 as the decimal 3.5",
                          join_decimal_comma, priority=99, region=["EU"]),
        rule_from_rewrite("unwrap-trivial-delimiter", "Drop parentheses around a single operand",
                          unwrap_trivial_delimiter, priority=98),
        rule_from_rewrite("simplify-double-negative", "Collapse runs of signs: --x = x",
                          simplify_double_negative, priority=97),
        rule_from_rewrite("explicit-multiplication", "Make implicit multiplication explicit",
                          explicit_multiplication, priority=92),
        rule_from_rewrite("normalize-fraction-signs", "Move fraction signs in front: -a/b = (-a)/b = a/(-b)",
                          normalize_fraction_signs, priority=90),
        rule_from_rewrite("expand-binomial-square", "Expand (a+b)^2 = a^2 + 2ab + b^2",
                          expand_binomial_square, priority=88),
        rule_from_rewrite("distribute-multiplication", "Distribute products over sums: a(b+c) = ab + ac",
                          distribute_multiplication, priority=86),
        rule_from_rewrite("evaluate-numeric-power", "Evaluate powers of numbers",
                          evaluate_numeric_power, priority=84),
        rule_from_rewrite("evaluate-numeric-root", "Evaluate perfect roots of numbers",
                          evaluate_numeric_root, priority=84),
        rule_from_rewrite("evaluate-numeric-fraction", "Evaluate fractions of numbers",
                          evaluate_numeric_fraction, priority=83),
        rule_from_rewrite("combine-constants", "Combine numeric constants",
                          combine_constants, priority=82),
        rule_from_rewrite("combine-like-factors", "Combine like factors: x^a * x^b = x^(a+b)",
                          combine_like_factors, priority=80),
        rule_from_rewrite("sort-product-factors", "Sort factors: coefficient first, then by canonical order",
                          sort_product_factors, priority=79),
        rule_from_rewrite("combine-like-terms", "Combine like terms: 2x + 3x = 5x",
                          combine_like_terms, priority=75),
        rule_from_rewrite("sort-addition-terms", "Sort addition terms in canonical order",
                          sort_addition_terms, priority=70),
    ]
