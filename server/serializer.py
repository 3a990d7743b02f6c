"""
Canonical string encoding of an expression tree, used only for equality tests.
"""

from typing import Optional

from nodes import Delimited, Fraction, Function, Node, Number, Operator, Power, Sequence, Sqrt, Symbol

DEFAULT_FLOAT_TOLERANCE = 1e-6
SEQUENCE_SEPARATOR = "|"

COMMON_FRACTIONS = (
    (1, 2),
    (1, 3), (2, 3),
    (1, 4), (3, 4),
    (1, 5), (2, 5), (3, 5), (4, 5),
    (1, 6), (5, 6),
)

# Absorbs binary rounding so that a distance of exactly `tolerance` still snaps.
_SLACK = 1e-12


def _within(a: float, b: float, tolerance: float) -> bool:
    return abs(a - b) <= tolerance + _SLACK


def normalize_float(value: float, tolerance: float = DEFAULT_FLOAT_TOLERANCE) -> str:
    """Integers and common fractions (within tolerance) get a fixed spelling."""
    nearest = round(value)
    if _within(value, nearest, tolerance):
        return str(int(nearest))
    sign = "-" if value < 0 else ""
    magnitude = abs(value)
    whole = int(magnitude)
    for numerator, denominator in COMMON_FRACTIONS:
        if _within(magnitude - whole, numerator / denominator, tolerance):
            return f"{sign}{whole * denominator + numerator}/{denominator}"
    return repr(float(value))


def serialize(ast: Optional[Node], float_tolerance: float = DEFAULT_FLOAT_TOLERANCE) -> str:
    def encode(node: Optional[Node]) -> str:
        if node is None:
            return ""
        if isinstance(node, Number):
            return f"num:{normalize_float(node.value, float_tolerance)}"
        if isinstance(node, Symbol):
            return f"sym:{node.value}"
        if isinstance(node, Operator):
            return f"op:{node.op}"
        if isinstance(node, Power):
            return f"pow({encode(node.base)},{encode(node.exponent)})"
        if isinstance(node, Fraction):
            return f"frac({encode(node.numerator)},{encode(node.denominator)})"
        if isinstance(node, Sqrt):
            index = encode(node.index) if node.index is not None else "2"
            return f"sqrt({encode(node.body)},{index})"
        if isinstance(node, Function):
            return f"func:{node.name}({encode(node.arg)})"
        if isinstance(node, Delimited):
            return f"delim({encode(node.body)})"
        if isinstance(node, Sequence):
            return SEQUENCE_SEPARATOR.join(encode(item) for item in node.items)
        raise TypeError(f"Cannot serialize {node!r}")

    return encode(ast)
