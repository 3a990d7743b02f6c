"""
Expression tree vocabulary shared by the parser, the rule catalogs, the
canonicalization engine and the serializer.

Nodes are immutable values. A rule never edits a node in place; it builds a
new one. The optional ``loc`` tag is opaque source-location metadata: it is
excluded from equality and hashing, and ``dataclasses.replace`` carries it
over whenever a node is rebuilt around new children.
"""

from dataclasses import dataclass, field, replace
from typing import Callable, Optional, Tuple, Union

SourceLocation = Tuple[int, int]


@dataclass(frozen=True)
class Number:
    value: float
    # Source lexeme ("05", "3.50") when read from input; lost once folded.
    text: Optional[str] = field(default=None, compare=False, repr=False)
    loc: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Symbol:
    value: str
    loc: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Operator:
    op: str
    loc: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Power:
    base: "Node"
    exponent: "Node"
    loc: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Fraction:
    numerator: "Node"
    denominator: "Node"
    loc: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Sqrt:
    body: "Node"
    index: Optional["Node"] = None
    loc: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Function:
    name: str
    arg: Optional["Node"] = None
    loc: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Delimited:
    body: "Node"
    loc: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Sequence:
    """A flat infix run such as ``a + 2 x - c`` not yet reduced further."""
    items: Tuple["Node", ...] = ()
    loc: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


Node = Union[Number, Symbol, Operator, Power, Fraction, Sqrt, Function, Delimited, Sequence]

LEAF_TYPES = (Number, Symbol, Operator)


def seq(*items: Node) -> Sequence:
    return Sequence(tuple(items))


def num(value: float) -> Number:
    return Number(float(value))


def map_children(node: Node, fn: Callable[[Node], Node]) -> Node:
    """Rebuild ``node`` with ``fn`` applied to each child.

    Returns ``node`` itself when every child comes back unchanged, so the
    identity (and source location) of untouched subtrees is preserved.
    """
    if isinstance(node, LEAF_TYPES):
        return node
    if isinstance(node, Sequence):
        items = tuple(fn(item) for item in node.items)
        if all(new is old for new, old in zip(items, node.items)):
            return node
        return replace(node, items=items)
    if isinstance(node, Power):
        base, exponent = fn(node.base), fn(node.exponent)
        if base is node.base and exponent is node.exponent:
            return node
        return replace(node, base=base, exponent=exponent)
    if isinstance(node, Fraction):
        numerator, denominator = fn(node.numerator), fn(node.denominator)
        if numerator is node.numerator and denominator is node.denominator:
            return node
        return replace(node, numerator=numerator, denominator=denominator)
    if isinstance(node, Sqrt):
        body = fn(node.body)
        index = fn(node.index) if node.index is not None else None
        if body is node.body and index is node.index:
            return node
        return replace(node, body=body, index=index)
    if isinstance(node, Function):
        if node.arg is None:
            return node
        arg = fn(node.arg)
        return node if arg is node.arg else replace(node, arg=arg)
    if isinstance(node, Delimited):
        body = fn(node.body)
        return node if body is node.body else replace(node, body=body)
    raise TypeError(f"Unsupported node: {node!r}")


def sort_key(node: Optional[Node]) -> str:
    """Deterministic structural key used to order commutative operands."""
    if node is None:
        return ""
    if isinstance(node, Number):
        return f"n:{node.value!r}"
    if isinstance(node, Symbol):
        return f"s:{node.value}"
    if isinstance(node, Operator):
        return f"o:{node.op}"
    if isinstance(node, Power):
        return f"p({sort_key(node.base)},{sort_key(node.exponent)})"
    if isinstance(node, Fraction):
        return f"q({sort_key(node.numerator)},{sort_key(node.denominator)})"
    if isinstance(node, Sqrt):
        return f"r({sort_key(node.body)},{sort_key(node.index)})"
    if isinstance(node, Function):
        return f"f:{node.name}({sort_key(node.arg)})"
    if isinstance(node, Delimited):
        return f"d({sort_key(node.body)})"
    if isinstance(node, Sequence):
        return "[" + " ".join(sort_key(item) for item in node.items) + "]"
    raise TypeError(f"Unsupported node: {node!r}")


def to_dict(node: Optional[Node]) -> Optional[dict]:
    """JSON-friendly view of a tree, used by the API and debugging output."""
    if node is None:
        return None
    if isinstance(node, Number):
        return {"kind": "number", "value": node.value}
    if isinstance(node, Symbol):
        return {"kind": "symbol", "value": node.value}
    if isinstance(node, Operator):
        return {"kind": "operator", "op": node.op}
    if isinstance(node, Power):
        return {"kind": "power", "base": to_dict(node.base), "exponent": to_dict(node.exponent)}
    if isinstance(node, Fraction):
        return {"kind": "fraction", "numerator": to_dict(node.numerator),
                "denominator": to_dict(node.denominator)}
    if isinstance(node, Sqrt):
        return {"kind": "sqrt", "body": to_dict(node.body), "index": to_dict(node.index)}
    if isinstance(node, Function):
        return {"kind": "function", "name": node.name, "arg": to_dict(node.arg)}
    if isinstance(node, Delimited):
        return {"kind": "delimited", "body": to_dict(node.body)}
    if isinstance(node, Sequence):
        return {"kind": "sequence", "items": [to_dict(item) for item in node.items]}
    raise TypeError(f"Unsupported node: {node!r}")
