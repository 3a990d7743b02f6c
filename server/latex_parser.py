"""
LaTeX-like input parsing.

``parse_latex`` turns source text into a flat raw parse tree of dicts, close
to what KaTeX produces (``textord``, ``mathord``, ``bin``, ``punct``,
``leftright``, ``ordgroup``, ``genfrac``, ``sqrt``, ``supsub``, ``op``).
``simplify_tree`` converts that raw tree into the expression node model.
"""

import logging
from typing import Any, Dict, List, Optional

from lark import Lark, Transformer, v_args
from lark.exceptions import LarkError

from nodes import Delimited, Fraction, Function, Node, Number, Operator, Power, Sequence, Sqrt, Symbol
from schemas import ParseResult

logger = logging.getLogger(__name__)

RawNode = Dict[str, Any]

_GRAMMAR = r"""
start: body

body: item*

?item: script
     | func
     | BINOP                          -> bin
     | COMMA                          -> punct

?script: atom
       | atom "^" atom                -> sup
       | atom "_" atom                -> sub
       | atom "_" atom "^" atom       -> subsup
       | atom "^" atom "_" atom       -> supsub
       | atom SUPERSCRIPT             -> unisup

func: FUNC func_arg
    | FUNC "^" atom func_arg          -> func_pow
    | FUNC SUPERSCRIPT func_arg       -> func_unipow

?func_arg: script
         | func

?atom: NUMBER                         -> number
     | LETTER                         -> letter
     | GREEK                          -> greek
     | "(" body ")"                   -> paren
     | "[" body "]"                   -> bracket
     | "{" body "}"                   -> group
     | _FRAC atom atom                -> frac
     | _SQRT atom                     -> sqrt
     | _SQRT_INDEX body "]" atom      -> nth_root

NUMBER: /\d+(\.\d+)?|\.\d+/
LETTER: /[a-zA-Z]/
GREEK: /\\(?:alpha|beta|gamma|delta|varepsilon|epsilon|zeta|eta|vartheta|theta|iota|kappa|lambda|mu|nu|xi|varpi|pi|rho|sigma|tau|upsilon|varphi|phi|chi|psi|omega|Gamma|Delta|Theta|Lambda|Xi|Pi|Sigma|Phi|Psi|Omega)(?![a-zA-Z])/
     | /[αβγδεθλμπρστφωΔΘΛΠΣΦΩ]/
FUNC: /\\(?:arcsin|arccos|arctan|sinh|cosh|tanh|sin|cos|tan|sec|csc|cot|log|ln|exp)(?![a-zA-Z])/
_FRAC: /\\[dt]?frac(?![a-zA-Z])/
_SQRT: /\\sqrt(?![a-zA-Z])/
_SQRT_INDEX: /\\sqrt\s*\[/
BINOP: "+" | "-" | "*" | "/" | "=" | "\\cdot" | "\\times" | "\\div" | "·" | "×" | "−" | "÷"
COMMA: ","
SUPERSCRIPT: /[⁰¹²³⁴⁵⁶⁷⁸⁹]+/

%ignore /\s+/
%ignore /\\(?:left|right)(?![a-zA-Z])/
%ignore /\\q?quad(?![a-zA-Z])/
%ignore /\\[,;:! ]/
"""

UNICODE_GREEK = {
    "α": "\\alpha", "β": "\\beta", "γ": "\\gamma", "δ": "\\delta", "ε": "\\epsilon",
    "θ": "\\theta", "λ": "\\lambda", "μ": "\\mu", "π": "\\pi", "ρ": "\\rho",
    "σ": "\\sigma", "τ": "\\tau", "φ": "\\phi", "ω": "\\omega", "Δ": "\\Delta",
    "Θ": "\\Theta", "Λ": "\\Lambda", "Π": "\\Pi", "Σ": "\\Sigma", "Φ": "\\Phi",
    "Ω": "\\Omega",
}

_SUPERSCRIPT_DIGITS = str.maketrans("⁰¹²³⁴⁵⁶⁷⁸⁹", "0123456789")

# Deepest raw tree accepted. Roughly two levels per bracket pair; simplifying
# and canonicalizing recurse once per level.
MAX_NESTING_DEPTH = 100


def _loc(token) -> tuple:
    return (token.start_pos, token.end_pos)


def _supsub(base: RawNode, sup: Optional[RawNode] = None, sub: Optional[RawNode] = None) -> RawNode:
    return {"type": "supsub", "base": base, "sup": sup, "sub": sub}


def _unicode_power(token) -> RawNode:
    return {"type": "textord", "text": str(token).translate(_SUPERSCRIPT_DIGITS), "loc": _loc(token)}


@v_args(inline=True)
class RawTreeBuilder(Transformer):
    """Builds KaTeX-like dict nodes while the LALR parser reduces."""

    def start(self, body):
        return body

    def body(self, *items):
        return list(items)

    def number(self, token):
        return {"type": "textord", "text": str(token), "loc": _loc(token)}

    def letter(self, token):
        return {"type": "mathord", "text": str(token), "loc": _loc(token)}

    def greek(self, token):
        text = UNICODE_GREEK.get(str(token), str(token))
        return {"type": "mathord", "text": text, "loc": _loc(token)}

    def bin(self, token):
        return {"type": "bin", "text": str(token), "loc": _loc(token)}

    def punct(self, token):
        return {"type": "punct", "text": str(token), "loc": _loc(token)}

    def paren(self, body):
        return {"type": "leftright", "left": "(", "right": ")", "body": body}

    def bracket(self, body):
        return {"type": "leftright", "left": "[", "right": "]", "body": body}

    def group(self, body):
        return {"type": "ordgroup", "body": body}

    def frac(self, numer, denom):
        return {"type": "genfrac", "numer": numer, "denom": denom}

    def sqrt(self, body):
        return {"type": "sqrt", "body": body, "index": None}

    def nth_root(self, index, body):
        return {"type": "sqrt", "body": body, "index": {"type": "ordgroup", "body": index}}

    def sup(self, base, sup):
        return _supsub(base, sup=sup)

    def sub(self, base, sub):
        return _supsub(base, sub=sub)

    def subsup(self, base, sub, sup):
        return _supsub(base, sup=sup, sub=sub)

    def supsub(self, base, sup, sub):
        return _supsub(base, sup=sup, sub=sub)

    def unisup(self, base, token):
        return _supsub(base, sup=_unicode_power(token))

    def func(self, name, arg):
        return {"type": "op", "name": str(name).lstrip("\\"), "body": arg, "sup": None, "loc": _loc(name)}

    def func_pow(self, name, sup, arg):
        node = self.func(name, arg)
        node["sup"] = sup
        return node

    def func_unipow(self, name, token, arg):
        node = self.func(name, arg)
        node["sup"] = _unicode_power(token)
        return node


_parser = Lark(_GRAMMAR, parser="lalr", transformer=RawTreeBuilder())


def _nesting_depth(raw) -> int:
    deepest = 0
    stack = [(raw, 1)]
    while stack:
        node, depth = stack.pop()
        deepest = max(deepest, depth)
        children = node if isinstance(node, list) else node.values()
        stack.extend((child, depth + 1) for child in children if isinstance(child, (dict, list)))
    return deepest


def parse_latex(text: str) -> ParseResult:
    """Parse LaTeX-like source into a raw tree; failures come back as a result, never raised."""
    source = (text or "").strip().strip("$").strip()
    if not source:
        return ParseResult(success=False, error="Empty expression", original=text or "")
    try:
        ast = _parser.parse(source)
    except LarkError as exc:
        logger.debug("Failed to parse %r: %s", text, exc)
        return ParseResult(success=False, error=f"Could not parse expression: {exc}", original=text)
    if not ast:
        return ParseResult(success=False, error="Empty expression", original=text)
    if _nesting_depth(ast) > MAX_NESTING_DEPTH:
        return ParseResult(success=False, error="Expression is nested too deeply", original=text)
    return ParseResult(success=True, ast=ast, original=text)


# --- simplifier ---

_OPERATOR_SPELLINGS = {"−": "-"}


def _items(raw_items: List[RawNode]) -> Sequence:
    return Sequence(tuple(_convert(item) for item in raw_items))


def _part(raw: RawNode) -> Sequence:
    """Contents of a group slot (exponent, fraction part, root, argument) as a Sequence."""
    if raw["type"] == "ordgroup":
        return _items(raw["body"])
    return Sequence((_convert(raw),))


def _subscript_text(raw: RawNode) -> str:
    if raw["type"] in ("textord", "mathord"):
        return raw["text"]
    if raw["type"] == "ordgroup":
        return "".join(_subscript_text(child) for child in raw["body"])
    raise ValueError(f"Unsupported subscript: {raw['type']}")


def _convert_supsub(raw: RawNode) -> Node:
    base = _convert(raw["base"])
    if raw.get("sub") is not None:
        if not isinstance(base, Symbol):
            raise ValueError("Subscripts are only supported on variables")
        base = Symbol(f"{base.value}_{_subscript_text(raw['sub'])}", loc=base.loc)
    if raw.get("sup") is None:
        return base
    return Power(base, _part(raw["sup"]))


def _convert_function(raw: RawNode) -> Node:
    name, arg = raw["name"], raw["body"]
    power = raw.get("sup")
    if (arg["type"] == "supsub" and arg["base"]["type"] == "leftright"
            and arg.get("sub") is None and power is None):
        # \sin(x)^2 means (\sin x)^2
        function = Function(name, _items(arg["base"]["body"]), loc=raw.get("loc"))
        return Power(function, _part(arg["sup"]))
    if arg["type"] == "leftright":
        function = Function(name, _items(arg["body"]), loc=raw.get("loc"))
    else:
        function = Function(name, _part(arg), loc=raw.get("loc"))
    if power is None:
        return function
    return Power(function, _part(power))


def _convert(raw: RawNode) -> Node:
    kind = raw["type"]
    if kind == "textord":
        return Number(float(raw["text"]), text=raw["text"], loc=raw.get("loc"))
    if kind == "mathord":
        return Symbol(raw["text"], loc=raw.get("loc"))
    if kind in ("bin", "punct"):
        return Operator(_OPERATOR_SPELLINGS.get(raw["text"], raw["text"]), loc=raw.get("loc"))
    if kind == "leftright":
        return Delimited(_items(raw["body"]))
    if kind == "ordgroup":
        body = raw["body"]
        if len(body) == 1 and body[0]["type"] == "punct":
            return _convert(body[0])
        return Delimited(_items(body))
    if kind == "genfrac":
        return Fraction(_part(raw["numer"]), _part(raw["denom"]))
    if kind == "sqrt":
        index = raw.get("index")
        return Sqrt(_part(raw["body"]), _part(index) if index is not None else None)
    if kind == "supsub":
        return _convert_supsub(raw)
    if kind == "op":
        return _convert_function(raw)
    raise ValueError(f"Unknown parse node type: {kind}")


def simplify_tree(raw) -> Sequence:
    """Convert a raw parse tree (list of raw nodes or a single raw node) into a Sequence."""
    if isinstance(raw, list):
        return _items(raw)
    return _part(raw)
