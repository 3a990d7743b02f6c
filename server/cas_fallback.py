"""
Symbolic engine fallback for pairs the rule engine could not prove equal.

The LaTeX input is translated lexically (no parse) into the symbolic
engine's syntax, then the engine is asked for ``simplify(a - b)`` and, if
that is not zero, for ``simplify(a)`` and ``simplify(b)`` separately.
"""

import logging
import re
from time import perf_counter
from typing import Optional

import sympy as sp
from sympy.parsing.sympy_parser import parse_expr, standard_transformations

from schemas import FallbackVerdict, Method

logger = logging.getLogger(__name__)

ZERO_RESULTS = ("0", "0.0")

FUNCTION_NAMES = (
    "arcsin", "arccos", "arctan", "sinh", "cosh", "tanh",
    "sin", "cos", "tan", "sec", "csc", "cot", "log", "ln", "exp",
    "sqrt", "root", "asin", "acos", "atan",
)

_COMMAND_NAMES = {
    "ln": "log",
    "arcsin": "asin",
    "arccos": "acos",
    "arctan": "atan",
    # 'lambda' is a Python keyword; SymPy spells the symbol 'lamda'
    "lambda": "lamda",
}

_UNICODE = {
    "·": "*", "×": "*", "−": "-", "÷": "/",
    "π": "\\pi", "θ": "\\theta", "α": "\\alpha", "β": "\\beta", "λ": "\\lambda",
}

_SUPERSCRIPTS = str.maketrans("⁰¹²³⁴⁵⁶⁷⁸⁹", "0123456789")

_MAX_NESTING = 50

_FUNCTION_PATTERN = "|".join(FUNCTION_NAMES)


class FallbackError(RuntimeError):
    """Translation or symbolic engine failure inside the fallback."""


def _rewrite_until_stable(text: str, pattern: str, replacement) -> str:
    for _ in range(_MAX_NESTING):
        rewritten = re.sub(pattern, replacement, text)
        if rewritten == text:
            break
        text = rewritten
    return text


def _function_power(match) -> str:
    name, braced, bare, arg = match.groups()
    power = braced if braced is not None else bare
    if not arg.startswith("("):
        arg = f"({arg})"
    return f"{name}{arg}**({power})"


def _call_or_product(match) -> str:
    word = match.group(1)
    if word in FUNCTION_NAMES:
        return f"{word}("
    return f"{word}*("


def translate_latex(latex: str) -> str:
    """Lexically translate LaTeX-like text into SymPy-parseable syntax.

    Adjacent letters are never split into a product: ``xy`` stays one symbol.
    """
    s = latex.strip().strip("$")

    s = re.sub(r"[⁰¹²³⁴⁵⁶⁷⁸⁹]+", lambda m: "^{" + m.group(0).translate(_SUPERSCRIPTS) + "}", s)
    for char, replacement in _UNICODE.items():
        s = s.replace(char, replacement)

    s = re.sub(r"\\(?:left|right)(?![a-zA-Z])", "", s)
    s = re.sub(r"\\q?quad(?![a-zA-Z])|\\[,;:! ]", " ", s)
    s = re.sub(r"\\(?:cdot|times)(?![a-zA-Z])", "*", s)
    s = re.sub(r"\\div(?![a-zA-Z])", "/", s)
    s = re.sub(r"\\[dt]frac(?![a-zA-Z])", r"\\frac", s)

    s = _rewrite_until_stable(s, r"\\sqrt\s*\[([^\[\]{}]*)\]\s*\{([^{}]*)\}", r"root((\2),(\1))")
    s = s.replace("[", "(").replace("]", ")")
    s = _rewrite_until_stable(s, r"\\frac\s*\{([^{}]*)\}\s*\{([^{}]*)\}", r"((\1)/(\2))")
    s = _rewrite_until_stable(s, r"\\sqrt\s*\{([^{}]*)\}", r"sqrt(\1)")

    # \sin^2(x) and \sin^{2} x mean (\sin x)^2
    s = re.sub(
        r"\\(" + _FUNCTION_PATTERN + r")\s*\^\s*(?:\{([^{}]*)\}|(\w))\s*(\([^()]*\)|\d+(?:\.\d+)?|[a-zA-Z])",
        _function_power,
        s,
    )
    s = _rewrite_until_stable(s, r"\^\s*\{([^{}]*)\}", r"**(\1)")
    s = _rewrite_until_stable(s, r"_\s*\{([^{}]*)\}", r"_\1")

    s = re.sub(r"\\([a-zA-Z]+)", lambda m: _COMMAND_NAMES.get(m.group(1), m.group(1)), s)
    # bare function argument: sin x -> sin(x)
    s = re.sub(r"\b(" + _FUNCTION_PATTERN + r")\s+(\d+(?:\.\d+)?|[a-zA-Z](?![a-zA-Z(]))", r"\1(\2)", s)
    for name, replacement in _COMMAND_NAMES.items():
        s = re.sub(rf"\b{name}\(", f"{replacement}(", s)

    s = s.replace("{", "(").replace("}", ")")
    s = s.replace("^", "**")

    # implicit multiplication
    s = re.sub(r"(\d)\s*([a-zA-Z(])", r"\1*\2", s)
    s = re.sub(r"\)\s*([\w(])", r")*\1", s)
    s = re.sub(r"\b([a-zA-Z_]\w*)\s*\(", _call_or_product, s)
    s = re.sub(r"([\w)])\s+([\w(])", r"\1*\2", s)
    s = re.sub(r"\s+", "", s)
    return s


class SympyEngine:
    """Symbolic engine backed by SymPy.

    ``evaluate`` takes a command such as ``simplify((x+1)**2 - (x**2+2*x+1))``
    and returns the result as text.
    """

    def __init__(self):
        self.namespace = {
            "ln": sp.log,
            "root": sp.root,
            "lamda": sp.Symbol("lamda"),
        }
        # single letters SymPy would otherwise read as constants or functions
        for name in ("E", "I", "N", "O", "Q", "S", "beta", "gamma", "zeta"):
            self.namespace[name] = sp.Symbol(name)

    def evaluate(self, text: str) -> str:
        expr = parse_expr(text, local_dict=dict(self.namespace), transformations=standard_transformations)
        return str(expr)


class SymbolicFallback:
    """Decide equivalence with a symbolic engine exposing ``evaluate(text) -> text``."""

    def __init__(self, engine=None, timeout: int = 2000):
        self.engine = engine if engine is not None else SympyEngine()
        self.timeout = timeout

    def _run(self, command: str) -> str:
        return str(self.engine.evaluate(command)).strip()

    def decide(self, latex1: str, latex2: str) -> FallbackVerdict:
        start = perf_counter()
        try:
            expr1 = translate_latex(latex1)
            expr2 = translate_latex(latex2)
            difference = self._run(f"simplify(({expr1}) - ({expr2}))")
            if difference in ZERO_RESULTS:
                return self._verdict(start, equivalent=True, method=Method.ALGEBRITE_DIFFERENCE,
                                     difference="0")
            simplified1 = self._run(f"simplify({expr1})")
            simplified2 = self._run(f"simplify({expr2})")
        except Exception as exc:
            raise FallbackError(f"Symbolic engine error: {exc}") from exc

        if simplified1 == simplified2:
            return self._verdict(start, equivalent=True, method=Method.ALGEBRITE_SIMPLIFY,
                                 simplified=simplified1)
        return self._verdict(start, equivalent=False, method=Method.ALGEBRITE_NOT_EQUIVALENT,
                             difference=difference, expr1=simplified1, expr2=simplified2)

    def _verdict(self, start: float, **fields) -> FallbackVerdict:
        elapsed = (perf_counter() - start) * 1000
        if elapsed > self.timeout:
            logger.warning("Symbolic engine took %.0f ms, over the %d ms timeout", elapsed, self.timeout)
        return FallbackVerdict(time=elapsed, timeout=self.timeout, **fields)
