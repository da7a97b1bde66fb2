"""
Restricted expression language for user supplied conversion formulas.

Formulas are written against a single input, ``registerValue``, e.g.::

    registerValue > 32767 ? (registerValue - 65536) * 0.1 : registerValue * 0.1
    return registerValue / 10 - 40;

The text is tokenized and parsed into a small expression tree by a
recursive-descent parser; evaluation walks that tree. Nothing is handed to
``eval``/``exec`` and no name other than ``registerValue`` and the fixed
math helpers below can be referenced.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence, Tuple, Union

from .errors import FormulaEvaluationError, FormulaSyntaxError

INPUT_NAME = "registerValue"
MAX_NESTING = 32

Number = Union[int, float, bool]


def _js_round(value: float) -> float:
    return float(math.floor(value + 0.5))


FUNCTIONS: Dict[str, Tuple[Callable[..., float], int, int]] = {
    # name: (callable, min args, max args)
    "abs": (abs, 1, 1),
    "min": (lambda *values: min(values), 1, 16),
    "max": (lambda *values: max(values), 1, 16),
    "round": (_js_round, 1, 1),
    "floor": (math.floor, 1, 1),
    "ceil": (math.ceil, 1, 1),
    "trunc": (math.trunc, 1, 1),
    "sqrt": (math.sqrt, 1, 1),
    "pow": (math.pow, 2, 2),
    "exp": (math.exp, 1, 1),
    "log": (math.log, 1, 1),
}

CONSTANTS: Dict[str, float] = {
    "PI": math.pi,
    "E": math.e,
}

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>0[xX][0-9a-fA-F]+|(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?)
  | (?P<name>[A-Za-z_][A-Za-z_0-9]*(?:\.[A-Za-z_][A-Za-z_0-9]*)?)
  | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||\*\*|[-+*/%<>!?:(),;])
    """,
    re.VERBOSE,
)

_COMPARISONS = {
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "==": lambda a, b: a == b,
    "===": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "!==": lambda a, b: a != b,
}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise FormulaSyntaxError(f"Unexpected character {text[pos]!r}", text, pos)
        kind = match.lastgroup or ""
        if kind != "ws":
            tokens.append(Token(kind, match.group(), pos))
        pos = match.end()
    tokens.append(Token("end", "", len(text)))
    return tokens


# Expression tree nodes. Each node is a tuple whose first item names the node.
Node = Tuple


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0
        self.depth = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _accept(self, *texts: str) -> bool:
        token = self.current
        if token.kind in {"op", "name"} and token.text in texts:
            self.index += 1
            return True
        return False

    def _expect(self, text: str) -> None:
        if not self._accept(text):
            self._fail(f"Expected '{text}'")

    def _nested(self, parse: Callable[[], Node]) -> Node:
        self.depth += 1
        if self.depth > MAX_NESTING:
            self._fail(f"Formula nests deeper than {MAX_NESTING} levels")
        try:
            return parse()
        finally:
            self.depth -= 1

    def _fail(self, message: str) -> None:
        token = self.current
        found = token.text or "end of formula"
        raise FormulaSyntaxError(f"{message}, found '{found}'", self.text, token.pos)

    def parse(self) -> Node:
        if self.current.kind == "end":
            self._fail("Formula is empty")
        self._accept("return")
        node = self._ternary()
        while self._accept(";"):
            pass
        if self.current.kind != "end":
            self._fail("Unexpected trailing input")
        return node

    def _ternary(self) -> Node:
        condition = self._or()
        if self._accept("?"):
            when_true = self._nested(self._ternary)
            self._expect(":")
            when_false = self._nested(self._ternary)
            return ("if", condition, when_true, when_false)
        return condition

    def _or(self) -> Node:
        node = self._and()
        while self._accept("||", "or"):
            node = ("or", node, self._and())
        return node

    def _and(self) -> Node:
        node = self._not()
        while self._accept("&&", "and"):
            node = ("and", node, self._not())
        return node

    def _not(self) -> Node:
        if self._accept("not"):
            return ("not", self._nested(self._not))
        return self._comparison()

    def _comparison(self) -> Node:
        node = self._additive()
        while self.current.kind == "op" and self.current.text in _COMPARISONS:
            op = self._advance().text
            node = ("cmp", op, node, self._additive())
        return node

    def _additive(self) -> Node:
        node = self._term()
        while self.current.kind == "op" and self.current.text in {"+", "-"}:
            op = self._advance().text
            node = ("bin", op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._unary()
        while self.current.kind == "op" and self.current.text in {"*", "/", "%"}:
            op = self._advance().text
            node = ("bin", op, node, self._unary())
        return node

    def _unary(self) -> Node:
        if self._accept("-"):
            return ("neg", self._nested(self._unary))
        if self._accept("+"):
            return ("pos", self._nested(self._unary))
        if self._accept("!"):
            return ("not", self._nested(self._unary))
        return self._power()

    def _power(self) -> Node:
        base = self._primary()
        if self._accept("**"):
            return ("bin", "**", base, self._nested(self._unary))
        return base

    def _primary(self) -> Node:
        token = self.current
        if token.kind == "number":
            self._advance()
            text = token.text
            if text[:2].lower() == "0x":
                return ("num", int(text, 16))
            return ("num", float(text) if any(c in text for c in ".eE") else int(text))
        if token.kind == "name":
            self._advance()
            return self._name(token)
        if self._accept("("):
            node = self._nested(self._ternary)
            self._expect(")")
            return node
        self._fail("Expected a number, name or '('")
        raise AssertionError("unreachable")

    def _name(self, token: Token) -> Node:
        name = token.text
        bare = name[5:] if name.startswith("Math.") else name
        if name == INPUT_NAME:
            return ("input",)
        if name in {"true", "false"}:
            return ("num", name == "true")
        if self._accept("("):
            if bare not in FUNCTIONS:
                raise FormulaSyntaxError(f"Unknown function '{name}'", self.text, token.pos)
            args: List[Node] = []
            if not self._accept(")"):
                args.append(self._nested(self._ternary))
                while self._accept(","):
                    args.append(self._nested(self._ternary))
                self._expect(")")
            _, min_args, max_args = FUNCTIONS[bare]
            if not min_args <= len(args) <= max_args:
                raise FormulaSyntaxError(
                    f"Function '{name}' takes {min_args}..{max_args} arguments, got {len(args)}",
                    self.text,
                    token.pos,
                )
            return ("call", bare, tuple(args))
        if name.startswith("Math.") and bare in CONSTANTS:
            return ("num", CONSTANTS[bare])
        raise FormulaSyntaxError(f"Unknown name '{name}'", self.text, token.pos)


def _evaluate(node: Node, register_value: float) -> Number:
    kind = node[0]
    if kind == "num":
        return node[1]
    if kind == "input":
        return register_value
    if kind == "neg":
        return -_numeric(_evaluate(node[1], register_value))
    if kind == "pos":
        return _numeric(_evaluate(node[1], register_value))
    if kind == "not":
        return not _evaluate(node[1], register_value)
    if kind == "and":
        left = _evaluate(node[1], register_value)
        return _evaluate(node[2], register_value) if left else left
    if kind == "or":
        left = _evaluate(node[1], register_value)
        return left if left else _evaluate(node[2], register_value)
    if kind == "if":
        branch = node[2] if _evaluate(node[1], register_value) else node[3]
        return _evaluate(branch, register_value)
    if kind == "cmp":
        left = _numeric(_evaluate(node[2], register_value))
        right = _numeric(_evaluate(node[3], register_value))
        return _COMPARISONS[node[1]](left, right)
    if kind == "bin":
        return _binary(node[1], _evaluate(node[2], register_value), _evaluate(node[3], register_value))
    if kind == "call":
        func = FUNCTIONS[node[1]][0]
        args = [_numeric(_evaluate(arg, register_value)) for arg in node[2]]
        try:
            return func(*args)
        except (ValueError, OverflowError) as exc:
            raise FormulaEvaluationError(f"{node[1]}() failed: {exc}") from exc
    raise FormulaEvaluationError(f"Unknown expression node '{kind}'")


def _numeric(value: Number) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    return value


def _binary(op: str, left: Number, right: Number) -> float:
    a = _numeric(left)
    b = _numeric(right)
    try:
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if op == "/":
            return a / b
        if op == "%":
            return math.fmod(a, b)
        if op == "**":
            return math.pow(a, b)
    except ZeroDivisionError as exc:
        raise FormulaEvaluationError("Division by zero") from exc
    except (ValueError, OverflowError) as exc:
        raise FormulaEvaluationError(f"Arithmetic error in '{op}': {exc}") from exc
    raise FormulaEvaluationError(f"Unknown operator '{op}'")


class Formula:
    """A parsed conversion formula, ready to be evaluated many times."""

    def __init__(self, source: str):
        self.source = source
        self._tree = _Parser(source).parse()

    def evaluate(self, register_value: float) -> float:
        try:
            result = _evaluate(self._tree, register_value)
        except RecursionError as exc:
            raise FormulaEvaluationError("Formula is too deeply chained to evaluate", self.source) from exc
        if isinstance(result, bool) or not isinstance(result, (int, float)):
            raise FormulaEvaluationError(
                f"Formula returned a non-numeric value ({result!r})", self.source
            )
        try:
            value = float(result)
        except OverflowError as exc:
            raise FormulaEvaluationError("Formula result is too large", self.source) from exc
        if not math.isfinite(value):
            raise FormulaEvaluationError(f"Formula returned a non-finite value ({value})", self.source)
        return value

    def __call__(self, register_value: float) -> float:
        return self.evaluate(register_value)

    def __repr__(self) -> str:
        return f"Formula({self.source!r})"


def compile_formula(source: str) -> Formula:
    return Formula(source)


def validate_formula(source: str, sample_values: Sequence[int] = (0, 250, 32767, 32768, 65535)) -> None:
    """Parse *source* and evaluate it on a few representative raw values."""
    formula = compile_formula(source)
    for value in sample_values:
        formula.evaluate(value)
