"""Arithmetic evaluation for the `calc_eval` tool."""

from __future__ import annotations

import ast
import operator
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

_WORD_OPERATORS = [
    (r"\bgeteilt\s+durch\b", "/"),
    (r"\bdivided\s+by\b", "/"),
    (r"\bmultipliziert\s+mit\b", "*"),
    (r"\bmultiplied\s+by\b", "*"),
    (r"\bdurch\b", "/"),
    (r"\bplus\b", "+"),
    (r"\bminus\b", "-"),
    (r"\bmal\b", "*"),
    (r"\btimes\b", "*"),
    (r"\bhoch\b", "**"),
]
_DECIMAL_COMMA = re.compile(r"(\d),(\d)")
_EXPRESSION_RUN = re.compile(r"-?[\d(][\d\s+\-*/().%]*")

_BINARY_OPERATORS: dict[type[ast.operator], tuple[str, Callable[[float, float], float]]] = {
    ast.Add: ("+", operator.add),
    ast.Sub: ("-", operator.sub),
    ast.Mult: ("*", operator.mul),
    ast.Div: ("/", operator.truediv),
    ast.FloorDiv: ("//", operator.floordiv),
    ast.Mod: ("%", operator.mod),
    ast.Pow: ("**", operator.pow),
}
_UNARY_OPERATORS: dict[type[ast.unaryop], Callable[[float], float]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


class CalculationError(ValueError):
    """The expression is not plain arithmetic or cannot be evaluated."""


@dataclass(slots=True)
class CalculationResult:
    expression: str
    result: float
    steps: list[str] = field(default_factory=list)


def extract_expression(message: str) -> str:
    """Pull the arithmetic part out of a chat message.

    >>> extract_expression("Rechne 12,5 mal 4")
    '12.5 * 4'
    """
    text = message.lower()
    for pattern, symbol in _WORD_OPERATORS:
        text = re.sub(pattern, f" {symbol} ", text)
    text = _DECIMAL_COMMA.sub(r"\1.\2", text)

    candidates = [
        run.strip().rstrip("+-*/%= ").strip()
        for run in _EXPRESSION_RUN.findall(text)
    ]
    candidates = [run for run in candidates if any(ch.isdigit() for ch in run)]
    if not candidates:
        raise CalculationError(f"No arithmetic expression found in: {message!r}")
    return " ".join(max(candidates, key=len).split())


class SafeCalculator:
    """Evaluates arithmetic through a whitelisted AST walk; names come only from `variables`."""

    def __init__(self, *, max_length: int = 200, max_exponent: float = 100.0) -> None:
        self.max_length = max_length
        self.max_exponent = max_exponent

    def evaluate(
        self,
        expression: str,
        variables: Mapping[str, float] | None = None,
    ) -> CalculationResult:
        expression = expression.strip()
        if not expression:
            raise CalculationError("Expression is empty")
        if len(expression) > self.max_length:
            raise CalculationError(f"Expression longer than {self.max_length} characters")
        try:
            tree = ast.parse(expression, mode="eval")
        except SyntaxError as exc:
            raise CalculationError(f"Invalid expression: {expression}") from exc

        steps: list[str] = []
        try:
            value = self._eval(tree.body, dict(variables or {}), steps)
        except ZeroDivisionError as exc:
            raise CalculationError("Division by zero") from exc
        except OverflowError as exc:
            raise CalculationError("Result out of range") from exc
        except TypeError as exc:
            raise CalculationError("Result is not a real number") from exc
        steps.append(f"Result: {_format(value)}")
        return CalculationResult(expression=expression, result=value, steps=steps)

    def _eval(self, node: ast.AST, variables: dict[str, float], steps: list[str]) -> float:
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(
            node.value, bool
        ):
            return float(node.value)
        if isinstance(node, ast.Name):
            if node.id not in variables:
                raise CalculationError(f"Unknown variable: {node.id}")
            return float(variables[node.id])
        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
            return _UNARY_OPERATORS[type(node.op)](self._eval(node.operand, variables, steps))
        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
            left = self._eval(node.left, variables, steps)
            right = self._eval(node.right, variables, steps)
            symbol, func = _BINARY_OPERATORS[type(node.op)]
            if symbol == "**" and abs(right) > self.max_exponent:
                raise CalculationError(f"Exponent larger than {self.max_exponent:g}")
            value = float(func(left, right))
            steps.append(f"{_format(left)} {symbol} {_format(right)} = {_format(value)}")
            return value
        raise CalculationError(f"Unsupported syntax: {type(node).__name__}")


def _format(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return f"{value:g}"
