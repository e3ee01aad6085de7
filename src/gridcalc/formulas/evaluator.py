"""Tree-walking evaluator for parsed formula expressions.

Cell references are looked up in the *bindings* mapping by the exact text
they were written with; bare names fall back to the compiler's global
variables.  An :class:`~gridcalc.values.ErrorValue` read from a binding
raises :class:`FormulaValueError` carrying that error's code, so upstream
errors propagate through arithmetic unless caught by ``IFERROR``.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Mapping

from lark import Token, Tree

from gridcalc.formulas.errors import (
    FormulaError,
    FormulaFunctionError,
    FormulaRefError,
    FormulaValueError,
)
from gridcalc.values import ErrorValue


class FunctionSpec:
    """A registered function.

    Eager functions receive a list of evaluated argument values.  Lazy
    functions receive the unevaluated argument nodes plus an ``evaluate``
    callback, so they can short-circuit (``IF``) or trap errors (``IFERROR``).
    """

    __slots__ = ("name", "impl", "lazy")

    def __init__(self, name: str, impl: Callable[..., Any], lazy: bool = False) -> None:
        self.name = name
        self.impl = impl
        self.lazy = lazy


def evaluate_tree(
    tree: Tree,
    bindings: Mapping[str, Any],
    variables: Mapping[str, Any] | None = None,
    functions: Mapping[str, FunctionSpec] | None = None,
) -> Any:
    """Evaluate a parsed formula tree.

    Args:
        tree: Parse tree from ``parse_formula()``.
        bindings: Cell reference text -> current cell value.
        variables: Global variable name -> value.
        functions: Upper-cased function name -> :class:`FunctionSpec`.

    Returns:
        The computed value.

    Raises:
        FormulaError: On unknown names/functions, bad operand types, division
            by zero, or an upstream error value.
    """
    return _Evaluation(bindings, variables or {}, functions or {}).eval(tree)


class _Evaluation:
    __slots__ = ("bindings", "variables", "functions")

    def __init__(
        self,
        bindings: Mapping[str, Any],
        variables: Mapping[str, Any],
        functions: Mapping[str, FunctionSpec],
    ) -> None:
        self.bindings = bindings
        self.variables = variables
        self.functions = functions

    def eval(self, node: Tree | Token) -> Any:
        """Recursively evaluate a tree node."""
        if isinstance(node, Token):
            return _eval_token(node)

        rule = node.data

        # Start rule just wraps expr
        if rule == "start":
            return self.eval(node.children[0])

        # Arithmetic
        if rule == "add":
            return self.num(node.children[0]) + self.num(node.children[1])
        if rule == "sub":
            return self.num(node.children[0]) - self.num(node.children[1])
        if rule == "mul":
            return self.num(node.children[0]) * self.num(node.children[1])
        if rule == "div":
            left = self.num(node.children[0])
            right = self.num(node.children[1])
            if right == 0:
                raise FormulaValueError("Division by zero in formula", code="#DIV/0!")
            return left / right
        if rule == "neg":
            return -self.num(node.children[0])
        if rule == "pos":
            return self.num(node.children[0])
        if rule == "pow":
            base = self.num(node.children[0])
            exp = self.num(node.children[1])
            try:
                result = base ** exp
            except (OverflowError, ZeroDivisionError) as exc:
                raise FormulaValueError(str(exc), code="#NUM!") from exc
            if isinstance(result, complex):
                raise FormulaValueError(
                    f"{base} ^ {exp} has no real result", code="#NUM!"
                )
            return result
        if rule == "percent":
            return self.num(node.children[0]) / 100
        if rule == "concat":
            return _text(self.value(node.children[0])) + _text(self.value(node.children[1]))

        # Comparison
        if rule in _COMPARISONS:
            left = self.value(node.children[0])
            right = self.value(node.children[1])
            try:
                return _COMPARISONS[rule](left, right)
            except TypeError as exc:
                raise FormulaValueError(
                    f"Cannot compare {left!r} and {right!r}"
                ) from exc

        # Literals
        if rule == "number":
            return _parse_number(node.children[0])
        if rule == "boolean":
            return str(node.children[0]) == "TRUE"
        if rule == "string":
            return _unquote(str(node.children[0]))

        if rule == "cell_ref":
            name = str(node.children[0])
            if name not in self.bindings:
                raise FormulaRefError(name, available=sorted(self.bindings))
            return self.bindings[name]

        if rule == "name_ref":
            name = str(node.children[0])
            if name in self.variables:
                return self.variables[name]
            raise FormulaRefError(name, available=sorted(self.variables))

        if rule == "func_call":
            return self.call(node)

        raise FormulaError(f"Unknown node type: {rule}")

    def value(self, node: Tree | Token) -> Any:
        """Evaluate *node*, raising if the result is an error value."""
        result = self.eval(node)
        if isinstance(result, ErrorValue):
            raise FormulaValueError(
                result.message or f"Referenced cell holds {result.code}",
                code=result.code,
            )
        return result

    def num(self, node: Tree | Token) -> int | float:
        """Evaluate *node* as a number.  Empty text counts as zero."""
        return to_number(self.value(node))

    def call(self, node: Tree) -> Any:
        """Evaluate a function call node."""
        func_name = str(node.children[0]).upper()
        args_node = node.children[1]
        raw_args = list(args_node.children) if args_node.children else []

        spec = self.functions.get(func_name)
        if spec is None:
            raise FormulaFunctionError(func_name)

        # Lazy functions receive unevaluated AST nodes
        if spec.lazy:
            return spec.impl(raw_args, self.eval)

        return spec.impl([self.value(arg) for arg in raw_args])


def to_number(value: Any) -> int | float:
    """Coerce a cell value for arithmetic.

    Numbers and bools pass through, empty text is zero, numeric text is
    parsed.  Anything else raises ``#VALUE!``.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if value is None or value == "":
        return 0
    if isinstance(value, str):
        try:
            return float(value) if any(c in value for c in ".eE") else int(value)
        except ValueError:
            pass
    raise FormulaValueError(f"Expected a number, got {value!r}")


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and math.isfinite(value) and value == int(value):
        return str(int(value))
    return str(value)


def _eval_token(token: Token) -> Any:
    """Evaluate a bare token (shouldn't normally happen at top level)."""
    if token.type == "NUMBER":
        return _parse_number(token)
    if token.type == "BOOL":
        return str(token) == "TRUE"
    if token.type == "ESCAPED_STRING":
        return _unquote(str(token))
    return str(token)


def _unquote(raw: str) -> str:
    return raw[1:-1].replace('\\"', '"').replace("\\\\", "\\")


def _parse_number(token: Token) -> int | float:
    """Parse a NUMBER token to int or float."""
    s = str(token)
    if "." in s or "e" in s or "E" in s:
        return float(s)
    return int(s)


_COMPARISONS: dict[str, Callable[[Any, Any], bool]] = {
    "gt": lambda a, b: a > b,
    "lt": lambda a, b: a < b,
    "gte": lambda a, b: a >= b,
    "lte": lambda a, b: a <= b,
    "eq": lambda a, b: a == b,
    "neq": lambda a, b: a != b,
}
