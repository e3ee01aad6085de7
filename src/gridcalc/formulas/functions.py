"""Built-in formula functions and the registration decorator.

Functions are collected into a module-level table by :func:`register_function`
and copied into each :class:`~gridcalc.formulas.compiler.ExpressionCompiler`
when it is created.  Hosts add their own with ``compiler.set_function``.
"""

from __future__ import annotations

from typing import Any, Callable

from gridcalc.formulas.errors import ENGINE_ERRORS, FormulaFunctionError, FormulaValueError
from gridcalc.formulas.evaluator import FunctionSpec, to_number
from gridcalc.values import ErrorValue

_BUILTINS: dict[str, FunctionSpec] = {}


def register_function(name: str, *, lazy: bool = False) -> Callable:
    """Decorator that registers a built-in function by name.

    Args:
        name: The lookup name (case-insensitive).
        lazy: Whether the function receives unevaluated argument nodes.

    Returns:
        The original function, unmodified.
    """

    def decorator(fn: Callable) -> Callable:
        _BUILTINS[name.upper()] = FunctionSpec(name.upper(), fn, lazy=lazy)
        return fn

    return decorator


def builtin_functions() -> dict[str, FunctionSpec]:
    """Return a copy of the built-in function table."""
    return dict(_BUILTINS)


def _flatten(args: list) -> list:
    result = []
    for a in args:
        if isinstance(a, (list, tuple)):
            result.extend(a)
        else:
            result.append(a)
    return result


def _numbers(name: str, args: list) -> list:
    if len(args) < 1:
        raise FormulaFunctionError(name, f"{name} requires at least 1 argument")
    # Empty cells are skipped by aggregates
    return [to_number(a) for a in _flatten(args) if a != "" and a is not None]


# ---------------------------------------------------------------------------
# Math
# ---------------------------------------------------------------------------


@register_function("SUM")
def _fn_sum(args: list) -> Any:
    return sum(_numbers("SUM", args))


@register_function("AVERAGE")
def _fn_average(args: list) -> float:
    values = _numbers("AVERAGE", args)
    if not values:
        raise FormulaValueError("AVERAGE of no values", code="#DIV/0!")
    return sum(values) / len(values)


@register_function("MIN")
def _fn_min(args: list) -> Any:
    values = _numbers("MIN", args)
    return min(values) if values else 0


@register_function("MAX")
def _fn_max(args: list) -> Any:
    values = _numbers("MAX", args)
    return max(values) if values else 0


@register_function("ABS")
def _fn_abs(args: list) -> Any:
    if len(args) != 1:
        raise FormulaFunctionError("ABS", "ABS requires exactly 1 argument")
    return abs(to_number(args[0]))


@register_function("ROUND")
def _fn_round(args: list) -> Any:
    if len(args) < 1 or len(args) > 2:
        raise FormulaFunctionError("ROUND", "ROUND requires 1-2 arguments")
    digits = int(to_number(args[1])) if len(args) == 2 else 0
    return round(to_number(args[0]), digits)


# ---------------------------------------------------------------------------
# Logical
# ---------------------------------------------------------------------------


@register_function("AND")
def _fn_and(args: list) -> bool:
    """AND(val1, val2, ...): TRUE if all arguments are truthy."""
    if len(args) < 1:
        raise FormulaFunctionError("AND", "AND requires at least 1 argument")
    return all(bool(a) for a in args)


@register_function("OR")
def _fn_or(args: list) -> bool:
    """OR(val1, val2, ...): TRUE if any argument is truthy."""
    if len(args) < 1:
        raise FormulaFunctionError("OR", "OR requires at least 1 argument")
    return any(bool(a) for a in args)


@register_function("NOT")
def _fn_not(args: list) -> bool:
    """NOT(val): inverts a boolean value."""
    if len(args) != 1:
        raise FormulaFunctionError("NOT", "NOT requires exactly 1 argument")
    return not bool(args[0])


@register_function("IF", lazy=True)
def _fn_if(raw_args: list, evaluate: Callable) -> Any:
    """IF(condition, then_value [, else_value]): lazy evaluation."""
    if len(raw_args) < 2 or len(raw_args) > 3:
        raise FormulaFunctionError("IF", "IF requires 2-3 arguments")
    condition = evaluate(raw_args[0])
    if isinstance(condition, ErrorValue):
        raise FormulaValueError(f"IF condition is {condition.code}", code=condition.code)
    if condition:
        return evaluate(raw_args[1])
    if len(raw_args) == 3:
        return evaluate(raw_args[2])
    return False


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


@register_function("IFERROR", lazy=True)
def _fn_iferror(raw_args: list, evaluate: Callable) -> Any:
    """IFERROR(value, fallback): catches errors in first arg."""
    if len(raw_args) != 2:
        raise FormulaFunctionError("IFERROR", "IFERROR requires exactly 2 arguments")
    try:
        result = evaluate(raw_args[0])
    except ENGINE_ERRORS:
        return evaluate(raw_args[1])
    if isinstance(result, ErrorValue):
        return evaluate(raw_args[1])
    return result


@register_function("ISERROR", lazy=True)
def _fn_iserror(raw_args: list, evaluate: Callable) -> bool:
    """ISERROR(expr): TRUE if the expression raises or yields an error."""
    if len(raw_args) != 1:
        raise FormulaFunctionError("ISERROR", "ISERROR requires exactly 1 argument")
    try:
        return isinstance(evaluate(raw_args[0]), ErrorValue)
    except ENGINE_ERRORS:
        return True
