"""Excel-like formula compilation and evaluation.

Public API::

    from gridcalc.formulas import ExpressionCompiler, FormulaParseError
"""

from gridcalc.formulas.compiler import Expression, ExpressionCompiler
from gridcalc.formulas.errors import (
    ENGINE_ERRORS,
    FormulaError,
    FormulaFunctionError,
    FormulaParseError,
    FormulaRefError,
    FormulaValueError,
    ParseError,
)
from gridcalc.formulas.functions import builtin_functions, register_function
from gridcalc.formulas.parser import extract_refs, parse_formula

__all__ = [
    "ENGINE_ERRORS",
    "Expression",
    "ExpressionCompiler",
    "FormulaError",
    "FormulaFunctionError",
    "FormulaParseError",
    "FormulaRefError",
    "FormulaValueError",
    "ParseError",
    "builtin_functions",
    "extract_refs",
    "parse_formula",
    "register_function",
]
