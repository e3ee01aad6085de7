"""Expression compiler: formula text -> evaluable :class:`Expression` handle."""

from __future__ import annotations

from typing import Any, Callable, Mapping

from lark import Tree

from gridcalc.formulas.evaluator import FunctionSpec, evaluate_tree
from gridcalc.formulas.functions import builtin_functions
from gridcalc.formulas.parser import extract_refs, parse_formula


class Expression:
    """A compiled formula.

    Attributes:
        text: The source text that was compiled.
        references: Cell references exactly as written in the text.
        names: Global variable names used by the text.
    """

    __slots__ = ("text", "tree", "references", "names", "_compiler")

    def __init__(self, text: str, tree: Tree, compiler: ExpressionCompiler) -> None:
        self.text = text
        self.tree = tree
        cell_refs, names = extract_refs(tree)
        self.references = frozenset(cell_refs)
        self.names = frozenset(names)
        self._compiler = compiler

    def evaluate(self, bindings: Mapping[str, Any] | None = None) -> Any:
        """Evaluate with *bindings* (reference text -> value).

        Global variables and functions are read from the compiler at call
        time, so later ``set_variable``/``set_function`` calls apply.

        Raises:
            FormulaError: If evaluation fails.
        """
        return evaluate_tree(
            self.tree,
            bindings or {},
            self._compiler.variables,
            self._compiler.functions,
        )

    def __repr__(self) -> str:
        return f"Expression({self.text!r})"


class ExpressionCompiler:
    """Compiles formula text and holds the global variable/function scope.

    Usage::

        compiler = ExpressionCompiler()
        expr = compiler.compile("IF(A1 > 0, A1 * rate, 0)")
        compiler.set_variable("rate", 0.2)
        expr.evaluate({"A1": 10})  # 2.0
    """

    def __init__(self, *, builtins: bool = True) -> None:
        self.variables: dict[str, Any] = {}
        self.functions: dict[str, FunctionSpec] = {}
        if builtins:
            for name, spec in builtin_functions().items():
                self.set_function(name, spec.impl, lazy=spec.lazy)

    def compile(self, text: str) -> Expression:
        """Compile formula text (without the ``=`` sigil).

        Raises:
            FormulaParseError: If the text is not a valid expression.
        """
        return Expression(text, parse_formula(text), self)

    def set_variable(self, name: str, value: Any) -> None:
        """Bind a global variable visible to every expression."""
        self.variables[name] = value

    def set_function(self, name: str, impl: Callable[..., Any], *, lazy: bool = False) -> None:
        """Register (or replace) a function, case-insensitively."""
        self.functions[name.upper()] = FunctionSpec(name.upper(), impl, lazy=lazy)
