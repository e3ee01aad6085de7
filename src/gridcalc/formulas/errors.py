"""Error types for formula parsing and evaluation.

Every evaluation error carries an Excel-style ``code`` that the propagation
engine stores as the cell's :class:`~gridcalc.values.ErrorValue`.
"""

from __future__ import annotations

from gridcalc.errors import GridcalcError


class FormulaError(GridcalcError):
    """Base class for all formula-related errors."""

    code = "#VALUE!"


class FormulaParseError(FormulaError):
    """Syntax error in a formula expression.

    Attributes:
        position: Character position where the error was detected.
        message: Human-readable description.
    """

    code = "#PARSE!"

    def __init__(self, message: str, position: int | None = None) -> None:
        self.position = position
        full = f"Formula parse error: {message}"
        if position is not None:
            full += f" (at position {position})"
        super().__init__(full)


class FormulaRefError(FormulaError):
    """Reference to a name that is neither bound nor a global variable.

    Attributes:
        ref_name: The unresolved reference.
        available: Names that are currently available.
    """

    code = "#NAME?"

    def __init__(self, ref_name: str, available: list[str] | None = None) -> None:
        self.ref_name = ref_name
        self.available = available or []
        msg = f"Unknown reference: {ref_name!r}"
        if self.available:
            msg += f". Available: {self.available}"
        super().__init__(msg)


class FormulaFunctionError(FormulaError):
    """Unknown function or wrong number of arguments.

    Attributes:
        func_name: The function that caused the error.
    """

    def __init__(self, func_name: str, message: str | None = None) -> None:
        self.func_name = func_name
        if message is None:
            self.code = "#NAME?"
            message = f"Unknown function: {func_name!r}"
        super().__init__(message)


class FormulaValueError(FormulaError):
    """An operand has the wrong type, or an upstream cell holds an error.

    Attributes:
        code: Error code to store, e.g. ``#DIV/0!`` or an upstream code.
    """

    def __init__(self, message: str, code: str = "#VALUE!") -> None:
        self.code = code
        super().__init__(message)


# Short name for compile failures
ParseError = FormulaParseError

# Errors a formula can raise at evaluation time (caught by IFERROR/ISERROR)
ENGINE_ERRORS = (FormulaError,)
