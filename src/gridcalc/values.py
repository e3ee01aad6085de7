"""Tagged cell values written by the engine.

A grid cell holds one of:

- a literal (any plain Python value, ``None`` for empty),
- a :class:`FormulaValue` carrying the formula source and its last result,
- an :class:`ErrorValue` marker, normally as the result of a ``FormulaValue``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ErrorValue:
    """An error marker stored as a cell result.

    Two error values are equal when their codes are equal; the message is
    diagnostic only.
    """

    code: str
    message: str = field(default="", compare=False)

    def __str__(self) -> str:
        return self.code


CYCLE_ERROR = ErrorValue("#ERROR#", "circular reference")
REF_ERROR = ErrorValue("#REF!", "referenced sheet was removed")


@dataclass(frozen=True)
class FormulaValue:
    """The content of a formula cell after evaluation.

    Attributes:
        source: Formula text without the leading sigil, e.g. ``"A1+1"``.
        result: The last computed value, or an :class:`ErrorValue`.
    """

    source: str
    result: Any = None

    @property
    def is_error(self) -> bool:
        return isinstance(self.result, ErrorValue)

    def __str__(self) -> str:
        return "" if self.result is None else str(self.result)


def formula_source(raw: Any, sigil: str = "=") -> str | None:
    """Return the formula text held by a raw cell value, or ``None``.

    A value is formula-shaped when it is a :class:`FormulaValue` or a string
    starting with *sigil*.  The sigil is stripped.
    """
    if isinstance(raw, FormulaValue):
        return raw.source
    if isinstance(raw, str) and raw.startswith(sigil):
        return raw[len(sigil):]
    return None


def plain_value(raw: Any) -> Any:
    """Unwrap a cell value to what formulas reading the cell should see."""
    if isinstance(raw, FormulaValue):
        return raw.result
    return raw
