"""Error types raised by the workbook, reference codec and propagation engine."""

from __future__ import annotations

from typing import Any


class GridcalcError(Exception):
    """Base class for all gridcalc errors."""


class ConfigError(GridcalcError):
    """Invalid configuration value."""


class CellReferenceError(GridcalcError):
    """Base class for errors resolving a textual cell reference."""


class ReferenceSyntaxError(CellReferenceError):
    """A variable name is not of the form ``[Sheet!]ColumnLetters Digits``.

    Attributes:
        name: The offending reference text.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Invalid cell reference: {name!r}")


class UnresolvedSheetError(CellReferenceError):
    """A sheet qualifier names a sheet that is not in the worksheet table.

    Attributes:
        sheet_name: The unresolved sheet name as written.
        available: Sheet names currently registered.
    """

    def __init__(self, sheet_name: str, available: list[str] | None = None) -> None:
        self.sheet_name = sheet_name
        self.available = available or []
        msg = f"Unknown sheet: {sheet_name!r}"
        if self.available:
            msg += f". Available: {self.available}"
        super().__init__(msg)


class DuplicateSheetError(GridcalcError):
    """A sheet name (or grid) is already registered in the workbook."""

    def __init__(self, sheet_name: str) -> None:
        self.sheet_name = sheet_name
        super().__init__(f"Sheet already registered: {sheet_name!r}")


class CircularReferenceError(GridcalcError):
    """Raised inside the mark phase when a dependency cycle is found.

    Never escapes a propagation pass: the engine handles it by writing the
    cycle sentinel into every affected cell.

    Attributes:
        path: Cell addresses forming the cycle, first element repeated last.
    """

    def __init__(self, path: list[Any]) -> None:
        self.path = path
        parts = " -> ".join(str(p) for p in path)
        super().__init__(f"Circular cell reference: {parts}")
