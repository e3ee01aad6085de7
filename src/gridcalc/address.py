"""Cell addresses: immutable ``(sheet, row, column)`` keys."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class CellAddress:
    """Identifies one cell of one registered grid.

    ``sheet`` is the integer handle the worksheet table issued for the grid,
    so two grids that happen to share a name never alias.  Rows and columns
    are zero-based.  Equality and hashing cover all three fields at full
    integer width.
    """

    sheet: int
    row: int
    column: int

    def __post_init__(self) -> None:
        if self.row < 0 or self.column < 0:
            raise ValueError(
                f"Cell address out of range: row={self.row}, column={self.column}"
            )

    def offset(self, rows: int = 0, columns: int = 0) -> CellAddress:
        """Return the address shifted by *rows* and *columns* on the same sheet."""
        return CellAddress(self.sheet, self.row + rows, self.column + columns)
