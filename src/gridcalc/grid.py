"""Grid protocol and a sparse in-memory grid.

The workbook only needs four things from a grid: read a cell, write a cell,
and (un)subscribe to rectangular change notifications.  :class:`MemoryGrid`
is the reference host used by tests and small embeddings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterator, Protocol, runtime_checkable

from gridcalc.refs import parse_ref


@dataclass(frozen=True)
class GridChange:
    """Notification for a rectangular block of changed cells (inclusive bounds)."""

    source: Any
    first_row: int
    last_row: int
    first_column: int
    last_column: int

    def cells(self) -> Iterator[tuple[int, int]]:
        """Iterate ``(row, column)`` pairs row-major."""
        for row in range(self.first_row, self.last_row + 1):
            for column in range(self.first_column, self.last_column + 1):
                yield row, column


GridListener = Callable[[GridChange], None]


@runtime_checkable
class Grid(Protocol):
    """What the workbook requires of a host grid."""

    def get_value(self, row: int, column: int) -> Any:
        ...

    def set_value(self, row: int, column: int, value: Any) -> None:
        """Store *value* and notify listeners with a one-cell change."""
        ...

    def add_listener(self, listener: GridListener) -> None:
        ...

    def remove_listener(self, listener: GridListener) -> None:
        ...


class MemoryGrid:
    """Dict-backed sparse grid.

    Setting a cell to ``None`` clears it.  Cells can also be addressed with
    unqualified references, e.g. ``grid["B3"] = "=A0*2"`` (rows are
    zero-based, see :mod:`gridcalc.refs`).

    Parameters
    ----------
    n_rows, n_cols : int | None
        Optional bounds; writes outside them raise ``IndexError``.
    """

    def __init__(self, n_rows: int | None = None, n_cols: int | None = None) -> None:
        self.n_rows = n_rows
        self.n_cols = n_cols
        self._cells: dict[tuple[int, int], Any] = {}
        self._listeners: list[GridListener] = []

    # ------------------------------------------------------------------
    # Grid protocol
    # ------------------------------------------------------------------

    def get_value(self, row: int, column: int) -> Any:
        return self._cells.get((row, column))

    def set_value(self, row: int, column: int, value: Any) -> None:
        self._store(row, column, value)
        self._fire(GridChange(self, row, row, column, column))

    def add_listener(self, listener: GridListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: GridListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Batch and convenience access
    # ------------------------------------------------------------------

    def set_values(self, row: int, column: int, rows: list[list[Any]]) -> None:
        """Write a rectangular block with its top-left at (*row*, *column*).

        Listeners receive a single notification covering the whole block.
        Ragged rows are padded with ``None``.
        """
        if not rows:
            return
        width = max(len(r) for r in rows)
        if width == 0:
            return
        for i, values in enumerate(rows):
            for j in range(width):
                self._store(row + i, column + j, values[j] if j < len(values) else None)
        self._fire(GridChange(self, row, row + len(rows) - 1, column, column + width - 1))

    def clear(self, row: int, column: int) -> None:
        """Delete a cell's content."""
        self.set_value(row, column, None)

    def cells(self) -> dict[tuple[int, int], Any]:
        """Copy of the non-empty cells keyed by ``(row, column)``."""
        return dict(self._cells)

    def __getitem__(self, ref: str) -> Any:
        return self.get_value(*self._locate(ref))

    def __setitem__(self, ref: str, value: Any) -> None:
        self.set_value(*self._locate(ref), value)

    def __delitem__(self, ref: str) -> None:
        self.clear(*self._locate(ref))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _locate(self, ref: str) -> tuple[int, int]:
        sheet, row, column = parse_ref(ref)
        if sheet is not None:
            raise KeyError(f"Sheet-qualified reference not allowed here: {ref!r}")
        return row, column

    def _store(self, row: int, column: int, value: Any) -> None:
        if row < 0 or column < 0:
            raise IndexError(f"Cell ({row}, {column}) out of range")
        if (self.n_rows is not None and row >= self.n_rows) or (
            self.n_cols is not None and column >= self.n_cols
        ):
            raise IndexError(
                f"Cell ({row}, {column}) outside {self.n_rows}x{self.n_cols} grid"
            )
        if value is None:
            self._cells.pop((row, column), None)
        else:
            self._cells[(row, column)] = value

    def _fire(self, change: GridChange) -> None:
        for listener in list(self._listeners):
            listener(change)
