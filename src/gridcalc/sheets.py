"""Worksheet table: sheet names and grids mapped to stable integer handles."""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, Iterator

from gridcalc.errors import DuplicateSheetError, UnresolvedSheetError


def normalize_sheet_name(name: str) -> str:
    """Case-fold a sheet name for lookup.  ``"Sheet1"`` -> ``"SHEET1"``."""
    return name.strip().upper()


@dataclass(frozen=True)
class Worksheet:
    """A registered grid.

    Attributes:
        handle: Integer handle used in :class:`~gridcalc.address.CellAddress`.
        name: Display name as registered.
        grid: The host grid object.
    """

    handle: int
    name: str
    grid: Any


class WorksheetTable:
    """Registry of worksheets by normalized name, handle and grid identity.

    Handles are issued from a monotonically increasing counter and never
    reused, so addresses pointing at a removed sheet cannot alias a sheet
    added later under the same name.
    """

    def __init__(self) -> None:
        self._by_name: dict[str, int] = {}
        self._by_handle: dict[int, Worksheet] = {}
        # id(grid) -> handle; the table holds a reference so ids stay stable
        self._by_grid: dict[int, int] = {}
        self._counter = itertools.count(1)

    def add(self, name: str, grid: Any) -> Worksheet:
        """Register *grid* under *name*.

        Raises:
            DuplicateSheetError: If the name or the grid is already registered.
        """
        key = normalize_sheet_name(name)
        if key in self._by_name or id(grid) in self._by_grid:
            raise DuplicateSheetError(name)
        sheet = Worksheet(handle=next(self._counter), name=name, grid=grid)
        self._by_name[key] = sheet.handle
        self._by_handle[sheet.handle] = sheet
        self._by_grid[id(grid)] = sheet.handle
        return sheet

    def remove(self, name: str) -> Worksheet:
        """Unregister the sheet called *name* and return it."""
        sheet = self.by_name(name)
        del self._by_name[normalize_sheet_name(name)]
        del self._by_handle[sheet.handle]
        del self._by_grid[id(sheet.grid)]
        return sheet

    def by_name(self, name: str) -> Worksheet:
        """Look up a sheet case-insensitively.

        Raises:
            UnresolvedSheetError: If no sheet has that name.
        """
        handle = self._by_name.get(normalize_sheet_name(name))
        if handle is None:
            raise UnresolvedSheetError(name, available=self.names)
        return self._by_handle[handle]

    def get(self, handle: int) -> Worksheet | None:
        return self._by_handle.get(handle)

    def for_grid(self, grid: Any) -> Worksheet | None:
        """Find the sheet registered for *grid* (by identity)."""
        handle = self._by_grid.get(id(grid))
        if handle is None:
            return None
        return self._by_handle[handle]

    @property
    def names(self) -> list[str]:
        return [s.name for s in self._by_handle.values()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_sheet_name(name) in self._by_name

    def __iter__(self) -> Iterator[Worksheet]:
        return iter(list(self._by_handle.values()))

    def __len__(self) -> int:
        return len(self._by_handle)
