"""Formula registry: one installed formula per cell, with resolved bindings."""

from __future__ import annotations

import logging
from typing import Any, Iterator

from gridcalc.address import CellAddress
from gridcalc.graph import ReferenceGraph
from gridcalc.refs import resolve
from gridcalc.sheets import WorksheetTable

logger = logging.getLogger(__name__)


class Formula:
    """A compiled expression installed at one cell.

    Identity semantics: two formulas are never equal unless they are the same
    object, so the reference graph can hold several formulas with identical
    text.

    Attributes:
        address: The defining cell.
        source: Formula text without the sigil.
        expression: Compiled expression handle from the expression engine.
        bindings: Variable name as written in the text -> resolved address.
    """

    __slots__ = ("address", "source", "expression", "bindings")

    def __init__(
        self,
        address: CellAddress,
        source: str,
        expression: Any,
        bindings: dict[str, CellAddress],
    ) -> None:
        self.address = address
        self.source = source
        self.expression = expression
        self.bindings = bindings

    @property
    def inputs(self) -> set[CellAddress]:
        """Distinct addresses this formula reads."""
        return set(self.bindings.values())

    def __repr__(self) -> str:
        return f"Formula({self.address!r}, {self.source!r})"


class FormulaRegistry:
    """Maps each cell holding a formula to its :class:`Formula`.

    Installing resolves every variable of the expression before touching the
    graph, so a failed install never leaves partial subscriptions behind.
    """

    def __init__(self, graph: ReferenceGraph, sheets: WorksheetTable) -> None:
        self._graph = graph
        self._sheets = sheets
        self._formulas: dict[CellAddress, Formula] = {}

    def install(self, address: CellAddress, source: str, expression: Any) -> Formula:
        """Install *expression* at *address*, replacing any previous formula.

        Args:
            address: The defining cell.
            source: Formula text (without sigil), kept for write-back.
            expression: Compiled expression exposing ``references``.

        Returns:
            The installed formula.

        Raises:
            UnresolvedSheetError: A reference names an unknown sheet.
            ReferenceSyntaxError: A reference is not a cell reference.
        """
        self.uninstall(address)

        bindings = {
            name: resolve(name, address, self._sheets)
            for name in sorted(expression.references)
        }
        formula = Formula(address, source, expression, bindings)
        for target in formula.inputs:
            self._graph.subscribe(target, formula)
        self._formulas[address] = formula
        logger.debug("installed %r with %d input(s)", formula, len(formula.inputs))
        return formula

    def uninstall(self, address: CellAddress) -> Formula | None:
        """Remove the formula at *address* and all its subscriptions.

        Returns:
            The removed formula, or ``None`` if the cell held none.
        """
        formula = self._formulas.pop(address, None)
        if formula is None:
            return None
        for target in formula.inputs:
            self._graph.unsubscribe(target, formula)
        logger.debug("uninstalled %r", formula)
        return formula

    def get(self, address: CellAddress) -> Formula | None:
        return self._formulas.get(address)

    def formulas_on(self, sheet: int) -> list[Formula]:
        """Formulas defined on the sheet with handle *sheet*."""
        return [f for a, f in self._formulas.items() if a.sheet == sheet]

    def reading_sheet(self, sheet: int) -> list[Formula]:
        """Formulas defined elsewhere that read any cell of *sheet*."""
        return [
            f
            for a, f in self._formulas.items()
            if a.sheet != sheet and any(t.sheet == sheet for t in f.inputs)
        ]

    def addresses(self) -> list[CellAddress]:
        return sorted(self._formulas)

    def __contains__(self, address: object) -> bool:
        return address in self._formulas

    def __iter__(self) -> Iterator[Formula]:
        return iter(list(self._formulas.values()))

    def __len__(self) -> int:
        return len(self._formulas)
