"""Workbook: the entry point hosts talk to.

A workbook owns the worksheet table, the reference graph, the formula
registry and the propagation engine.  It listens to every registered grid
and turns each change notification into edit intake plus one propagation
pass per touched cell.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from gridcalc.address import CellAddress
from gridcalc.config import merge_config
from gridcalc.engine import PassResult, PropagationEngine
from gridcalc.errors import CellReferenceError, ReferenceSyntaxError, UnresolvedSheetError
from gridcalc.formulas import ExpressionCompiler, FormulaParseError
from gridcalc.graph import ReferenceGraph
from gridcalc.grid import GridChange
from gridcalc.logging.events import (
    FORMULA_PARSE_ERROR,
    INVALID_REFERENCE,
    SHEET_REMOVED,
    UNRESOLVED_SHEET,
    EventType,
    configure_sink,
    emit_error,
    emit_info,
    emit_warning,
)
from gridcalc.refs import format_ref, parse_ref
from gridcalc.registry import Formula, FormulaRegistry
from gridcalc.sheets import Worksheet, WorksheetTable
from gridcalc.values import REF_ERROR, ErrorValue, FormulaValue, formula_source, plain_value

logger = logging.getLogger(__name__)


class Workbook:
    """Keeps formula cells of a set of grids up to date.

    Usage::

        wb = Workbook()
        sheet1 = MemoryGrid()
        wb.add_worksheet("Sheet1", sheet1)
        sheet1["A0"] = 2
        sheet1["B0"] = "=A0 * 10"
        wb.value("Sheet1", "B0")  # 20

    Parameters
    ----------
    config : dict[str, Any] | None
        Settings merged over :data:`gridcalc.config.DEFAULT_CONFIG`.
    compiler : ExpressionCompiler | None
        Expression engine; a compiler with the built-in functions is created
        when omitted.
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        compiler: ExpressionCompiler | None = None,
    ) -> None:
        self.config = merge_config(config)
        configure_sink(self.config)

        self.sheets = WorksheetTable()
        self.graph = ReferenceGraph()
        self.registry = FormulaRegistry(self.graph, self.sheets)
        self.compiler = compiler or ExpressionCompiler()
        self.engine = PropagationEngine(
            self.registry,
            self.graph,
            self.sheets,
            sentinel=ErrorValue(self.config["cycle_sentinel"], "circular reference"),
        )
        self._sigil: str = self.config["formula_sigil"]
        # Held around whole passes; re-entrant so engine write-backs can
        # reach grid_changed on the same thread and be ignored there.
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Worksheets
    # ------------------------------------------------------------------

    def add_worksheet(self, name: str, grid: Any) -> Worksheet:
        """Register *grid* under *name* and start listening to it.

        Existing grid contents are not scanned; call :meth:`load_formulas`
        (or :meth:`recalculate_all` after edits) to pick them up.

        Raises:
            DuplicateSheetError: If the name or grid is already registered.
        """
        with self._lock:
            sheet = self.sheets.add(name, grid)
            grid.add_listener(self.grid_changed)
        emit_info(
            EventType.worksheet_added,
            f"Added worksheet {name!r}",
            {"sheet": name, "handle": sheet.handle},
        )
        return sheet

    def remove_worksheet(self, name: str) -> Worksheet:
        """Unregister a sheet and stop listening to its grid.

        Formulas defined on the sheet are uninstalled.  Formulas on other
        sheets that read it are uninstalled too, their cells are set to a
        ``#REF!`` result (keeping the formula text), and their dependents are
        recomputed.

        Raises:
            UnresolvedSheetError: If no sheet has that name.
        """
        with self._lock:
            sheet = self.sheets.by_name(name)
            sheet.grid.remove_listener(self.grid_changed)

            for formula in self.registry.formulas_on(sheet.handle):
                self.registry.uninstall(formula.address)
            readers = self.registry.reading_sheet(sheet.handle)
            self.sheets.remove(name)

            for formula in readers:
                self.registry.uninstall(formula.address)
                self.engine.write_result(
                    formula.address, FormulaValue(formula.source, REF_ERROR)
                )
                emit_warning(
                    EventType.formula_uninstalled,
                    f"{self._ref(formula.address)} read removed sheet {name!r}",
                    {"cell": self._ref(formula.address), "formula": formula.source},
                    error_code=SHEET_REMOVED,
                )
            for formula in readers:
                self.engine.propagate(formula.address)

        emit_info(
            EventType.worksheet_removed,
            f"Removed worksheet {name!r}",
            {"sheet": name, "invalidated": len(readers)},
        )
        return sheet

    @property
    def sheet_names(self) -> list[str]:
        return self.sheets.names

    # ------------------------------------------------------------------
    # Grid notifications
    # ------------------------------------------------------------------

    def grid_changed(self, event: GridChange) -> None:
        """Handle a change notification for a rectangular block of cells.

        Each cell goes through edit intake and then one propagation pass.
        Notifications caused by the engine's own writes are ignored.  Every
        cell of the block is processed even if some fail; the first failure
        is raised afterwards and all of them are logged.

        Raises:
            FormulaParseError: A changed cell holds malformed formula text.
            CellReferenceError: A changed formula references an unknown sheet
                or an invalid cell name.
        """
        with self._lock:
            if self.engine.suppressing:
                return
            sheet = self.sheets.for_grid(event.source)
            if sheet is None:
                logger.debug("ignoring change from unregistered grid %r", event.source)
                return

            failures: list[Exception] = []
            for row, column in event.cells():
                address = CellAddress(sheet.handle, row, column)
                try:
                    self._intake(address, sheet.grid.get_value(row, column))
                except (FormulaParseError, CellReferenceError) as exc:
                    failures.append(exc)
                self.engine.propagate(address)

        if failures:
            raise failures[0]

    def _intake(self, address: CellAddress, raw: Any) -> Formula | None:
        """Replace the formula at *address* according to its new content."""
        previous = self.registry.uninstall(address)
        if previous is not None:
            emit_info(
                EventType.formula_uninstalled,
                f"Uninstalled formula at {self._ref(address)}",
                {"cell": self._ref(address), "formula": previous.source},
            )

        source = formula_source(raw, self._sigil)
        if source is None:
            return None

        try:
            expression = self.compiler.compile(source)
            formula = self.registry.install(address, source, expression)
        except FormulaParseError as exc:
            self._install_failed(address, source, exc, FORMULA_PARSE_ERROR)
            raise
        except UnresolvedSheetError as exc:
            self._install_failed(address, source, exc, UNRESOLVED_SHEET)
            raise
        except ReferenceSyntaxError as exc:
            self._install_failed(address, source, exc, INVALID_REFERENCE)
            raise

        emit_info(
            EventType.formula_installed,
            f"Installed formula at {self._ref(address)}",
            {
                "cell": self._ref(address),
                "formula": source,
                "inputs": sorted(self._ref(a) for a in formula.inputs),
            },
        )
        return formula

    def _install_failed(
        self, address: CellAddress, source: str, exc: Exception, error_code: str
    ) -> None:
        emit_error(
            EventType.formula_install_failed,
            f"{self._ref(address)}: {exc}",
            {"cell": self._ref(address), "formula": source},
            error_code=error_code,
        )

    # ------------------------------------------------------------------
    # Whole-workbook operations
    # ------------------------------------------------------------------

    def load_formulas(self, name: str) -> list[Exception]:
        """Install every formula already present in a sheet's grid.

        Only grids that expose ``cells()`` (like
        :class:`~gridcalc.grid.MemoryGrid`) can be scanned.  Nothing is
        evaluated; call :meth:`recalculate_all` afterwards.

        Returns:
            Install failures, one per cell that could not be installed.
        """
        failures: list[Exception] = []
        with self._lock:
            sheet = self.sheets.by_name(name)
            for (row, column), raw in sorted(sheet.grid.cells().items()):
                if formula_source(raw, self._sigil) is None:
                    continue
                try:
                    self._intake(CellAddress(sheet.handle, row, column), raw)
                except (FormulaParseError, CellReferenceError) as exc:
                    failures.append(exc)
        return failures

    def recalculate_all(self) -> PassResult:
        """Evaluate every installed formula (cycles get the sentinel)."""
        with self._lock:
            return self.engine.recalculate_all()

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def address(self, sheet: str, ref: str) -> CellAddress:
        """Resolve ``ref`` on *sheet* (a qualifier inside ``ref`` wins)."""
        qualifier, row, column = parse_ref(ref)
        return CellAddress(self.sheets.by_name(qualifier or sheet).handle, row, column)

    def formula_at(self, sheet: str, ref: str) -> Formula | None:
        return self.registry.get(self.address(sheet, ref))

    def value(self, sheet: str, ref: str) -> Any:
        """Current value of a cell as formulas see it (formula results unwrapped)."""
        address = self.address(sheet, ref)
        grid = self.sheets.get(address.sheet).grid
        return plain_value(grid.get_value(address.row, address.column))

    def dependents(self, sheet: str, ref: str) -> list[str]:
        """References of the formula cells that read ``ref`` directly."""
        address = self.address(sheet, ref)
        return sorted(
            format_ref(f.address, self.sheets, relative_to=address.sheet)
            for f in self.graph.dependents_of(address)
        )

    def _ref(self, address: CellAddress) -> str:
        return format_ref(address, self.sheets)
