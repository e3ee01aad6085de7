"""Propagation engine: mark dirty cells, detect cycles, recompute.

One pass handles one edited cell (or one full recalculation)::

    Idle -> Marking -> Recomputing      -> Idle
                    -> ErrorPropagating -> Idle

All scratch state of a pass lives on a :class:`PropagationPass` that is
created for the pass and dropped afterwards, so the dirty and visited sets
are empty at every pass boundary by construction.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from gridcalc.address import CellAddress
from gridcalc.errors import CircularReferenceError
from gridcalc.formulas.errors import FormulaError
from gridcalc.graph import ReferenceGraph
from gridcalc.logging.events import (
    CIRCULAR_REFERENCE,
    EVALUATION_ERROR,
    EventType,
    emit_info,
    emit_warning,
)
from gridcalc.refs import format_ref
from gridcalc.registry import Formula, FormulaRegistry
from gridcalc.sheets import WorksheetTable
from gridcalc.values import CYCLE_ERROR, REF_ERROR, ErrorValue, FormulaValue, plain_value

logger = logging.getLogger(__name__)


class PropagationPass:
    """Scratch state for a single propagation pass.

    Attributes:
        dirty: Addresses still waiting to be recomputed.
        visited: Addresses entered by the mark traversal.
        recomputed: Addresses evaluated so far, in evaluation order.
        errored: Addresses that received the cycle sentinel.
        writing: True while the engine writes results into a grid.
    """

    __slots__ = ("dirty", "visited", "recomputed", "errored", "writing")

    def __init__(self) -> None:
        self.dirty: set[CellAddress] = set()
        self.visited: set[CellAddress] = set()
        self.recomputed: list[CellAddress] = []
        self.errored: list[CellAddress] = []
        self.writing = False

    @contextmanager
    def suppress(self) -> Iterator[None]:
        """Mark grid notifications raised inside the block as engine writes."""
        previous = self.writing
        self.writing = True
        try:
            yield
        finally:
            self.writing = previous


@dataclass
class PassResult:
    """Outcome of one pass.

    Attributes:
        origin: The edited address (``None`` for a full recalculation).
        recomputed: Formula cells evaluated, in evaluation order.
        errored: Cells that received the cycle sentinel.
        cycle: Whether a circular reference was detected.
    """

    origin: CellAddress | None
    recomputed: list[CellAddress] = field(default_factory=list)
    errored: list[CellAddress] = field(default_factory=list)
    cycle: bool = False


class PropagationEngine:
    """Recomputes formulas after an edit, in dependency order.

    Parameters
    ----------
    registry : FormulaRegistry
        Installed formulas.
    graph : ReferenceGraph
        Input address -> dependent formulas.
    sheets : WorksheetTable
        Resolves sheet handles to grids for reads and write-back.
    sentinel : ErrorValue
        Result written into every cell affected by a cycle.
    """

    def __init__(
        self,
        registry: FormulaRegistry,
        graph: ReferenceGraph,
        sheets: WorksheetTable,
        *,
        sentinel: ErrorValue = CYCLE_ERROR,
    ) -> None:
        self._registry = registry
        self._graph = graph
        self._sheets = sheets
        self.sentinel = sentinel
        self._active: PropagationPass | None = None

    @property
    def suppressing(self) -> bool:
        """True while the active pass is writing results into a grid."""
        return self._active is not None and self._active.writing

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def propagate(self, origin: CellAddress) -> PassResult:
        """Run one pass for an edit at *origin*.

        If *origin* holds a formula it is evaluated too.  A cycle reachable
        from *origin* switches the pass to sentinel propagation; it is never
        raised to the caller.
        """
        with self._pass() as pass_:
            result = PassResult(origin)
            if origin in self._registry:
                pass_.dirty.add(origin)
            try:
                self.mark(origin, pass_)
            except CircularReferenceError as exc:
                self._report_cycle(exc)
                self.propagate_error(origin, pass_)
                result.cycle = True
            else:
                self.recompute(pass_)
            result.recomputed = list(pass_.recomputed)
            result.errored = list(pass_.errored)
        emit_info(
            EventType.pass_completed,
            f"Pass at {self._ref(origin)} completed",
            {
                "origin": self._ref(origin),
                "recomputed": len(result.recomputed),
                "errored": len(result.errored),
                "cycle": result.cycle,
            },
        )
        return result

    def recalculate_all(self) -> PassResult:
        """Evaluate every installed formula, as after loading a workbook.

        Each formula is first walked for cycles; cyclic formulas and their
        transitive dependents receive the sentinel and everything else is
        recomputed.  Formulas already proven acyclic by an earlier walk are
        not walked again.
        """
        with self._pass() as pass_:
            result = PassResult(None)
            cleared: set[CellAddress] = set()
            errored: set[CellAddress] = set()
            for address in self._registry.addresses():
                if address in cleared or address in errored:
                    continue
                probe = PropagationPass()
                try:
                    self.mark(address, probe)
                except CircularReferenceError as exc:
                    self._report_cycle(exc)
                    self.propagate_error(exc.path[0], pass_)
                    errored.update(pass_.errored)
                    result.cycle = True
                else:
                    cleared.update(probe.visited)

            pass_.dirty.update(a for a in self._registry.addresses() if a not in errored)
            self.recompute(pass_)
            result.recomputed = list(pass_.recomputed)
            result.errored = list(pass_.errored)
        emit_info(
            EventType.recalc_all,
            "Recalculated all formulas",
            {
                "formulas": len(self._registry),
                "recomputed": len(result.recomputed),
                "errored": len(result.errored),
            },
        )
        return result

    def write_result(self, address: CellAddress, value: Any) -> None:
        """Write *value* into a cell as an engine write (no edit intake)."""
        with self._pass() as pass_:
            self._write(address, value, pass_)

    # ------------------------------------------------------------------
    # Marking
    # ------------------------------------------------------------------

    def mark(self, origin: CellAddress, pass_: PropagationPass) -> None:
        """Add every formula cell transitively depending on *origin* to the dirty set.

        Depth-first and iterative.  Reaching an address that is still on the
        current traversal path (including *origin* itself) is a cycle.
        Dependents that are already dirty and fully explored are skipped.

        Raises:
            CircularReferenceError: With the cycle as an address path.
        """
        pass_.visited.add(origin)
        path: list[CellAddress] = [origin]
        on_path: set[CellAddress] = {origin}
        stack: list[Iterator[CellAddress]] = [iter(self._dependent_addresses(origin))]

        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                on_path.discard(path.pop())
                continue
            if nxt in on_path:
                raise CircularReferenceError(path[path.index(nxt):] + [nxt])
            if nxt in pass_.dirty and nxt in pass_.visited:
                continue
            pass_.dirty.add(nxt)
            pass_.visited.add(nxt)
            path.append(nxt)
            on_path.add(nxt)
            stack.append(iter(self._dependent_addresses(nxt)))

    def _dependent_addresses(self, address: CellAddress) -> list[CellAddress]:
        return sorted(f.address for f in self._graph.dependents_of(address))

    # ------------------------------------------------------------------
    # Error propagation
    # ------------------------------------------------------------------

    def propagate_error(self, origin: CellAddress, pass_: PropagationPass) -> None:
        """Write the sentinel into *origin* and every cell depending on it.

        The dirty set is discarded first; nothing is evaluated.  *origin* is
        only overwritten when it holds a formula, so an edited literal keeps
        its value.
        """
        pass_.dirty.clear()
        errored: set[CellAddress] = set()

        origin_formula = self._registry.get(origin)
        if origin_formula is not None:
            self._write_error(origin_formula, pass_)
            errored.add(origin)

        pending = [origin]
        while pending:
            current = pending.pop()
            for formula in self._graph.dependents_of(current):
                if formula.address in errored:
                    continue
                errored.add(formula.address)
                self._write_error(formula, pass_)
                pending.append(formula.address)

    def _write_error(self, formula: Formula, pass_: PropagationPass) -> None:
        self._write(formula.address, FormulaValue(formula.source, self.sentinel), pass_)
        pass_.errored.append(formula.address)

    def _report_cycle(self, exc: CircularReferenceError) -> None:
        cycle = [self._ref(a) for a in exc.path]
        logger.debug("circular reference: %s", " -> ".join(cycle))
        emit_warning(
            EventType.cycle_detected,
            f"Circular reference: {' -> '.join(cycle)}",
            {"cycle": cycle},
            error_code=CIRCULAR_REFERENCE,
        )

    # ------------------------------------------------------------------
    # Recomputation
    # ------------------------------------------------------------------

    def recompute(self, pass_: PropagationPass) -> None:
        """Drain the dirty set, evaluating each formula once.

        Pick order is arbitrary: :meth:`evaluate` brings dirty inputs up to
        date first, and removes them from the dirty set as it goes.
        """
        while pass_.dirty:
            address = next(iter(pass_.dirty))
            formula = self._registry.get(address)
            if formula is None:
                pass_.dirty.discard(address)
                continue
            self.evaluate(formula, pass_)
        pass_.visited.clear()

    def evaluate(self, formula: Formula, pass_: PropagationPass) -> Any:
        """Evaluate *formula*, first evaluating any of its inputs still dirty.

        Returns:
            The computed result (possibly an :class:`ErrorValue`).
        """
        for pending in self._dirty_inputs(formula, pass_):
            self._evaluate_one(pending, pass_)
        return self._evaluate_one(formula, pass_)

    def _dirty_inputs(self, formula: Formula, pass_: PropagationPass) -> list[Formula]:
        """Dirty formulas *formula* reads, transitively, inputs first."""
        order: list[Formula] = []
        seen: set[CellAddress] = {formula.address}
        stack: list[tuple[Formula, Iterator[CellAddress]]] = [
            (formula, iter(sorted(formula.inputs)))
        ]
        while stack:
            current, inputs = stack[-1]
            target = next(inputs, None)
            if target is None:
                stack.pop()
                if current is not formula:
                    order.append(current)
                continue
            if target in seen or target not in pass_.dirty:
                continue
            seen.add(target)
            upstream = self._registry.get(target)
            if upstream is not None:
                stack.append((upstream, iter(sorted(upstream.inputs))))
        return order

    def _evaluate_one(self, formula: Formula, pass_: PropagationPass) -> Any:
        bindings: dict[str, Any] = {}
        for name, target in formula.bindings.items():
            value = plain_value(self._read(target))
            bindings[name] = "" if value is None else value

        try:
            result = formula.expression.evaluate(bindings)
        except FormulaError as exc:
            result = ErrorValue(exc.code, str(exc))
            # Cells downstream of a cycle inherit the sentinel without a warning each
            if exc.code != self.sentinel.code:
                emit_warning(
                    EventType.formula_eval_error,
                    f"{self._ref(formula.address)}: {exc}",
                    {"cell": self._ref(formula.address), "formula": formula.source, "code": exc.code},
                    error_code=EVALUATION_ERROR,
                )
        except Exception as exc:
            # Host functions and numeric edge cases still settle the cell
            result = ErrorValue("#VALUE!", str(exc))
            emit_warning(
                EventType.formula_eval_error,
                f"{self._ref(formula.address)}: {exc}",
                {"cell": self._ref(formula.address), "formula": formula.source, "code": result.code},
                error_code=EVALUATION_ERROR,
            )

        self._write(formula.address, FormulaValue(formula.source, result), pass_)
        pass_.dirty.discard(formula.address)
        pass_.recomputed.append(formula.address)
        return result

    # ------------------------------------------------------------------
    # Grid access
    # ------------------------------------------------------------------

    def _read(self, address: CellAddress) -> Any:
        sheet = self._sheets.get(address.sheet)
        if sheet is None:
            return REF_ERROR
        return sheet.grid.get_value(address.row, address.column)

    def _write(self, address: CellAddress, value: Any, pass_: PropagationPass) -> None:
        sheet = self._sheets.get(address.sheet)
        if sheet is None:
            return
        with pass_.suppress():
            sheet.grid.set_value(address.row, address.column, value)

    def _ref(self, address: CellAddress) -> str:
        return format_ref(address, self._sheets)

    @contextmanager
    def _pass(self) -> Iterator[PropagationPass]:
        """Make a fresh pass the active one for the duration of the block."""
        outer = self._active
        pass_ = PropagationPass()
        self._active = pass_
        try:
            yield pass_
        finally:
            self._active = outer
