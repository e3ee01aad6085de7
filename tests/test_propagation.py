"""Tests for marking, cycle handling and recomputation."""

from __future__ import annotations

import random

import pytest

from gridcalc.address import CellAddress
from gridcalc.engine import PropagationPass
from gridcalc.errors import CircularReferenceError
from gridcalc.grid import MemoryGrid
from gridcalc.values import CYCLE_ERROR, ErrorValue, FormulaValue
from gridcalc.workbook import Workbook


# ────────────────────────────────────────────────────────────────
# Fixtures
# ────────────────────────────────────────────────────────────────


@pytest.fixture
def sheet1() -> MemoryGrid:
    return MemoryGrid()


@pytest.fixture
def sheet2() -> MemoryGrid:
    return MemoryGrid()


@pytest.fixture
def wb(sheet1: MemoryGrid, sheet2: MemoryGrid) -> Workbook:
    workbook = Workbook()
    workbook.add_worksheet("Sheet1", sheet1)
    workbook.add_worksheet("Sheet2", sheet2)
    return workbook


def _addr(wb: Workbook, ref: str, sheet: str = "Sheet1") -> CellAddress:
    return wb.address(sheet, ref)


class _PickOrder(set):
    """Dirty set whose iteration order is fixed by *key*."""

    def __init__(self, items, key):
        super().__init__(items)
        self._key = key

    def __iter__(self):
        return iter(sorted(set.__iter__(self), key=self._key))


# ────────────────────────────────────────────────────────────────
# Basic recomputation
# ────────────────────────────────────────────────────────────────


class TestRecompute:
    def test_formula_evaluated_on_entry(self, wb, sheet1):
        sheet1["A1"] = 2
        sheet1["B1"] = "=A1 * 10"
        assert sheet1["B1"] == FormulaValue("A1 * 10", 20)
        assert wb.value("Sheet1", "B1") == 20

    def test_literal_edit_updates_dependents(self, wb, sheet1):
        sheet1["B1"] = "=A1 * 10"
        sheet1["A1"] = 3
        assert wb.value("Sheet1", "B1") == 30

    def test_chain(self, wb, sheet1):
        sheet1["A1"] = 1
        sheet1["B1"] = "=A1 + 1"
        sheet1["C1"] = "=B1 + 1"
        sheet1["D1"] = "=C1 + 1"
        sheet1["A1"] = 10
        assert [wb.value("Sheet1", r) for r in ("B1", "C1", "D1")] == [11, 12, 13]

    def test_diamond_evaluates_each_cell_once(self, wb, sheet1):
        sheet1["B1"] = "=A1 + 1"
        sheet1["C1"] = "=A1 * 2"
        sheet1["D1"] = "=B1 + C1"
        result = wb.engine.propagate(_addr(wb, "A1"))
        assert sorted(result.recomputed) == sorted(
            [_addr(wb, "B1"), _addr(wb, "C1"), _addr(wb, "D1")]
        )
        assert result.recomputed.index(_addr(wb, "D1")) == 2

    def test_empty_input_reads_as_empty_text(self, wb, sheet1):
        sheet1["B1"] = "=A1"
        assert wb.value("Sheet1", "B1") == ""
        sheet1["C1"] = "=A1 + 5"
        assert wb.value("Sheet1", "C1") == 5

    def test_runtime_error_becomes_error_value(self, wb, sheet1):
        sheet1["A1"] = 0
        sheet1["B1"] = "=1 / A1"
        assert wb.value("Sheet1", "B1") == ErrorValue("#DIV/0!")
        sheet1["C1"] = "=B1 + 1"
        assert wb.value("Sheet1", "C1") == ErrorValue("#DIV/0!")
        sheet1["A1"] = 4
        assert wb.value("Sheet1", "B1") == 0.25
        assert wb.value("Sheet1", "C1") == 1.25

    def test_host_function_failure_settles_the_pass(self, wb, sheet1):
        wb.compiler.set_function("HALF", lambda args: args[0] / 2)
        sheet1["A1"] = 8
        sheet1["B1"] = "=HALF(A1)"
        sheet1["C1"] = "=A1 * 3"
        sheet1["D1"] = "=C1 + 1"
        assert wb.value("Sheet1", "D1") == 25

        # HALF raises TypeError on text; the edit still completes
        sheet1["A1"] = "abc"
        assert wb.value("Sheet1", "B1") == ErrorValue("#VALUE!")
        assert wb.value("Sheet1", "C1") == ErrorValue("#VALUE!")
        assert wb.value("Sheet1", "D1") == ErrorValue("#VALUE!")
        assert wb.engine._active is None

        sheet1["A1"] = 2
        assert wb.value("Sheet1", "B1") == 1.0
        assert wb.value("Sheet1", "D1") == 7

    def test_infinite_result_in_text(self, wb, sheet1):
        sheet1["A1"] = 1e308
        sheet1["B1"] = '="x" & (A1 * 10)'
        assert wb.value("Sheet1", "B1") == "xinf"

    def test_cleared_formula_no_longer_evaluated(self, wb, sheet1):
        sheet1["B1"] = "=A1 + 1"
        del sheet1["B1"]
        result = wb.engine.propagate(_addr(wb, "A1"))
        assert result.recomputed == []
        assert sheet1["B1"] is None

    def test_replacing_formula_with_literal(self, wb, sheet1):
        sheet1["B1"] = "=A1 + 1"
        sheet1["B1"] = 7
        assert wb.formula_at("Sheet1", "B1") is None
        assert wb.dependents("Sheet1", "A1") == []
        assert len(wb.graph) == 0
        sheet1["A1"] = 100
        assert sheet1["B1"] == 7

    def test_pick_order_does_not_change_results(self, wb, sheet1):
        # B1 = 3*A1, C1 = 7*A1, ... G1 = 127*A1; H1 = B1 + D1 + G1 = 145*A1
        cols = "BCDEFG"
        for i, col in enumerate(cols):
            prev = "A" if i == 0 else cols[i - 1]
            sheet1[f"{col}1"] = f"={prev}1 * 2 + A1"
        sheet1["H1"] = "=SUM(B1, D1, G1)"

        rng = random.Random(7)
        orders = [
            lambda a: a.column,
            lambda a: -a.column,
            lambda a: rng.random(),
            lambda a: rng.random(),
        ]
        for value, order in enumerate(orders, start=2):
            with wb.engine._pass() as pass_:
                with pass_.suppress():
                    sheet1["A1"] = value
                wb.engine.mark(_addr(wb, "A1"), pass_)
                pass_.dirty = _PickOrder(pass_.dirty, order)
                wb.engine.recompute(pass_)
            assert wb.value("Sheet1", "B1") == 3 * value
            assert wb.value("Sheet1", "G1") == 127 * value
            assert wb.value("Sheet1", "H1") == 145 * value

    def test_deep_chain_has_no_recursion_limit(self, wb, sheet1):
        depth = 3000
        for row in range(1, depth):
            sheet1.set_value(row, 0, f"=A{row - 1} + 1")
        sheet1["A0"] = 1
        assert sheet1.get_value(depth - 1, 0).result == depth

    def test_pass_leaves_no_scratch_state(self, wb, sheet1):
        sheet1["B1"] = "=A1 + 1"
        sheet1["A1"] = 2
        assert wb.engine._active is None
        assert not wb.engine.suppressing


# ────────────────────────────────────────────────────────────────
# Cross-sheet references
# ────────────────────────────────────────────────────────────────


class TestCrossSheet:
    def test_reads_other_sheet(self, wb, sheet1, sheet2):
        sheet2["A1"] = 5
        sheet1["B1"] = "=Sheet2!A1 * 2"
        assert wb.value("Sheet1", "B1") == 10

    def test_updates_only_for_qualified_cell(self, wb, sheet1, sheet2):
        sheet1["B1"] = "=Sheet2!A1 * 2"
        sheet2["A1"] = 4
        assert wb.value("Sheet1", "B1") == 8

        result = wb.engine.propagate(_addr(wb, "A1"))
        assert result.recomputed == []
        sheet1["A1"] = 100
        assert wb.value("Sheet1", "B1") == 8

    def test_same_ref_on_two_sheets_are_independent(self, wb, sheet1, sheet2):
        sheet1["A1"] = 1
        sheet2["A1"] = 2
        sheet1["B1"] = "=A1"
        sheet2["B1"] = "=A1"
        sheet2["A1"] = 20
        assert wb.value("Sheet1", "B1") == 1
        assert wb.value("Sheet2", "B1") == 20

    def test_chain_across_sheets(self, wb, sheet1, sheet2):
        sheet1["A1"] = 1
        sheet2["A1"] = "=Sheet1!A1 + 1"
        sheet1["B1"] = "=Sheet2!A1 + 1"
        sheet1["A1"] = 10
        assert wb.value("Sheet2", "A1") == 11
        assert wb.value("Sheet1", "B1") == 12


# ────────────────────────────────────────────────────────────────
# Cycles
# ────────────────────────────────────────────────────────────────


class TestCycles:
    def test_self_reference(self, wb, sheet1):
        sheet1["B1"] = "=A1 + 1"
        sheet1["A1"] = "=A1 + 1"
        assert sheet1["A1"] == FormulaValue("A1 + 1", CYCLE_ERROR)
        # Dependents of the cycle get the sentinel too
        assert wb.value("Sheet1", "B1") == CYCLE_ERROR

    def test_self_reference_only_marks_that_cell(self, wb, sheet1):
        sheet1["C1"] = 5
        sheet1["D1"] = "=C1"
        sheet1["A1"] = "=A1"
        assert wb.value("Sheet1", "A1") == CYCLE_ERROR
        assert wb.value("Sheet1", "D1") == 5

    def test_chain_cycle(self, wb, sheet1):
        sheet1["A1"] = "=B1"
        sheet1["B1"] = "=C1"
        sheet1["D1"] = "=A1"
        sheet1["C1"] = "=A1"
        for ref in ("A1", "B1", "C1", "D1"):
            assert wb.value("Sheet1", ref) == CYCLE_ERROR, ref

    def test_formula_text_survives_sentinel(self, wb, sheet1):
        sheet1["A1"] = "=B1"
        sheet1["B1"] = "=A1"
        assert sheet1["A1"].source == "B1"
        assert sheet1["B1"].source == "A1"
        assert wb.formula_at("Sheet1", "A1") is not None

    def test_cycle_not_through_edited_cell(self, wb, sheet1):
        sheet1["B1"] = "=A1 + C1"
        sheet1["C1"] = "=B1"
        sheet1["E1"] = "=C1"
        # Edit a plain input upstream of the B1 <-> C1 loop
        result = wb.engine.propagate(_addr(wb, "A1"))
        assert result.cycle
        assert sheet1["A1"] is None
        for ref in ("B1", "C1", "E1"):
            assert wb.value("Sheet1", ref) == CYCLE_ERROR, ref

    def test_literal_origin_keeps_its_value(self, wb, sheet1):
        sheet1["B1"] = "=A1 + C1"
        sheet1["C1"] = "=B1"
        sheet1["A1"] = 9
        assert sheet1["A1"] == 9

    def test_breaking_cycle_recovers_values(self, wb, sheet1):
        sheet1["A1"] = "=B1 + 1"
        sheet1["B1"] = "=C1 + 1"
        sheet1["D1"] = "=A1"
        sheet1["C1"] = "=A1"
        assert wb.value("Sheet1", "D1") == CYCLE_ERROR

        sheet1["C1"] = 1
        assert wb.value("Sheet1", "B1") == 2
        assert wb.value("Sheet1", "A1") == 3
        assert wb.value("Sheet1", "D1") == 3

    def test_cycle_across_sheets(self, wb, sheet1, sheet2):
        sheet1["A1"] = "=Sheet2!A1"
        sheet2["A1"] = "=Sheet1!A1"
        assert wb.value("Sheet1", "A1") == CYCLE_ERROR
        assert wb.value("Sheet2", "A1") == CYCLE_ERROR

    def test_iferror_does_not_hide_cycles(self, wb, sheet1):
        sheet1["A1"] = "=IFERROR(A1, 0)"
        assert wb.value("Sheet1", "A1") == CYCLE_ERROR

    def test_custom_sentinel(self, sheet1):
        wb = Workbook(config={"cycle_sentinel": "#CIRC!"})
        wb.add_worksheet("Sheet1", sheet1)
        sheet1["A1"] = "=A1"
        assert wb.value("Sheet1", "A1") == ErrorValue("#CIRC!")


# ────────────────────────────────────────────────────────────────
# Mark phase
# ────────────────────────────────────────────────────────────────


class TestMark:
    def test_marks_transitive_dependents(self, wb, sheet1):
        sheet1["B1"] = "=A1"
        sheet1["C1"] = "=B1"
        sheet1["D1"] = "=Z9"
        pass_ = PropagationPass()
        wb.engine.mark(_addr(wb, "A1"), pass_)
        assert pass_.dirty == {_addr(wb, "B1"), _addr(wb, "C1")}
        assert _addr(wb, "A1") in pass_.visited

    def test_raises_with_cycle_path(self, wb, sheet1):
        sheet1["A1"] = "=B1"
        sheet1["B1"] = "=A1"
        pass_ = PropagationPass()
        with pytest.raises(CircularReferenceError) as exc_info:
            wb.engine.mark(_addr(wb, "A1"), pass_)
        path = exc_info.value.path
        assert path[0] == path[-1]
        assert set(path) == {_addr(wb, "A1"), _addr(wb, "B1")}

    def test_shared_dependent_is_not_a_cycle(self, wb, sheet1):
        sheet1["B1"] = "=A1"
        sheet1["C1"] = "=A1 + B1"
        pass_ = PropagationPass()
        wb.engine.mark(_addr(wb, "A1"), pass_)
        assert pass_.dirty == {_addr(wb, "B1"), _addr(wb, "C1")}


# ────────────────────────────────────────────────────────────────
# Full recalculation
# ────────────────────────────────────────────────────────────────


class TestRecalculateAll:
    def test_loads_existing_formulas(self):
        grid = MemoryGrid()
        grid["A1"] = 2
        grid["B1"] = "=A1 * 3"
        grid["C1"] = "=B1 + A1"
        wb = Workbook()
        wb.add_worksheet("Sheet1", grid)
        assert wb.load_formulas("Sheet1") == []
        result = wb.recalculate_all()
        assert not result.cycle
        assert wb.value("Sheet1", "C1") == 8
        assert len(result.recomputed) == 2

    def test_cycles_get_sentinel_rest_recomputed(self):
        grid = MemoryGrid()
        grid["A1"] = 1
        grid["B1"] = "=A1 + 1"
        grid["C1"] = "=D1"
        grid["D1"] = "=C1"
        grid["E1"] = "=D1 + B1"
        wb = Workbook()
        wb.add_worksheet("Sheet1", grid)
        wb.load_formulas("Sheet1")
        result = wb.recalculate_all()
        assert result.cycle
        assert wb.value("Sheet1", "B1") == 2
        for ref in ("C1", "D1", "E1"):
            assert wb.value("Sheet1", ref) == CYCLE_ERROR, ref

    def test_upstream_of_cycle_is_recomputed(self):
        grid = MemoryGrid()
        grid["A1"] = "=1 + 1"
        grid["B1"] = "=A1 + C1"
        grid["C1"] = "=B1"
        wb = Workbook()
        wb.add_worksheet("Sheet1", grid)
        wb.load_formulas("Sheet1")
        wb.recalculate_all()
        assert wb.value("Sheet1", "A1") == 2
        assert wb.value("Sheet1", "B1") == CYCLE_ERROR
        assert wb.value("Sheet1", "C1") == CYCLE_ERROR
