"""Tests for the Workbook entry point: worksheets, edit intake, batches."""

from __future__ import annotations

import threading

import pytest

from gridcalc import Grid, GridChange, MemoryGrid, Workbook
from gridcalc.errors import DuplicateSheetError, ReferenceSyntaxError, UnresolvedSheetError
from gridcalc.formulas import FormulaParseError
from gridcalc.values import REF_ERROR, FormulaValue


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


# ────────────────────────────────────────────────────────────────
# Worksheets
# ────────────────────────────────────────────────────────────────


class TestWorksheets:
    def test_add_registers_grid(self, wb, sheet1):
        sheet = wb.sheets.by_name("sheet1")
        assert sheet.grid is sheet1
        assert wb.sheet_names == ["Sheet1", "Sheet2"]

    def test_memory_grid_satisfies_protocol(self, sheet1):
        assert isinstance(sheet1, Grid)

    def test_duplicate_name(self, wb):
        with pytest.raises(DuplicateSheetError):
            wb.add_worksheet("SHEET1", MemoryGrid())

    def test_remove_unknown(self, wb):
        with pytest.raises(UnresolvedSheetError):
            wb.remove_worksheet("Nope")

    def test_remove_stops_listening(self, wb, sheet2):
        wb.remove_worksheet("Sheet2")
        sheet2["B1"] = "=A1 + 1"
        assert sheet2["B1"] == "=A1 + 1"
        assert len(wb.registry) == 0

    def test_remove_uninstalls_own_formulas(self, wb, sheet1, sheet2):
        sheet2["B1"] = "=A1 + 1"
        sheet1["B1"] = "=A1"
        wb.remove_worksheet("Sheet2")
        assert [f.source for f in wb.registry] == ["A1"]

    def test_remove_turns_readers_into_ref_errors(self, wb, sheet1, sheet2):
        sheet2["A1"] = 5
        sheet1["B1"] = "=Sheet2!A1 + 1"
        sheet1["C1"] = "=B1 * 2"
        assert wb.value("Sheet1", "C1") == 12

        wb.remove_worksheet("Sheet2")
        assert sheet1["B1"] == FormulaValue("Sheet2!A1 + 1", REF_ERROR)
        assert wb.formula_at("Sheet1", "B1") is None
        # The error flows on to dependents
        assert wb.value("Sheet1", "C1") == REF_ERROR

    def test_readd_sheet_name_does_not_revive_old_references(self, wb, sheet1, sheet2):
        sheet1["B1"] = "=Sheet2!A1"
        wb.remove_worksheet("Sheet2")
        fresh = MemoryGrid()
        wb.add_worksheet("Sheet2", fresh)
        fresh["A1"] = 42
        assert wb.value("Sheet1", "B1") == REF_ERROR

        # Re-entering the formula binds to the new sheet
        sheet1["B1"] = "=Sheet2!A1"
        assert wb.value("Sheet1", "B1") == 42


# ────────────────────────────────────────────────────────────────
# Edit intake
# ────────────────────────────────────────────────────────────────


class TestIntake:
    def test_formula_installed_with_bindings(self, wb, sheet1):
        sheet1["C1"] = "=A1 + Sheet2!B2"
        formula = wb.formula_at("Sheet1", "C1")
        assert formula.source == "A1 + Sheet2!B2"
        assert set(formula.bindings) == {"A1", "Sheet2!B2"}
        assert wb.dependents("Sheet1", "A1") == ["C1"]
        assert wb.dependents("Sheet2", "B2") == ["Sheet1!C1"]

    def test_parse_error_raised_to_writer(self, wb, sheet1):
        with pytest.raises(FormulaParseError):
            sheet1["A1"] = "=1 +"
        assert wb.formula_at("Sheet1", "A1") is None
        # The raw text stays in the grid
        assert sheet1["A1"] == "=1 +"

    def test_unknown_sheet_raised_to_writer(self, wb, sheet1):
        with pytest.raises(UnresolvedSheetError):
            sheet1["A1"] = "=Nope!A1"
        assert wb.formula_at("Sheet1", "A1") is None
        assert len(wb.graph) == 0

    def test_failed_install_still_propagates(self, wb, sheet1):
        sheet1["A1"] = "=1 + 1"
        sheet1["B1"] = "=A1 * 10"
        assert wb.value("Sheet1", "B1") == 20
        with pytest.raises(FormulaParseError):
            sheet1["A1"] = "=1 +"
        # B1 now reads the raw text of A1
        assert wb.value("Sheet1", "B1").code == "#VALUE!"

    def test_invalid_reference_from_custom_compiler(self, sheet1):
        class _Expr:
            references = frozenset({"rate"})

            def evaluate(self, bindings=None):
                return 0

        class _Compiler:
            def compile(self, text):
                return _Expr()

        wb = Workbook(compiler=_Compiler())
        wb.add_worksheet("Sheet1", sheet1)
        with pytest.raises(ReferenceSyntaxError):
            sheet1["A1"] = "=rate"

    def test_formula_value_reentered_is_reinstalled(self, wb, sheet1):
        sheet1["A1"] = 2
        sheet1["B1"] = FormulaValue("A1 + 1")
        assert wb.value("Sheet1", "B1") == 3

    def test_custom_sigil(self, sheet1):
        wb = Workbook(config={"formula_sigil": "+"})
        wb.add_worksheet("Sheet1", sheet1)
        sheet1["A1"] = 4
        sheet1["B1"] = "+A1 * 2"
        sheet1["C1"] = "=A1"
        assert wb.value("Sheet1", "B1") == 8
        assert sheet1["C1"] == "=A1"

    def test_global_variables(self, wb, sheet1):
        wb.compiler.set_variable("rate", 0.5)
        sheet1["A1"] = 10
        sheet1["B1"] = "=A1 * rate"
        assert wb.value("Sheet1", "B1") == 5.0


# ────────────────────────────────────────────────────────────────
# Rectangular notifications
# ────────────────────────────────────────────────────────────────


class TestBatch:
    def test_block_write(self, wb, sheet1):
        sheet1.set_values(0, 0, [[1, "=A0 + 1"], [2, "=A1 + B0"]])
        assert wb.value("Sheet1", "B0") == 2
        assert wb.value("Sheet1", "B1") == 4

    def test_formula_before_its_input_in_block(self, wb, sheet1):
        sheet1.set_values(0, 0, [["=B0 * 2", 5]])
        assert wb.value("Sheet1", "A0") == 10

    def test_every_cell_processed_first_error_raised(self, wb, sheet1):
        with pytest.raises(FormulaParseError):
            sheet1.set_values(0, 0, [["=1 +", "=Nope!A0", "=2 * 3", "=(("]])
        assert wb.value("Sheet1", "C0") == 6
        assert wb.formula_at("Sheet1", "A0") is None
        assert wb.formula_at("Sheet1", "B0") is None
        assert wb.formula_at("Sheet1", "D0") is None

    def test_unregistered_grid_ignored(self, wb):
        stray = MemoryGrid()
        wb.grid_changed(GridChange(stray, 0, 0, 0, 0))
        assert len(wb.registry) == 0

    def test_engine_writes_do_not_reenter(self, wb, sheet1):
        calls = []
        sheet1.add_listener(calls.append)
        sheet1["A1"] = 1
        sheet1["B1"] = "=A1"
        # Host listeners still see the engine's write-back
        assert len(calls) == 3
        assert wb.formula_at("Sheet1", "B1").source == "A1"

    def test_concurrent_writers_serialize_passes(self, wb, sheet1):
        for k in range(1, 6):
            sheet1[f"C{k}"] = f"=A1 * {k} + A2"
        sheet1["D1"] = "=SUM(C1, C2, C3, C4, C5)"

        def write(ref: str, offset: int) -> None:
            for i in range(200):
                sheet1[ref] = offset + i

        threads = [
            threading.Thread(target=write, args=("A1", 0)),
            threading.Thread(target=write, args=("A2", 1000)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        a1, a2 = sheet1["A1"], sheet1["A2"]
        assert (a1, a2) == (199, 1199)
        for k in range(1, 6):
            assert wb.value("Sheet1", f"C{k}") == a1 * k + a2
        assert wb.value("Sheet1", "D1") == 15 * a1 + 5 * a2
        assert wb.engine._active is None
        assert not wb.engine.suppressing


# ────────────────────────────────────────────────────────────────
# Inspection
# ────────────────────────────────────────────────────────────────


class TestInspection:
    def test_address_qualifier_wins(self, wb):
        assert wb.address("Sheet1", "Sheet2!B3") == wb.address("Sheet2", "B3")

    def test_value_of_literal_and_empty(self, wb, sheet1):
        sheet1["A1"] = "hello"
        assert wb.value("Sheet1", "A1") == "hello"
        assert wb.value("Sheet1", "Z99") is None

    def test_dependents_sorted(self, wb, sheet1):
        sheet1["C1"] = "=A1"
        sheet1["B1"] = "=A1"
        assert wb.dependents("Sheet1", "A1") == ["B1", "C1"]

    def test_memory_grid_bounds(self):
        grid = MemoryGrid(n_rows=2, n_cols=2)
        with pytest.raises(IndexError):
            grid.set_value(2, 0, 1)

    def test_memory_grid_rejects_qualified_keys(self):
        with pytest.raises(KeyError):
            MemoryGrid()["Sheet1!A1"] = 1
