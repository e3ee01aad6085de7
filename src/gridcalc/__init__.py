"""gridcalc: formula dependency tracking and incremental recomputation for grids.

Public API::

    from gridcalc import MemoryGrid, Workbook
"""

from gridcalc.address import CellAddress
from gridcalc.config import DEFAULT_CONFIG, load_config
from gridcalc.engine import PassResult, PropagationEngine, PropagationPass
from gridcalc.errors import (
    CellReferenceError,
    CircularReferenceError,
    ConfigError,
    DuplicateSheetError,
    GridcalcError,
    ReferenceSyntaxError,
    UnresolvedSheetError,
)
from gridcalc.formulas import ExpressionCompiler, FormulaParseError, ParseError
from gridcalc.graph import ReferenceGraph
from gridcalc.grid import Grid, GridChange, MemoryGrid
from gridcalc.registry import Formula, FormulaRegistry
from gridcalc.sheets import Worksheet, WorksheetTable
from gridcalc.values import CYCLE_ERROR, REF_ERROR, ErrorValue, FormulaValue
from gridcalc.workbook import Workbook

__all__ = [
    "CYCLE_ERROR",
    "CellAddress",
    "CellReferenceError",
    "CircularReferenceError",
    "ConfigError",
    "DEFAULT_CONFIG",
    "DuplicateSheetError",
    "ErrorValue",
    "ExpressionCompiler",
    "Formula",
    "FormulaParseError",
    "FormulaRegistry",
    "FormulaValue",
    "Grid",
    "GridChange",
    "GridcalcError",
    "MemoryGrid",
    "ParseError",
    "PassResult",
    "PropagationEngine",
    "PropagationPass",
    "REF_ERROR",
    "ReferenceGraph",
    "ReferenceSyntaxError",
    "UnresolvedSheetError",
    "Workbook",
    "Worksheet",
    "WorksheetTable",
    "load_config",
]
