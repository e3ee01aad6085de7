"""Textual cell references: ``[Sheet!]ColumnLetters Digits`` <-> CellAddress.

Columns use bijective base-26 (A=1 ... Z=26, AA=27), shifted to a zero-based
index, so ``A`` is column 0 and ``AA`` is column 26.  Row digits are the
zero-based row index as written: ``A0`` is the first row, ``A1`` the second.
"""

from __future__ import annotations

import re

from gridcalc.address import CellAddress
from gridcalc.errors import ReferenceSyntaxError
from gridcalc.sheets import WorksheetTable

_REF_RE = re.compile(
    r"^(?:(?:'(?P<quoted>[^']+)'|(?P<sheet>[^!']+))!)?"
    r"\$?(?P<col>[A-Za-z]+)\$?(?P<row>[0-9]+)$"
)

# Sheet names that can be written without quotes
_PLAIN_SHEET_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_COL_RE = re.compile(r"^[A-Za-z]+$")


def col_letter_to_index(letters: str) -> int:
    """Convert column letter(s) to 0-based index.  A=0, B=1, ..., Z=25, AA=26."""
    if not letters or not _COL_RE.fullmatch(letters):
        raise ValueError(f"Invalid column letters: {letters!r}")
    idx = 0
    for ch in letters.upper():
        idx = idx * 26 + (ord(ch) - ord("A") + 1)
    return idx - 1


def index_to_col_letter(idx: int) -> str:
    """Convert 0-based column index to letter(s).  0=A, 25=Z, 26=AA."""
    if idx < 0:
        raise ValueError(f"Column index must be non-negative: {idx}")
    result = ""
    n = idx + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        result = chr(65 + rem) + result
    return result


def split_ref(name: str) -> tuple[str | None, str, str]:
    """Split a reference into ``(sheet | None, column_letters, row_digits)``.

    Examples:
        ``"B7"`` -> ``(None, "B", "7")``
        ``"Sheet2!AB12"`` -> ``("Sheet2", "AB", "12")``
        ``"'My Sheet'!A0"`` -> ``("My Sheet", "A", "0")``

    Raises:
        ReferenceSyntaxError: If *name* is not a cell reference.
    """
    m = _REF_RE.match(name.strip())
    if not m:
        raise ReferenceSyntaxError(name)
    sheet = m.group("quoted") or m.group("sheet")
    return sheet, m.group("col").upper(), m.group("row")


def parse_ref(name: str) -> tuple[str | None, int, int]:
    """Parse a reference into ``(sheet | None, row, column)``."""
    sheet, letters, digits = split_ref(name)
    return sheet, int(digits), col_letter_to_index(letters)


def resolve(name: str, defining: CellAddress, sheets: WorksheetTable) -> CellAddress:
    """Resolve a variable name used in a formula at *defining*.

    Without a sheet qualifier the reference points into the defining cell's
    own sheet.  Qualified names are looked up case-insensitively.

    Raises:
        ReferenceSyntaxError: If *name* is not a cell reference.
        UnresolvedSheetError: If the sheet qualifier is not registered.
    """
    sheet_name, row, column = parse_ref(name)
    if sheet_name is None:
        return CellAddress(defining.sheet, row, column)
    return CellAddress(sheets.by_name(sheet_name).handle, row, column)


def format_ref(
    address: CellAddress,
    sheets: WorksheetTable | None = None,
    relative_to: int | None = None,
) -> str:
    """Render *address* as text.

    The sheet qualifier is omitted when *sheets* is not given or when the
    address lives on the *relative_to* sheet.  Unknown handles render as
    ``#<handle>``.
    """
    ref = f"{index_to_col_letter(address.column)}{address.row}"
    if sheets is None or address.sheet == relative_to:
        return ref
    sheet = sheets.get(address.sheet)
    if sheet is None:
        return f"#{address.sheet}!{ref}"
    if _PLAIN_SHEET_RE.match(sheet.name):
        return f"{sheet.name}!{ref}"
    return f"'{sheet.name}'!{ref}"
