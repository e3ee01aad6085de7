"""Lark-based parser for Excel-like formula expressions.

Formula text reaches the parser with the ``=`` sigil already stripped.

Supports:
- Cell references: ``F2``, ``AA10``, ``XFD0`` (any number of letters)
- Cross-sheet cell references: ``Sheet1!A1`` or ``'My Sheet'!A1``
- Global variable names bound with ``set_variable``
- Arithmetic, comparisons, ``&`` concatenation, function calls, postfix percent
"""

from __future__ import annotations

from lark import Lark, Token, Tree, Visitor

from gridcalc.formulas.errors import FormulaParseError

# LALR(1) grammar.
# Operator precedence (lowest to highest):
#   1. Comparison: > < >= <= = <>
#   2. Concatenation: &
#   3. Addition/subtraction: + -
#   4. Multiplication/division: * /
#   5. Unary plus/minus: + -
#   6. Exponentiation: ^ (right-associative)
#   7. Postfix percent: %  (3% = 0.03)
#   8. Atoms: number, bool, string, function call, reference, parenthesized expr
GRAMMAR = r"""
start: expr

?expr: comparison

?comparison: concat
    | comparison ">" concat   -> gt
    | comparison "<" concat   -> lt
    | comparison ">=" concat  -> gte
    | comparison "<=" concat  -> lte
    | comparison "=" concat   -> eq
    | comparison "<>" concat  -> neq

?concat: addition
    | concat "&" addition  -> concat

?addition: multiplication
    | addition "+" multiplication  -> add
    | addition "-" multiplication  -> sub

?multiplication: unary
    | multiplication "*" unary  -> mul
    | multiplication "/" unary  -> div

?unary: exponentiation
    | "-" unary  -> neg
    | "+" unary  -> pos

?exponentiation: postfix
    | postfix "^" unary  -> pow

?postfix: atom
    | postfix "%"  -> percent

?atom: NUMBER                   -> number
    | BOOL                      -> boolean
    | ESCAPED_STRING            -> string
    | NAME "(" args ")"         -> func_call
    | QUOTED_SHEET_REF          -> cell_ref
    | SHEET_REF                 -> cell_ref
    | CELL_REF                  -> cell_ref
    | NAME                      -> name_ref
    | "(" expr ")"

args: expr ("," expr)*
    |

BOOL.2: "TRUE" | "FALSE"

// Cross-sheet cell ref: Sheet1!A1 (no spaces in unquoted form)
SHEET_REF.3: /[A-Za-z_][A-Za-z0-9_]*!\$?[A-Z]+\$?[0-9]+/

// Quoted cross-sheet cell ref: 'My Sheet'!A1
QUOTED_SHEET_REF.3: /'[^']+'!\$?[A-Z]+\$?[0-9]+/

// In-sheet cell ref: A1, F2, AA10 (uppercase only)
CELL_REF.2: /\$?[A-Z]+\$?[0-9]+/

NAME.1: /[A-Za-z_][A-Za-z0-9_.]*/

%import common.NUMBER
%import common.ESCAPED_STRING
%import common.WS
%ignore WS
"""

_parser = Lark(GRAMMAR, parser="lalr", start="start")


def parse_formula(text: str) -> Tree:
    """Parse formula text (sigil already stripped) into a Lark Tree.

    Args:
        text: The formula text, e.g. ``"Sheet2!A1 * (1 - B3)"``.

    Returns:
        A Lark parse tree.

    Raises:
        FormulaParseError: If the formula has invalid syntax.
    """
    if not text.strip():
        raise FormulaParseError("Empty formula", position=0)
    try:
        return _parser.parse(text)
    except Exception as exc:
        # Extract position info from Lark exception if available
        pos = getattr(exc, "column", None)
        raise FormulaParseError(str(exc), position=pos) from exc


class _RefCollector(Visitor):
    """Visitor that collects cell references and global names from a tree."""

    def __init__(self) -> None:
        self.cell_refs: set[str] = set()
        self.names: set[str] = set()

    def cell_ref(self, tree: Tree) -> None:
        token = tree.children[0]
        self.cell_refs.add(str(token))

    def name_ref(self, tree: Tree) -> None:
        token = tree.children[0]
        if isinstance(token, Token):
            self.names.add(str(token))


def extract_refs(tree: Tree) -> tuple[set[str], set[str]]:
    """Extract references from a parsed formula tree.

    Returns:
        Tuple of ``(cell_refs, names)``.  Cell references are returned as
        written (``"Sheet2!A1"``, ``"'My Sheet'!B2"``, ``"C3"``); names are
        global variable names.
    """
    collector = _RefCollector()
    collector.visit(tree)
    return collector.cell_refs, collector.names
