"""Cell and range reference resolution.

A reference token looks like ``[Sheet!]A1[:B7]``. The sheet qualifier may be
bare (``Sheet1!A1``), single-quoted (``'P&L Summary'!B20``) or double-quoted
(``"Sheet1"!B2``). Unqualified references resolve against the sheet the
formula is declared on, or the first sheet of the workbook when the formula
has none.
"""

from typing import Iterator

from excel_extractor import ast
from excel_extractor.errors import (
    FormulaError,
    InvalidReference,
    NoGridLoaded,
)
from excel_extractor.grid import CellAddress, CellGrid, CellRange
from excel_extractor.parser import parse_formula
from excel_extractor.types import ScalarValue

Target = CellAddress | CellRange


def parse_reference(token: str, current_sheet: str | None = None) -> Target:
    """Parse a single reference token into a resolved address or range."""
    try:
        node = parse_formula(token)
    except FormulaError as e:
        raise InvalidReference(f"Malformed reference '{token}': {e}") from e
    if not isinstance(node, (ast.CellReference, ast.RangeReference)):
        raise InvalidReference(f"'{token}' is not a cell or range reference")
    return bind(node, current_sheet)


def bind(
    node: ast.CellReference | ast.RangeReference, current_sheet: str | None
) -> Target:
    """Attach a sheet to an AST reference node."""
    if isinstance(node, ast.RangeReference):
        return CellRange.between(
            _bind_cell(node.start, current_sheet), _bind_cell(node.end, current_sheet)
        )
    return _bind_cell(node, current_sheet)


def _bind_cell(node: ast.CellReference, current_sheet: str | None) -> CellAddress:
    sheet = node.sheet if node.sheet is not None else current_sheet
    if sheet is None:
        raise InvalidReference(
            f"No sheet to resolve '{node.coords()}' against: qualify it with a sheet name"
        )
    return CellAddress(sheet=sheet, column=node.column, row=node.row)


def iter_references(
    node: ast.ASTNode,
) -> Iterator[ast.CellReference | ast.RangeReference]:
    """Yield the reference nodes of an AST, left to right."""
    if isinstance(node, (ast.CellReference, ast.RangeReference)):
        yield node
    elif isinstance(node, ast.BinaryOperation):
        yield from iter_references(node.left)
        yield from iter_references(node.right)
    elif isinstance(node, ast.UnaryOperation):
        yield from iter_references(node.operand)
    elif isinstance(node, ast.FunctionCall):
        for arg in node.arguments:
            yield from iter_references(arg)


def collect_references(formula: str, current_sheet: str | None = None) -> list[Target]:
    """Resolved references of a formula, in order of appearance.

    Formulas without a leading '=' are constants and reference nothing.
    """
    if not formula.strip().startswith("="):
        return []
    return [bind(node, current_sheet) for node in iter_references(parse_formula(formula))]


class Resolver:
    """Reads reference targets out of a CellGrid."""

    def __init__(self, grid: CellGrid | None, default_sheet: str | None = None):
        self.grid = grid
        self._default_sheet = default_sheet

    def _require_grid(self) -> CellGrid:
        if self.grid is None:
            raise NoGridLoaded("No workbook is loaded")
        return self.grid

    @property
    def default_sheet(self) -> str:
        grid = self._require_grid()
        sheet = self._default_sheet or grid.first_sheet
        if sheet is None:
            raise NoGridLoaded("The loaded workbook has no sheets")
        return sheet

    def target(self, node: ast.CellReference | ast.RangeReference) -> Target:
        if node.sheet is not None:
            return bind(node, node.sheet)
        return bind(node, self.default_sheet)

    def read_cell(self, address: CellAddress) -> ScalarValue:
        return self._require_grid().value(address)

    def read_range(self, cell_range: CellRange) -> list[ScalarValue]:
        return self._require_grid().values(cell_range)

    def read(self, target: Target) -> ScalarValue | list[ScalarValue]:
        if isinstance(target, CellRange):
            return self.read_range(target)
        return self.read_cell(target)

    def resolve(self, token: str) -> ScalarValue | list[ScalarValue]:
        """Parse a reference token and read its value(s)."""
        self._require_grid()
        return self.read(parse_reference(token, self.default_sheet))
