from typing import NamedTuple


class FunctionCall(NamedTuple):
    name: str
    arguments: "tuple[ASTNode, ...]"


class BinaryOperation(NamedTuple):
    left: "ASTNode"
    operator: str
    right: "ASTNode"


class UnaryOperation(NamedTuple):
    operator: str
    operand: "ASTNode"


# Columns and rows are zero-based; the sheet is None when the formula
# doesn't qualify the reference.
class CellReference(NamedTuple):
    column: int
    row: int
    sheet: str | None = None
    absolute_col: bool = False
    absolute_row: bool = False

    def coords(self) -> str:
        # Avoid circular imports
        from excel_extractor.utils import index_to_column

        return f"{index_to_column(self.column)}{self.row + 1}"


class RangeReference(NamedTuple):
    start: CellReference
    end: CellReference

    @property
    def sheet(self) -> str | None:
        return self.start.sheet


class Constant(NamedTuple):
    value: float | int | str


# Type alias for all possible AST nodes
ASTNode = (
    FunctionCall
    | BinaryOperation
    | UnaryOperation
    | CellReference
    | RangeReference
    | Constant
)
