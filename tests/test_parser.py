import pytest

from excel_extractor.ast import (
    BinaryOperation,
    CellReference,
    Constant,
    FunctionCall,
    RangeReference,
    UnaryOperation,
)
from excel_extractor.errors import ParseError, TokenizerError
from excel_extractor.parser import parse_formula


class TestFormulaParser:
    def test_simple_arithmetic(self):
        ast = parse_formula("=1 + 2")
        assert isinstance(ast, BinaryOperation)
        assert ast.operator == "+"
        assert ast.left == Constant(1)
        assert ast.right == Constant(2)

        ast = parse_formula("=(2 + 3) * 4")
        assert isinstance(ast, BinaryOperation)
        assert ast.operator == "*"
        assert ast.right == Constant(4)
        assert isinstance(ast.left, BinaryOperation)
        assert ast.left.operator == "+"

    def test_operator_precedence(self):
        ast = parse_formula("=1 + 2 * 3")
        assert isinstance(ast, BinaryOperation)
        assert ast.operator == "+"
        assert isinstance(ast.right, BinaryOperation)
        assert ast.right.operator == "*"

    def test_left_associativity(self):
        ast = parse_formula("=8 - 4 - 2")
        assert isinstance(ast, BinaryOperation)
        assert ast.right == Constant(2)
        assert isinstance(ast.left, BinaryOperation)
        assert ast.left.left == Constant(8)

    def test_unary_minus(self):
        ast = parse_formula("=-A1 * 2")
        assert isinstance(ast, BinaryOperation)
        assert ast.left == UnaryOperation("-", CellReference(column=0, row=0))

        ast = parse_formula("=--3")
        assert ast == UnaryOperation("-", UnaryOperation("-", Constant(3)))

    def test_numbers(self):
        assert parse_formula("=3") == Constant(3)
        assert parse_formula("=2.5") == Constant(2.5)
        assert parse_formula("=1e3") == Constant(1000.0)

    def test_string_literal(self):
        assert parse_formula('="hello"') == Constant("hello")

    def test_cell_references(self):
        ast = parse_formula("=B2")
        assert ast == CellReference(column=1, row=1)

        ast = parse_formula("=$AA$10")
        assert isinstance(ast, CellReference)
        assert ast.column == 26
        assert ast.row == 9
        assert ast.absolute_col and ast.absolute_row

        assert parse_formula("=b2") == CellReference(column=1, row=1)

    def test_sheet_references(self):
        assert parse_formula("=Sheet1!B2") == CellReference(1, 1, sheet="Sheet1")
        assert parse_formula("='Sheet1'!B2") == CellReference(1, 1, sheet="Sheet1")
        assert parse_formula('="Sheet1"!B2') == CellReference(1, 1, sheet="Sheet1")
        assert parse_formula("='P&L Summary'!B20") == CellReference(
            1, 19, sheet="P&L Summary"
        )

    def test_ranges(self):
        ast = parse_formula("=A1:B3")
        assert ast == RangeReference(CellReference(0, 0), CellReference(1, 2))
        assert ast.sheet is None

        ast = parse_formula("=Sheet4!B23:Sheet4!B25")
        assert ast == RangeReference(
            CellReference(1, 22, sheet="Sheet4"), CellReference(1, 24, sheet="Sheet4")
        )

        ast = parse_formula("='My Sheet'!A1:A3")
        assert isinstance(ast, RangeReference)
        assert ast.end.sheet == "My Sheet"
        assert ast.sheet == "My Sheet"

    def test_range_across_sheets(self):
        with pytest.raises(ParseError, match="same sheet"):
            parse_formula("=Sheet1!A1:Sheet2!A3")

    def test_function_calls(self):
        ast = parse_formula("=sum(A1:A3, 4)")
        assert isinstance(ast, FunctionCall)
        assert ast.name == "SUM"
        assert len(ast.arguments) == 2
        assert isinstance(ast.arguments[0], RangeReference)
        assert ast.arguments[1] == Constant(4)

        ast = parse_formula("=MAX(SUM(A1:A2), AVG(B1:B2)) / 2")
        assert isinstance(ast, BinaryOperation)
        assert isinstance(ast.left, FunctionCall)
        assert [arg.name for arg in ast.left.arguments] == ["SUM", "AVG"]

        assert parse_formula("=COUNT()") == FunctionCall("COUNT", ())

    def test_without_leading_equals(self):
        assert parse_formula("A1 + 1") == parse_formula("=A1 + 1")

    def test_errors(self):
        with pytest.raises(ParseError, match="Empty formula"):
            parse_formula("=")

        with pytest.raises(ParseError) as exc_info:
            parse_formula("=(1 + 2")
        assert exc_info.value.expected == ")"

        with pytest.raises(ParseError) as exc_info:
            parse_formula("=A1 B1")
        assert exc_info.value.expected == "end of formula"
        assert exc_info.value.position == 4

        with pytest.raises(ParseError, match="Invalid cell reference"):
            parse_formula("=Revenue")

        with pytest.raises(ParseError):
            parse_formula("=SUM(A1,")

        with pytest.raises(ParseError):
            parse_formula("=1 +")

        with pytest.raises(ParseError):
            parse_formula("=A0")

        with pytest.raises(TokenizerError):
            parse_formula("=A1 % 2")
