from excel_extractor.errors import DivisionByZero, TypeMismatch
from excel_extractor.types import CellType, ScalarValue, as_number, cell_type

Number = int | float


def require_number(value: ScalarValue, operator: str) -> Number:
    """Return the numeric reading of an operand or fail the formula.

    Operands are never defaulted to zero: an empty cell or a label under a
    bad mapping would otherwise produce a plausible but wrong number.
    """
    number = as_number(value)
    if number is None:
        kind = cell_type(value).name.lower()
        if cell_type(value) == CellType.EMPTY:
            raise TypeMismatch(f"Operator '{operator}' applied to an empty value")
        raise TypeMismatch(
            f"Operator '{operator}' requires numbers, got {kind} {value!r}"
        )
    return number


def add(left: ScalarValue, right: ScalarValue) -> Number:
    return require_number(left, "+") + require_number(right, "+")


def subtract(left: ScalarValue, right: ScalarValue) -> Number:
    return require_number(left, "-") - require_number(right, "-")


def multiply(left: ScalarValue, right: ScalarValue) -> Number:
    return require_number(left, "*") * require_number(right, "*")


def divide(left: ScalarValue, right: ScalarValue) -> Number:
    numerator = require_number(left, "/")
    denominator = require_number(right, "/")
    if denominator == 0:
        raise DivisionByZero("Division by zero")
    return numerator / denominator


def negate(value: ScalarValue) -> Number:
    return -require_number(value, "-")


def identity(value: ScalarValue) -> Number:
    return require_number(value, "+")


BINARY_OPERATORS = {
    "+": add,
    "-": subtract,
    "*": multiply,
    "/": divide,
}

UNARY_OPERATORS = {
    "-": negate,
    "+": identity,
}
