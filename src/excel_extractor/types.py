import math
import re
from datetime import date, datetime, time
from decimal import Decimal
from enum import IntEnum, auto
from typing import Any, Iterable, Union

import numpy as np
from openpyxl.cell.rich_text import CellRichText

from excel_extractor.errors import CoercionError


class CellType(IntEnum):
    EMPTY = auto()
    NUMBER = auto()
    DATE = auto()
    TEXT = auto()
    BOOLEAN = auto()


# Raw values as they sit in a Cell Grid, after normalization.
ScalarValue = None | int | float | str | bool | datetime
# Evaluator results can additionally be a flattened range.
Value = Union[ScalarValue, "list[ScalarValue]"]

# Accounting-style numbers: "$1,200.50", "(30)", "€ 12"
NUMERIC_NOISE_RE = re.compile(r"[$€£¥,\s()]")


def cell_type(value: ScalarValue) -> CellType:
    """Return the CellType for a normalized cell value."""
    if value is None:
        return CellType.EMPTY
    if isinstance(value, bool):
        return CellType.BOOLEAN
    if isinstance(value, (int, float)):
        return CellType.NUMBER
    if isinstance(value, str):
        return CellType.TEXT
    if isinstance(value, datetime):
        return CellType.DATE
    raise CoercionError(f"Unknown cell type for value: {value!r}")


def normalize_cell_value(value: Any) -> ScalarValue:
    """Convert a value coming from a workbook parser into a ScalarValue.

    Workbook parsers hand us numpy scalars (pandas), Decimals, plain dates,
    rich text and NaN placeholders for empty cells. Everything downstream
    only deals with the five CellType variants.
    """
    if value is None:
        return None
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, (int, float, str)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        # pandas.NaT is a datetime subclass
        if value != value:
            return None
        if hasattr(value, "to_pydatetime"):
            value = value.to_pydatetime()
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, time):
        return value.isoformat()
    if isinstance(value, CellRichText):
        return str(value)
    return str(value)


def is_empty(value: Any) -> bool:
    return value is None or value == ""


def parse_number(val: str) -> int | float:
    is_float = ("." in val) or ("e" in val) or ("E" in val)
    return float(val) if is_float else int(val)


def parse_numeric_text(text: str) -> int | float | None:
    """Parse formatted numeric text, returning None if it isn't a number.

    Currency symbols, thousands separators and whitespace are stripped, and
    parentheses mark a negative amount.
    """
    negative = "(" in text and ")" in text
    cleaned = NUMERIC_NOISE_RE.sub("", text).strip()
    # float() and int() accept digit separators, spreadsheet text does not
    if not cleaned or "_" in cleaned:
        return None
    try:
        number = parse_number(cleaned)
    except ValueError:
        return None
    if isinstance(number, float) and not math.isfinite(number):
        return None
    return -number if negative else number


def as_number(value: Any) -> int | float | None:
    """Return the numeric reading of a value, or None if it has none.

    Booleans and dates are not numbers here: a formula mixing them into
    arithmetic is treated as a bad mapping rather than silently converted.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        return value
    if isinstance(value, str):
        return parse_numeric_text(value)
    return None


def format_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def coerce_to_text(value: ScalarValue) -> str:
    """Plain-string rendering of a cell value."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return value.date().isoformat()
    raise CoercionError(f"Cannot convert {value!r} to text")


# Aggregation helpers, which skip empty and non-numeric values
def aggregate_numbers(values: Iterable[ScalarValue]) -> list[int | float]:
    result: list[int | float] = []
    for val in values:
        number = as_number(val)
        if number is not None:
            result.append(number)
    return result


def non_empty(values: Iterable[ScalarValue]) -> list[ScalarValue]:
    return [val for val in values if not is_empty(val)]
