"""Coercion of evaluator results into schema field types.

Every failure is raised as a CoercionError so that callers can attach it to
the (workbook, field) pair it came from. Nothing here defaults silently: a
value that doesn't fit its field is reported, never replaced.
"""

import logging
import math
from datetime import date, datetime
from typing import Any, NamedTuple, Optional

import pandas as pd
from openpyxl.utils.datetime import WINDOWS_EPOCH, from_excel
from typing_extensions import assert_never

from excel_extractor.errors import CoercionError, RequiredFieldMissing
from excel_extractor.interpreter import ComputedResult
from excel_extractor.models import FieldType, SchemaField
from excel_extractor.types import (
    ScalarValue,
    as_number,
    coerce_to_text,
    parse_numeric_text,
)

logger = logging.getLogger(__name__)

# A serial within this many days below a whole day is a midnight that
# floating-point arithmetic pushed just short of the intended date.
DEFAULT_DRIFT_TOLERANCE = 1e-6

TRUE_TOKENS = {"true", "yes", "1"}
FALSE_TOKENS = {"false", "no", "0"}


class FieldOutcome(NamedTuple):
    """Result of producing one field of one record."""

    field: SchemaField
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def is_blank(value: ScalarValue) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def serial_to_date(
    serial: float, drift_tolerance: float = DEFAULT_DRIFT_TOLERANCE
) -> date:
    """Calendar date of an Excel serial day number, dropping the time of day."""
    if not math.isfinite(serial) or serial < 0:
        raise CoercionError(f"Invalid serial date: {serial}")
    whole_days = math.floor(serial + drift_tolerance)
    try:
        return from_excel(whole_days, epoch=WINDOWS_EPOCH).date()
    except (OverflowError, ValueError) as e:
        raise CoercionError(f"Serial date {serial} is out of range") from e


def to_integer(value: ScalarValue) -> int:
    number = as_number(value)
    if number is None or not math.isfinite(number):
        raise CoercionError(f"Cannot convert {value!r} to an integer")
    # Round half up, so 2.5 -> 3 and -2.5 -> -2
    return math.floor(number + 0.5)


def to_number(value: ScalarValue) -> int | float:
    number = as_number(value)
    if number is None:
        raise CoercionError(f"Cannot convert {value!r} to a number")
    return number


def to_date(
    value: ScalarValue, drift_tolerance: float = DEFAULT_DRIFT_TOLERANCE
) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise CoercionError(f"Cannot convert boolean {value} to a date")
    if isinstance(value, (int, float)):
        return serial_to_date(value, drift_tolerance)
    if isinstance(value, str):
        text = value.strip()
        serial = parse_numeric_text(text)
        if serial is not None:
            return serial_to_date(serial, drift_tolerance)
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            parsed = pd.to_datetime(text)
        except (ValueError, OverflowError) as e:
            raise CoercionError(f"Cannot parse date from {value!r}") from e
        if pd.isna(parsed):
            raise CoercionError(f"Cannot parse date from {value!r}")
        return parsed.date()
    raise CoercionError(f"Cannot convert {value!r} to a date")


def to_boolean(value: ScalarValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        token = value.strip().lower()
        if token in TRUE_TOKENS:
            return True
        if token in FALSE_TOKENS:
            return False
    raise CoercionError(f"Cannot convert {value!r} to a boolean")


def to_enum(value: ScalarValue, options: tuple[str, ...]) -> str:
    text = coerce_to_text(value)
    if text not in options:
        raise CoercionError(
            f"Value {text!r} is not one of the allowed options: {', '.join(options)}"
        )
    return text


def coerce_value(
    value: ScalarValue,
    field: SchemaField,
    drift_tolerance: float = DEFAULT_DRIFT_TOLERANCE,
) -> Any:
    """Convert a raw evaluator value into the type declared by `field`."""
    if is_blank(value):
        if field.required:
            raise RequiredFieldMissing(f"Required field '{field.name}' has no value")
        return None

    match field.type:
        case FieldType.TEXT:
            return coerce_to_text(value)
        case FieldType.INTEGER:
            return to_integer(value)
        case FieldType.NUMBER | FieldType.CURRENCY:
            return to_number(value)
        case FieldType.DATE:
            return to_date(value, drift_tolerance)
        case FieldType.BOOLEAN:
            return to_boolean(value)
        case FieldType.ENUM:
            return to_enum(value, field.enum_options or ())
        case _:
            assert_never(field.type)


def coerce_result(
    result: ComputedResult,
    field: SchemaField,
    drift_tolerance: float = DEFAULT_DRIFT_TOLERANCE,
) -> FieldOutcome:
    """Fold an evaluation result and its coercion into one field outcome."""
    if not result.is_valid:
        return FieldOutcome(field=field, error=result.error)
    try:
        value = coerce_value(result.value, field, drift_tolerance)
    except CoercionError as e:
        logger.debug("Field %s rejected %r: %s", field.name, result.value, e)
        return FieldOutcome(field=field, error=str(e))
    return FieldOutcome(field=field, value=value)
