from typing import Any, Callable, Optional, overload

from excel_extractor.errors import EmptyAggregate
from excel_extractor.types import (
    ScalarValue,
    Value,
    aggregate_numbers,
    coerce_to_text,
    non_empty,
)

FormulaFunction = Callable[..., ScalarValue]

FORMULA_FUNCTIONS: dict[str, FormulaFunction] = {}


@overload
def formula_fn(fn: FormulaFunction, *, name: Optional[str] = None) -> FormulaFunction: ...
@overload
def formula_fn(
    fn: None = None, *, name: Optional[str] = None
) -> Callable[[FormulaFunction], FormulaFunction]: ...


def formula_fn(
    fn: FormulaFunction | None = None,
    *,
    name: Optional[str] = None,
) -> Any:
    """Decorator to register a function under its formula name."""

    def decorator(fn: FormulaFunction) -> FormulaFunction:
        if isinstance(fn, staticmethod):
            underlying = fn.__func__
            FORMULA_FUNCTIONS[name or underlying.__name__] = underlying
            return fn  # type: ignore
        FORMULA_FUNCTIONS[name or fn.__name__] = fn
        return fn

    if fn:
        return decorator(fn)
    else:
        return decorator


def flatten_args(*args: Value) -> list[ScalarValue]:
    """Flatten function arguments (scalars and ranges) into a single list.

    Ranges are already row-major, so the order of the result follows the
    argument order and then the reading order within each range.
    """
    result: list[ScalarValue] = []
    for arg in args:
        if isinstance(arg, list):
            result.extend(flatten_args(*arg))
        else:
            result.append(arg)
    return result


class FormulaFunctions:
    """Aggregate functions available in mapping formulas."""

    @formula_fn
    @staticmethod
    def SUM(*args: Value) -> ScalarValue:
        """Sum of the numeric values; 0 when there are none."""
        return sum(aggregate_numbers(flatten_args(*args)))

    @formula_fn
    @staticmethod
    def AVERAGE(*args: Value) -> ScalarValue:
        """Mean of the numeric values, ignoring empty and non-numeric cells."""
        nums = aggregate_numbers(flatten_args(*args))
        if not nums:
            raise EmptyAggregate("AVERAGE found no numeric values")
        return sum(nums) / len(nums)

    @formula_fn(name="AVG")
    @staticmethod
    def AVG(*args: Value) -> ScalarValue:
        return FormulaFunctions.AVERAGE(*args)

    @formula_fn
    @staticmethod
    def COUNT(*args: Value) -> ScalarValue:
        """Number of non-empty values."""
        return len(non_empty(flatten_args(*args)))

    @formula_fn
    @staticmethod
    def MIN(*args: Value) -> ScalarValue:
        nums = aggregate_numbers(flatten_args(*args))
        return min(nums) if nums else None

    @formula_fn
    @staticmethod
    def MAX(*args: Value) -> ScalarValue:
        nums = aggregate_numbers(flatten_args(*args))
        return max(nums) if nums else None

    @formula_fn
    @staticmethod
    def CONCAT(*args: Value) -> ScalarValue:
        """Non-empty values as text, separated by a space."""
        return " ".join(coerce_to_text(v) for v in non_empty(flatten_args(*args)))

    @formula_fn(name="JOIN")
    @staticmethod
    def JOIN(*args: Value) -> ScalarValue:
        return FormulaFunctions.CONCAT(*args)
