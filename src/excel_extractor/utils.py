import re

from openpyxl.utils import column_index_from_string, get_column_letter

import excel_extractor.ast as ast

# Constants
CELL_REF_REGEX = re.compile(r"(\$?)([A-Za-z]{1,3})(\$?)(\d+)$")


def column_to_index(letters: str) -> int:
    """Zero-based index of a column given its letters: A -> 0, AA -> 26."""
    try:
        return column_index_from_string(letters.upper()) - 1
    except ValueError as e:
        raise ValueError(f"Invalid column letters: {letters}") from e


def index_to_column(index: int) -> str:
    """Column letters for a zero-based index: 0 -> A, 26 -> AA."""
    return get_column_letter(index + 1)


def extract_cell_reference(
    ref: str, sheet: str | None = None
) -> ast.CellReference | None:
    """Parse an A1-style cell token, returning None if invalid."""
    match = CELL_REF_REGEX.match(ref)
    if not match:
        return None
    col_dollar, col, row_dollar, row = match.groups()
    row_number = int(row)
    if row_number < 1:
        return None
    try:
        column = column_to_index(col)
    except ValueError:
        return None
    return ast.CellReference(
        column=column,
        row=row_number - 1,
        sheet=sheet,
        absolute_col=bool(col_dollar),
        absolute_row=bool(row_dollar),
    )


def quote_sheet_name(sheet: str) -> str:
    """Quote a sheet name for use in a formula when it needs it."""
    if re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", sheet):
        return sheet
    return "'" + sheet.replace("'", "''") + "'"

