from typing import Any, Iterator, Mapping, NamedTuple, Sequence

import pandas as pd
from rapidfuzz import fuzz, process

from excel_extractor.errors import InvalidReference, SheetNotFound
from excel_extractor.types import ScalarValue, normalize_cell_value
from excel_extractor.utils import index_to_column, quote_sheet_name

# Minimum rapidfuzz ratio for a sheet name to be offered as a suggestion
SHEET_SUGGESTION_CUTOFF = 80


class CellAddress(NamedTuple):
    """A resolved cell position; column and row are zero-based."""

    sheet: str
    column: int
    row: int

    def __str__(self) -> str:
        return f"{quote_sheet_name(self.sheet)}!{index_to_column(self.column)}{self.row + 1}"


class CellRange(NamedTuple):
    start: CellAddress
    end: CellAddress

    @classmethod
    def between(cls, start: CellAddress, end: CellAddress) -> "CellRange":
        """Build a range from two corners given in any order."""
        if start.sheet != end.sheet:
            raise InvalidReference(
                f"Range must be on the same sheet: {start.sheet} vs {end.sheet}"
            )
        return cls(
            start=CellAddress(
                start.sheet, min(start.column, end.column), min(start.row, end.row)
            ),
            end=CellAddress(
                start.sheet, max(start.column, end.column), max(start.row, end.row)
            ),
        )

    @property
    def sheet(self) -> str:
        return self.start.sheet

    def cells(self) -> Iterator[CellAddress]:
        """Addresses in row-major order: left to right, then top to bottom."""
        for row in range(self.start.row, self.end.row + 1):
            for col in range(self.start.column, self.end.column + 1):
                yield CellAddress(self.sheet, col, row)

    def __str__(self) -> str:
        end = f"{index_to_column(self.end.column)}{self.end.row + 1}"
        return f"{self.start}:{end}"


class CellGrid:
    """In-memory workbook: named sheets of (possibly jagged) value rows.

    Values are normalized on the way in so that every cell holds one of the
    CellType variants. Reads outside of the stored rows yield None.
    """

    def __init__(
        self,
        sheets: Mapping[str, Sequence[Sequence[Any]]],
        identifier: str | None = None,
    ) -> None:
        self.identifier = identifier
        self.sheets: dict[str, list[list[ScalarValue]]] = {
            name: [[normalize_cell_value(v) for v in row] for row in rows]
            for name, rows in sheets.items()
        }

    @classmethod
    def from_dataframes(
        cls,
        frames: Mapping[str, pd.DataFrame],
        identifier: str | None = None,
        include_header: bool = False,
    ) -> "CellGrid":
        """Build a grid from DataFrames, one per sheet.

        With `include_header`, the column labels become the first row, the
        way they'd appear in the spreadsheet the frame was read from.
        """
        sheets: dict[str, list[list[Any]]] = {}
        for name, frame in frames.items():
            rows = frame.astype(object).values.tolist()
            if include_header:
                rows.insert(0, list(frame.columns))
            sheets[name] = rows
        return cls(sheets, identifier=identifier)

    @property
    def sheet_names(self) -> list[str]:
        return list(self.sheets.keys())

    @property
    def first_sheet(self) -> str | None:
        return next(iter(self.sheets), None)

    def has_sheet(self, name: str) -> bool:
        return name in self.sheets

    def sheet(self, name: str) -> list[list[ScalarValue]]:
        if name not in self.sheets:
            raise SheetNotFound(name, suggestion=self.suggest_sheet(name))
        return self.sheets[name]

    def suggest_sheet(self, name: str) -> str | None:
        match = process.extractOne(
            name,
            self.sheet_names,
            scorer=fuzz.ratio,
            score_cutoff=SHEET_SUGGESTION_CUTOFF,
        )
        return match[0] if match else None

    def value(self, address: CellAddress) -> ScalarValue:
        rows = self.sheet(address.sheet)
        if address.row >= len(rows):
            return None
        row = rows[address.row]
        if address.column >= len(row):
            return None
        return row[address.column]

    def values(self, cell_range: CellRange) -> list[ScalarValue]:
        # Fail on unknown sheets even for ranges entirely outside the data
        self.sheet(cell_range.sheet)
        return [self.value(address) for address in cell_range.cells()]

    def __repr__(self) -> str:
        return f"CellGrid(identifier={self.identifier!r}, sheets={self.sheet_names!r})"
