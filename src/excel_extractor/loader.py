"""Turns workbook files into CellGrids.

Only cached cell values are read: formulas stored in the workbook are not
re-evaluated, the value Excel last computed for them is used instead.
"""

import logging
from os import PathLike
from pathlib import Path
from typing import IO, Any, Union

import pandas as pd
from openpyxl import load_workbook
from openpyxl.workbook.workbook import Workbook

from excel_extractor.errors import WorkbookLoadError
from excel_extractor.grid import CellGrid

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xltx", ".xltm"}
CSV_SUFFIXES = {".csv"}

Source = Union[str, PathLike, IO[bytes]]


def grid_from_workbook(workbook: Workbook, identifier: str | None = None) -> CellGrid:
    """Copy the values of an open openpyxl workbook into a CellGrid.

    Rows start at A1, so leading empty rows and columns are kept and cell
    addresses line up with the ones shown in Excel.
    """
    sheets: dict[str, list[list[Any]]] = {}
    for ws in workbook.worksheets:
        rows = [list(row) for row in ws.iter_rows(min_row=1, min_col=1, values_only=True)]
        # Trailing empty rows carry no data
        while rows and all(v is None for v in rows[-1]):
            rows.pop()
        sheets[ws.title] = rows
    return CellGrid(sheets, identifier=identifier)


def _source_name(source: Source, identifier: str | None) -> str:
    if identifier is not None:
        return identifier
    if isinstance(source, (str, PathLike)):
        return Path(source).name
    return getattr(source, "name", None) or "<workbook>"


def load_grid(source: Source, identifier: str | None = None) -> CellGrid:
    """Parse an .xlsx or .csv workbook into a CellGrid.

    File-like sources are read as .xlsx unless `identifier` ends in .csv.
    A CSV file becomes a single sheet named after the file.
    """
    name = _source_name(source, identifier)
    suffix = Path(name).suffix.lower()
    logger.debug("Loading workbook %s", name)

    try:
        if suffix in CSV_SUFFIXES:
            frame = pd.read_csv(source, header=None)
            return CellGrid.from_dataframes({Path(name).stem: frame}, identifier=name)
        if suffix and suffix not in EXCEL_SUFFIXES:
            raise WorkbookLoadError(f"Unsupported workbook format: {suffix}")
        workbook = load_workbook(source, read_only=True, data_only=True)
        try:
            return grid_from_workbook(workbook, identifier=name)
        finally:
            workbook.close()
    except WorkbookLoadError:
        raise
    except Exception as e:
        raise WorkbookLoadError(f"Failed to parse workbook {name}: {e}") from e
