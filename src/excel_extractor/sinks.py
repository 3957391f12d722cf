"""Destinations for extracted records.

A sink accepts one record at a time and reports failure synchronously by
raising SinkError. The batch processor turns that into an item error.
"""

import logging
from typing import Any, Callable, Protocol

import pandas as pd

from excel_extractor.errors import SinkError
from excel_extractor.models import ExtractedRecord, Schema

logger = logging.getLogger(__name__)


class RecordSink(Protocol):
    def save(self, record: ExtractedRecord) -> None: ...


class InMemorySink:
    def __init__(self):
        self.records: list[ExtractedRecord] = []

    def save(self, record: ExtractedRecord) -> None:
        self.records.append(record)


class CallableSink:
    """Adapts a plain function into a sink.

    Any exception the function raises is reported as a SinkError carrying the
    original message.
    """

    def __init__(self, fn: Callable[[ExtractedRecord], Any]):
        self.fn = fn

    def save(self, record: ExtractedRecord) -> None:
        try:
            self.fn(record)
        except SinkError:
            raise
        except Exception as e:
            raise SinkError(str(e)) from e


class DataFrameSink:
    """Collects records into one DataFrame per schema table.

    Columns follow the schema's field order, followed by the provenance
    columns `source_workbook` and `source_mapping_id`. Fields missing from a
    record are left empty.
    """

    PROVENANCE_COLUMNS = ("source_workbook", "source_mapping_id")

    def __init__(self, schemas: list[Schema]):
        self.schemas = {schema.id: schema for schema in schemas}
        self._rows: dict[str, list[dict[str, Any]]] = {}

    def save(self, record: ExtractedRecord) -> None:
        schema = self.schemas.get(record.schema_id)
        if schema is None:
            raise SinkError(f"No table for schema {record.schema_id}")
        columns = {f.name for f in schema.fields}
        unknown = set(record.data) - columns
        if unknown:
            raise SinkError(
                f"Columns {sorted(unknown)} don't exist in table {schema.table_name}"
            )
        row = dict(record.data)
        row["source_workbook"] = record.source_workbook
        row["source_mapping_id"] = record.source_mapping_id
        self._rows.setdefault(schema.table_name, []).append(row)
        logger.debug("Inserted row into %s", schema.table_name)

    @property
    def table_names(self) -> list[str]:
        return list(self._rows)

    def table(self, name: str) -> pd.DataFrame:
        for schema in self.schemas.values():
            if schema.table_name == name:
                columns = [f.name for f in schema.fields] + list(self.PROVENANCE_COLUMNS)
                return pd.DataFrame(self._rows.get(name, []), columns=columns)
        raise SinkError(f"Unknown table {name}")

    def tables(self) -> dict[str, pd.DataFrame]:
        return {name: self.table(name) for name in self._rows}
