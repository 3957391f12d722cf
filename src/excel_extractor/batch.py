"""Batch extraction of records from a queue of workbooks.

The BatchProcessor owns the queue and the run statistics. A run walks the
items that were queued when it started, in submission order, one at a time:

    queued -> processing -> completed | error

Each workbook is isolated from the others: whatever goes wrong while
parsing, evaluating or saving one of them is recorded on that item and the
run moves on to the next one.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import pandas as pd

from excel_extractor.config import Settings, get_settings
from excel_extractor.errors import (
    ExtractorError,
    RunInProgress,
    SchemaError,
    SinkError,
)
from excel_extractor.extraction import extract_record
from excel_extractor.grid import CellGrid
from excel_extractor.loader import load_grid
from excel_extractor.models import Mapping, Schema
from excel_extractor.sinks import RecordSink

logger = logging.getLogger(__name__)

NO_VALID_FIELDS = "No valid fields could be computed"


class ItemStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class BatchItem:
    id: str
    source: Any
    name: str
    status: ItemStatus = ItemStatus.QUEUED
    extracted_fields: Optional[int] = None
    error: Optional[str] = None
    field_errors: dict[str, str] = field(default_factory=dict)


@dataclass
class BatchRunStats:
    total: int = 0
    completed: int = 0
    failed: int = 0
    total_records_created: int = 0


class ItemFailed(ExtractorError):
    """Ends the processing of one item with an error status."""


def _item_name(source: Any) -> str:
    if isinstance(source, CellGrid):
        return source.identifier or "<grid>"
    if isinstance(source, (str, Path)):
        return Path(source).name
    return getattr(source, "name", None) or repr(source)


class BatchProcessor:
    """Runs a mapping over a queue of workbooks and hands records to a sink.

    `parse_workbook` turns a queued source into a CellGrid; sources that
    already are CellGrids are used as they are.

    Only one run can be in progress at a time. `add` may be called during a
    run, but the new items wait for the next one.
    """

    def __init__(
        self,
        sink: RecordSink,
        parse_workbook: Callable[[Any], CellGrid] = load_grid,
        settings: Settings | None = None,
    ):
        self.sink = sink
        self.parse_workbook = parse_workbook
        self.settings = settings or get_settings()
        self._items: list[BatchItem] = []
        self._stats = BatchRunStats()
        self._state_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._cancelled = threading.Event()

    @property
    def items(self) -> list[BatchItem]:
        with self._state_lock:
            return [replace(item, field_errors=dict(item.field_errors)) for item in self._items]

    @property
    def stats(self) -> BatchRunStats:
        with self._state_lock:
            return replace(self._stats)

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def add(self, sources: Iterable[Any]) -> list[BatchItem]:
        new_items = [
            BatchItem(id=uuid.uuid4().hex, source=source, name=_item_name(source))
            for source in sources
        ]
        with self._state_lock:
            self._items.extend(new_items)
            self._stats.total += len(new_items)
        logger.debug("Queued %d workbooks", len(new_items))
        return new_items

    def clear(self) -> None:
        """Empty the queue and reset the statistics."""
        if self.is_running:
            raise RunInProgress("Can't clear the queue while a run is in progress")
        with self._state_lock:
            self._items = []
            self._stats = BatchRunStats()

    def cancel(self) -> None:
        """Stop the current run once the item being processed is done."""
        self._cancelled.set()

    def run(self, mapping: Mapping, schema: Schema) -> BatchRunStats:
        """Process every queued item and return the resulting statistics."""
        if mapping.schema_id != schema.id:
            raise SchemaError(
                f"Mapping {mapping.id} targets schema {mapping.schema_id}, not {schema.id}"
            )
        if not self._run_lock.acquire(blocking=False):
            raise RunInProgress("A batch run is already in progress")
        try:
            self._cancelled.clear()
            with self._state_lock:
                pending = [item for item in self._items if item.status == ItemStatus.QUEUED]
            logger.info("Starting batch run over %d workbooks", len(pending))

            for item in pending:
                if self._cancelled.is_set():
                    logger.info("Batch run cancelled")
                    break
                self._process(item, mapping, schema)

            stats = self.stats
            logger.info(
                "Batch run finished: %d completed, %d failed, %d records created",
                stats.completed,
                stats.failed,
                stats.total_records_created,
            )
            return stats
        finally:
            self._run_lock.release()

    def _process(self, item: BatchItem, mapping: Mapping, schema: Schema) -> None:
        with self._state_lock:
            item.status = ItemStatus.PROCESSING
        try:
            extracted = self._extract_and_save(item, mapping, schema)
        except ItemFailed as e:
            logger.warning("%s failed: %s", item.name, e)
            with self._state_lock:
                item.status = ItemStatus.ERROR
                item.error = str(e)
                self._stats.failed += 1
            return

        logger.info("%s completed with %d fields", item.name, extracted)
        with self._state_lock:
            item.status = ItemStatus.COMPLETED
            item.extracted_fields = extracted
            self._stats.completed += 1
            if extracted > 0:
                self._stats.total_records_created += 1

    def _extract_and_save(self, item: BatchItem, mapping: Mapping, schema: Schema) -> int:
        """Returns the number of extracted fields, raising ItemFailed on error."""
        try:
            if isinstance(item.source, CellGrid):
                grid = item.source
            else:
                grid = self.parse_workbook(item.source)
        except ExtractorError as e:
            raise ItemFailed(str(e)) from e
        except Exception as e:
            logger.exception("Unexpected error parsing %s", item.name)
            raise ItemFailed(f"Failed to parse workbook {item.name}: {e}") from e

        try:
            outcome = extract_record(
                grid, mapping, schema, item.name, self.settings.date_drift_tolerance
            )
        except ExtractorError as e:
            raise ItemFailed(str(e)) from e
        except Exception as e:
            logger.exception("Unexpected error extracting %s", item.name)
            raise ItemFailed(f"Failed to extract {item.name}: {e}") from e
        with self._state_lock:
            item.field_errors = outcome.field_errors

        if self.settings.fail_on_required_field and outcome.missing_required:
            raise ItemFailed(
                f"Required fields could not be computed: {', '.join(outcome.missing_required)}"
            )
        if outcome.record is None:
            if self.settings.fail_on_empty_record:
                raise ItemFailed(NO_VALID_FIELDS)
            return 0

        try:
            self.sink.save(outcome.record)
        except SinkError as e:
            raise ItemFailed(str(e)) from e
        except Exception as e:
            logger.exception("Unexpected error saving record of %s", item.name)
            raise ItemFailed(str(e)) from e
        return outcome.valid_fields

    def report(self) -> pd.DataFrame:
        """Per-item status of the queue, one row per workbook."""
        return pd.DataFrame(
            [
                {
                    "id": item.id,
                    "name": item.name,
                    "status": item.status.value,
                    "extracted_fields": item.extracted_fields,
                    "error": item.error,
                }
                for item in self.items
            ],
            columns=["id", "name", "status", "extracted_fields", "error"],
        )
