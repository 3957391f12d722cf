import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from excel_extractor.coercion import DEFAULT_DRIFT_TOLERANCE, FieldOutcome, coerce_result
from excel_extractor.grid import CellGrid
from excel_extractor.interpreter import FormulaInterpreter
from excel_extractor.models import ExtractedRecord, Mapping, Schema

logger = logging.getLogger(__name__)


@dataclass
class ExtractionOutcome:
    """Everything a mapping produced for one workbook."""

    outcomes: list[FieldOutcome] = field(default_factory=list)
    record: Optional[ExtractedRecord] = None

    @property
    def data(self) -> dict[str, Any]:
        return {o.field.name: o.value for o in self.outcomes if o.ok}

    @property
    def field_errors(self) -> dict[str, str]:
        return {o.field.name: o.error for o in self.outcomes if o.error is not None}

    @property
    def valid_fields(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def missing_required(self) -> list[str]:
        return [o.field.name for o in self.outcomes if o.field.required and not o.ok]


def extract_record(
    grid: CellGrid,
    mapping: Mapping,
    schema: Schema,
    source: str,
    drift_tolerance: float = DEFAULT_DRIFT_TOLERANCE,
) -> ExtractionOutcome:
    """Apply every formula of a mapping to one workbook.

    Each field is evaluated and coerced on its own: a failing field is
    recorded in `field_errors` and left out of the record, it never stops
    its siblings. The record is None when no field succeeded.
    """
    interpreter = FormulaInterpreter(grid)
    result = ExtractionOutcome()

    for entry in mapping.field_mappings:
        schema_field = schema.field_by_id(entry.schema_field_id)
        if schema_field is None:
            logger.warning(
                "Mapping %s references unknown field %s of schema %s, skipping",
                mapping.id,
                entry.schema_field_id,
                schema.id,
            )
            continue

        computed = interpreter.compute(entry.formula, mapping.sheet)
        outcome = coerce_result(computed, schema_field, drift_tolerance)
        if not outcome.ok:
            logger.warning("%s: field %s failed: %s", source, schema_field.name, outcome.error)
        result.outcomes.append(outcome)

    if result.valid_fields > 0:
        result.record = ExtractedRecord(
            schema_id=schema.id,
            data=result.data,
            source_workbook=source,
            source_mapping_id=mapping.id,
        )
    return result
