"""Schema and mapping definitions.

These are the static inputs of an extraction: the target record shape
(`Schema`) and the formula bound to each of its fields (`Mapping`). Both load
from the JSON documents the mapping editor exports, which use camelCase keys.
"""

import re
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from excel_extractor.errors import FormulaError, SchemaError
from excel_extractor.grid import CellAddress, CellRange
from excel_extractor.references import collect_references


class FieldType(str, Enum):
    TEXT = "text"
    INTEGER = "integer"
    NUMBER = "number"
    CURRENCY = "currency"
    DATE = "date"
    BOOLEAN = "boolean"
    ENUM = "enum"


class DefinitionModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    @classmethod
    def load(cls, data: dict[str, Any]):
        """Validate a definition, raising SchemaError on bad input."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise SchemaError(f"Invalid {cls.__name__} definition: {e}") from e


class SchemaField(DefinitionModel):
    id: str
    name: str = Field(min_length=1)
    display_label: str = ""
    type: FieldType
    required: bool = False
    description: str = ""
    enum_options: Optional[tuple[str, ...]] = None

    @model_validator(mode="after")
    def check_enum_options(self) -> "SchemaField":
        if self.type == FieldType.ENUM:
            if not self.enum_options:
                raise ValueError(f"Enum field '{self.name}' needs enum options")
            if len(set(self.enum_options)) != len(self.enum_options):
                raise ValueError(f"Enum field '{self.name}' has duplicate options")
        elif self.enum_options:
            raise ValueError(
                f"Field '{self.name}' of type {self.type.value} can't have enum options"
            )
        return self


class Schema(DefinitionModel):
    id: str
    name: str
    description: str = ""
    fields: tuple[SchemaField, ...] = ()

    @model_validator(mode="after")
    def check_unique_fields(self) -> "Schema":
        for attr in ("id", "name"):
            values = [getattr(f, attr) for f in self.fields]
            duplicates = {v for v in values if values.count(v) > 1}
            if duplicates:
                raise ValueError(f"Duplicate field {attr}s: {sorted(duplicates)}")
        return self

    def field_by_id(self, field_id: str) -> SchemaField | None:
        for field in self.fields:
            if field.id == field_id:
                return field
        return None

    @property
    def table_name(self) -> str:
        """Name of the table holding this schema's extracted records."""
        return "clean_" + re.sub(r"[^a-z0-9_]", "_", self.name.lower())


class FieldMapping(DefinitionModel):
    schema_field_id: str
    formula: str
    cell_references: tuple[CellAddress | CellRange, ...] = ()


class Mapping(DefinitionModel):
    id: str
    name: str = ""
    description: str = ""
    schema_id: str
    # Sheet that unqualified references point at; the workbook's first sheet if unset
    sheet: Optional[str] = None
    field_mappings: tuple[FieldMapping, ...] = ()

    def with_references(self, default_sheet: str | None = None) -> "Mapping":
        """Copy of the mapping with each entry's cached references recomputed.

        Entries whose formula doesn't parse keep no cached references; they
        fail again, with a proper message, when the mapping is applied.
        """
        sheet = self.sheet or default_sheet
        entries = []
        for entry in self.field_mappings:
            try:
                refs = tuple(collect_references(entry.formula, sheet))
            except FormulaError:
                refs = ()
            entries.append(entry.model_copy(update={"cell_references": refs}))
        return self.model_copy(update={"field_mappings": tuple(entries)})


class ExtractedRecord(DefinitionModel):
    schema_id: str
    data: dict[str, Any]
    source_workbook: str
    source_mapping_id: str
