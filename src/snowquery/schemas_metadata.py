"""Pydantic schemas for raw warehouse schema and curated metadata.

Two kinds of metadata meet in the context builder:

- Raw schema (ColumnMetadata, TableMetadata, SchemaSnapshot), produced by
  introspection and cached per tenant. Serialized shape:
  {"tables": [{"name", "schema", "type", "comment", "row_count",
               "columns": [{"name", "type", "nullable", "comment"}]}]}
- Curated overlays (ColumnOverlay, TableOverlay, BusinessTerm), edited
  out-of-band and read-only here. Several overlay fields are stored as JSON
  strings; they are parsed at this boundary and any malformed value becomes
  None instead of failing the request.
"""
import json
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
)


def _tolerant(value: Any, handler: ValidatorFunctionWrapHandler) -> Any:
    """Decode a JSON string if needed and validate; anything malformed -> None."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    try:
        return handler(value)
    except ValidationError:
        return None


# ---------------------------------------------------------------------------
# Raw schema
# ---------------------------------------------------------------------------

class ColumnMetadata(BaseModel):
    """One introspected column."""
    name: str
    data_type: str = Field(..., alias="type")
    nullable: bool = True
    comment: str = ""

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class TableMetadata(BaseModel):
    """One introspected table or view with its ordered columns."""
    name: str
    schema_name: str = Field(..., alias="schema")
    kind: str = Field("BASE TABLE", alias="type")
    comment: str = ""
    row_count: int = 0
    columns: list[ColumnMetadata] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


class SchemaSnapshot(BaseModel):
    """Every table of a tenant at one point in time.

    A snapshot is always complete: introspection either produces all of it
    or nothing.
    """
    tables: list[TableMetadata] = Field(default_factory=list)
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        captured = self.captured_at
        if captured.tzinfo is None:
            captured = captured.replace(tzinfo=timezone.utc)
        return (now - captured).total_seconds()

    def to_document(self) -> dict[str, Any]:
        """Return the persisted JSON document (without the timestamp)."""
        return {"tables": [t.model_dump(by_alias=True) for t in self.tables]}

    @classmethod
    def from_document(cls, document: Any, captured_at: datetime) -> "SchemaSnapshot":
        """Rebuild a snapshot from its persisted document.

        Also accepts a bare list of tables, the shape older caches used.
        """
        if isinstance(document, str):
            document = json.loads(document)
        tables = document if isinstance(document, list) else document.get("tables", [])
        return cls(tables=tables, captured_at=captured_at)


# ---------------------------------------------------------------------------
# Curated overlays
# ---------------------------------------------------------------------------

class JoinPath(BaseModel):
    table: str
    on: str
    type: str = "JOIN"


class ExampleQuery(BaseModel):
    question: str
    sql: str


class ColumnOverlay(BaseModel):
    """Human-authored description of one column."""
    column_name: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    synonyms: Optional[list[str]] = None
    sample_values: Optional[list[Any]] = None
    value_mapping: Optional[dict[str, Any]] = None
    unit: Optional[str] = None
    computed_logic: Optional[str] = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    foreign_key_ref: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    parse_json_fields = field_validator("synonyms", "sample_values", "value_mapping", mode="wrap")(_tolerant)


class TableOverlay(BaseModel):
    """Human-authored description of one table, with its column overlays."""
    table_name: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    grain_description: Optional[str] = None
    data_source: Optional[str] = None
    update_frequency: Optional[str] = None
    common_joins: Optional[list[JoinPath]] = None
    common_filters: Optional[list[str]] = None
    important_notes: Optional[str] = None
    sample_queries: Optional[list[ExampleQuery]] = None
    columns: list[ColumnOverlay] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    parse_json_fields = field_validator("common_joins", "common_filters", "sample_queries", mode="wrap")(_tolerant)

    def column_map(self) -> dict[str, ColumnOverlay]:
        return {c.column_name: c for c in self.columns}


class BusinessTerm(BaseModel):
    """A glossary entry mapping domain language to SQL."""
    term: str
    definition: Optional[str] = None
    sql_mapping: Optional[str] = None
    related_tables: Optional[list[str]] = None

    model_config = ConfigDict(frozen=True)

    parse_json_fields = field_validator("related_tables", mode="wrap")(_tolerant)
