"""Pydantic schema for executor output."""
from pydantic import BaseModel, Field, ConfigDict
from typing import Any


class QueryResult(BaseModel):
    """Rows read back from the warehouse.

    Ensures no raw driver objects (datetime, Decimal, bytes) leak into API
    responses. truncated is a signal that the per-tenant row cap was reached,
    not an exact overflow count.
    """
    columns: list[str] = Field(
        ...,
        description="Column names in result order",
        examples=[["MEMBER_COUNT"]]
    )
    data: list[dict[str, Any]] = Field(
        ...,
        description="One mapping of column name to primitive per row",
        examples=[[{"MEMBER_COUNT": 42}]]
    )
    row_count: int = Field(..., ge=0)
    truncated: bool = False

    model_config = ConfigDict(frozen=True)
