"""Pydantic schema for translator output."""
from typing import Any, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


class TranslationResult(BaseModel):
    """Structured result of turning a question into SQL.

    Exactly one of sql / error is set. assumptions is always a list.
    Token counts and cost cover every model call made for this result and
    are left out of serialized output.

    Example:
        >>> TranslationResult(sql="SELECT 1", explanation="Constant", assumptions=[])
        TranslationResult(sql='SELECT 1', explanation='Constant', assumptions=[], error=None)
    """
    sql: Optional[str] = Field(
        default=None,
        description="Candidate SQL statement",
        examples=['SELECT COUNT(*) AS member_count FROM ANALYTICS_DB.PUBLIC."MEMBERS"']
    )
    explanation: Optional[str] = Field(default=None, description="Plain-English explanation")
    assumptions: list[str] = Field(default_factory=list)
    error: Optional[str] = Field(default=None, description="Why no SQL was produced")
    tokens_input: int = Field(default=0, ge=0, exclude=True, repr=False)
    tokens_output: int = Field(default=0, ge=0, exclude=True, repr=False)
    cost_usd: float = Field(default=0.0, ge=0.0, exclude=True, repr=False)

    model_config = ConfigDict(frozen=True)

    @field_validator("sql", "explanation", "error", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("assumptions", mode="before")
    @classmethod
    def coerce_assumptions(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [str(item) for item in v if item is not None]

    @model_validator(mode="after")
    def sql_xor_error(self) -> "TranslationResult":
        if (self.sql is None) == (self.error is None):
            raise ValueError("exactly one of sql or error must be set")
        return self

    @classmethod
    def failure(cls, error: str) -> "TranslationResult":
        return cls(sql=None, explanation=None, assumptions=[], error=error)

    def with_usage(self, tokens_input: int, tokens_output: int, cost_usd: float) -> "TranslationResult":
        """Copy of this result carrying the given model usage."""
        return self.model_copy(update={
            "tokens_input": tokens_input,
            "tokens_output": tokens_output,
            "cost_usd": cost_usd,
        })
