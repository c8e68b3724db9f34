from enum import Enum
from pydantic import BaseModel, Field, model_validator
from typing import Any, Literal, Optional


class PipelineState(str, Enum):
    RECEIVED = "received"
    TRANSLATING = "translating"
    TRANSLATED = "translated"
    TRANSLATE_FAILED = "translate_failed"
    EXECUTING = "executing"
    SKIP_EXECUTE = "skip_execute"
    SUCCEEDED = "succeeded"
    EXEC_FAILED = "exec_failed"


class QueryResponse(BaseModel):
    """Uniform envelope for every terminal pipeline state."""
    question: str
    sql: Optional[str] = None
    explanation: Optional[str] = None
    assumptions: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    columns: list[str] = Field(default_factory=list)
    data: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    truncated: bool = False
    execution_time_ms: Optional[int] = None
    tokens_input: int = 0
    tokens_output: int = 0
    cost_usd: float = 0.0
    state: PipelineState = PipelineState.RECEIVED


class ConversationTurn(BaseModel):
    """One prior message of a conversation, supplied by the caller."""
    role: Literal["user", "assistant"]
    text: Optional[str] = None
    response: Optional[QueryResponse] = None

    @model_validator(mode="before")
    @classmethod
    def accept_type_alias(cls, data: Any) -> Any:
        # Chat clients send {"type": "user", ...}
        if isinstance(data, dict) and "role" not in data and "type" in data:
            data = {**data, "role": data["type"]}
        return data


class QueryRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=2000)
    execute: bool = True
    conversation_history: list[ConversationTurn] = Field(default_factory=list)
