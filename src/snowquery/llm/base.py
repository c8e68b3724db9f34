"""Base classes for the language-model service.

The translator only needs plain-text chat completion: a system instruction,
an alternating user/assistant message list, and the raw reply text back.
Structured-output parsing lives in the translator so every provider is held
to the same extraction and retry rules.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from ..errors import TranslationError, TimeoutError as StructuredTimeoutError


@dataclass(frozen=True)
class LLMUsage:
    """Token usage and cost tracking for LLM calls.

    Attributes:
        input_tokens: Number of tokens in the prompt
        output_tokens: Number of tokens in the response
        total_tokens: Total tokens used (input + output)
        estimated_cost_usd: Estimated cost in USD
    """
    input_tokens: int
    output_tokens: int
    total_tokens: int
    estimated_cost_usd: float


class LLMError(TranslationError):
    """The provider failed: transport, authentication, or an empty reply."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, retryable=True, details=details or {})


class LLMTimeoutError(StructuredTimeoutError):
    """Raised when an LLM request exceeds its timeout."""

    def __init__(self, message: str, timeout_seconds: Optional[float] = None):
        """Initialize LLM timeout error.

        Args:
            message: Human-readable error message
            timeout_seconds: The timeout that was exceeded
        """
        details = {}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(message=message, retryable=True, details=details)


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    Key Requirements:
    - Must return the reply text unmodified (no JSON repair)
    - Must honour the timeout and raise LLMTimeoutError when it is exceeded
    - Must track token usage and cost
    - Must not log raw prompts or responses (security)
    """

    @abstractmethod
    def complete(
        self,
        system: str,
        messages: Sequence[Dict[str, str]],
        timeout: float = 60.0,
        temperature: float = 0.0,
        max_tokens: int = 4096
    ) -> tuple[str, LLMUsage]:
        """Run one chat completion.

        Args:
            system: System instruction
            messages: [{"role": "user"|"assistant", "content": str}, ...],
                ending with a user message
            timeout: Maximum time to wait for the reply in seconds
            temperature: Sampling temperature (the translator pins 0.0)
            max_tokens: Upper bound on reply length

        Returns:
            Tuple of (reply_text, usage_stats)

        Raises:
            LLMTimeoutError: If the request exceeds timeout
            LLMError: For any other provider failure

        Example:
            >>> provider = MockProvider(responses=['{"sql": "SELECT 1", ...}'])
            >>> text, usage = provider.complete(
            ...     "You are a SQL assistant.",
            ...     [{"role": "user", "content": "How many members are there?"}],
            ...     timeout=30.0
            ... )
        """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model identifier being used.

        Example: "claude-sonnet-4-20250514" or "gpt-4o"
        """


def estimate_cost(input_tokens: int, output_tokens: int, input_per_mtok: float, output_per_mtok: float) -> float:
    """Estimated USD cost from per-million-token prices."""
    return (
        (input_tokens / 1_000_000) * input_per_mtok +
        (output_tokens / 1_000_000) * output_per_mtok
    )
