"""Mock LLM provider for testing.

Replays scripted reply texts without making API calls and records every
call it receives so tests can assert on attempt counts and prompts.
"""
from typing import Dict, Optional, Sequence

from ..base import LLMProvider, LLMUsage, LLMError, LLMTimeoutError


class MockProvider(LLMProvider):
    """Mock LLM provider for testing.

    Replies are consumed in order; the last one repeats once the script runs
    out.

    Example:
        >>> provider = MockProvider(responses=["not json", '{"sql": null, ...}'])
        >>> text, _ = provider.complete("system", [{"role": "user", "content": "q"}])
        >>> text
        'not json'
        >>> provider.call_count
        1
    """

    def __init__(
        self,
        responses: Optional[Sequence[str]] = None,
        should_fail: bool = False,
        should_timeout: bool = False,
        input_tokens: int = 100,
        output_tokens: int = 50
    ):
        """Initialize mock provider.

        Args:
            responses: Reply texts returned in order
            should_fail: If True, raise LLMError on every call
            should_timeout: If True, raise LLMTimeoutError on every call
            input_tokens: Mock input token count
            output_tokens: Mock output token count
        """
        self._responses = list(responses or [])
        self._should_fail = should_fail
        self._should_timeout = should_timeout
        self._input_tokens = input_tokens
        self._output_tokens = output_tokens
        self.calls: list[dict] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def complete(
        self,
        system: str,
        messages: Sequence[Dict[str, str]],
        timeout: float = 60.0,
        temperature: float = 0.0,
        max_tokens: int = 4096
    ) -> tuple[str, LLMUsage]:
        self.calls.append({
            "system": system,
            "messages": [dict(m) for m in messages],
            "timeout": timeout,
            "temperature": temperature,
        })

        if self._should_timeout:
            raise LLMTimeoutError(f"Mock provider exceeded timeout of {timeout}s", timeout_seconds=timeout)
        if self._should_fail:
            raise LLMError("Mock provider configured to fail")
        if not self._responses:
            raise LLMError("Mock provider has no scripted responses")

        index = min(len(self.calls), len(self._responses)) - 1
        usage = LLMUsage(
            input_tokens=self._input_tokens,
            output_tokens=self._output_tokens,
            total_tokens=self._input_tokens + self._output_tokens,
            estimated_cost_usd=0.001
        )
        return self._responses[index], usage

    @property
    def model_name(self) -> str:
        """Return mock model identifier."""
        return "mock-llm-v1"
