"""Anthropic (Claude) LLM provider, over the Messages API."""
import os
from typing import Dict, Sequence

from ..base import LLMProvider, LLMUsage, LLMError, LLMTimeoutError, estimate_cost


class AnthropicProvider(LLMProvider):
    """Anthropic Claude API provider.

    Requires ANTHROPIC_API_KEY environment variable.

    Pricing (Claude Sonnet 4): $3.00/MTok input, $15.00/MTok output

    Example:
        >>> import os
        >>> os.environ["ANTHROPIC_API_KEY"] = "sk-ant-..."
        >>> provider = AnthropicProvider()
        >>> text, usage = provider.complete(
        ...     "Reply with JSON only.",
        ...     [{"role": "user", "content": "How many members are there?"}]
        ... )
    """

    def __init__(self, model: str | None = None, api_key: str | None = None):
        """Initialize Anthropic provider.

        Args:
            model: Model to use (default: from CLAUDE_MODEL env var or claude-sonnet-4-20250514)
            api_key: API key (default: from ANTHROPIC_API_KEY env var)

        Raises:
            LLMError: If API key is not provided
        """
        self._api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self._api_key:
            raise LLMError("ANTHROPIC_API_KEY environment variable not set")

        self._model = model or os.getenv("CLAUDE_MODEL", "claude-sonnet-4-20250514")

        # Lazy import to avoid requiring anthropic package if not used
        try:
            import anthropic
        except ImportError:
            raise LLMError("anthropic package not installed. Run: pip install anthropic")
        self._anthropic = anthropic
        self._client = anthropic.Anthropic(api_key=self._api_key)

    def complete(
        self,
        system: str,
        messages: Sequence[Dict[str, str]],
        timeout: float = 60.0,
        temperature: float = 0.0,
        max_tokens: int = 4096
    ) -> tuple[str, LLMUsage]:
        try:
            message = self._client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=[{"role": m["role"], "content": m["content"]} for m in messages],
                timeout=timeout
            )
        except self._anthropic.APITimeoutError as e:
            raise LLMTimeoutError(f"Claude request exceeded timeout of {timeout}s: {e}", timeout_seconds=timeout)
        except self._anthropic.APIError as e:
            raise LLMError(f"Anthropic API error: {e}")

        text = "".join(
            block.text for block in (message.content or []) if getattr(block, "type", None) == "text"
        )
        if not text:
            raise LLMError("Empty response from Claude")

        return text, self._calculate_usage(message.usage)

    def _calculate_usage(self, usage_obj) -> LLMUsage:
        input_tokens = usage_obj.input_tokens
        output_tokens = usage_obj.output_tokens
        return LLMUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            estimated_cost_usd=estimate_cost(input_tokens, output_tokens, 3.00, 15.00)
        )

    @property
    def model_name(self) -> str:
        """Return the Claude model being used."""
        return self._model
