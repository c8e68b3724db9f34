"""OpenAI LLM provider, over the Chat Completions API."""
import os
from typing import Dict, Sequence

from ..base import LLMProvider, LLMUsage, LLMError, LLMTimeoutError, estimate_cost


class OpenAIProvider(LLMProvider):
    """OpenAI API provider.

    Requires OPENAI_API_KEY environment variable.

    Pricing (GPT-4o): $2.50/MTok input, $10.00/MTok output
    """

    def __init__(self, model: str | None = None, api_key: str | None = None):
        """Initialize OpenAI provider.

        Args:
            model: Model to use (default: from OPENAI_MODEL env var or gpt-4o)
            api_key: API key (default: from OPENAI_API_KEY env var)

        Raises:
            LLMError: If API key is not provided
        """
        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self._api_key:
            raise LLMError("OPENAI_API_KEY environment variable not set")

        self._model = model or os.getenv("OPENAI_MODEL", "gpt-4o")

        # Lazy import to avoid requiring openai package if not used
        try:
            import openai
        except ImportError:
            raise LLMError("openai package not installed. Run: pip install openai")
        self._openai = openai
        self._client = openai.OpenAI(api_key=self._api_key)

    def complete(
        self,
        system: str,
        messages: Sequence[Dict[str, str]],
        timeout: float = 60.0,
        temperature: float = 0.0,
        max_tokens: int = 4096
    ) -> tuple[str, LLMUsage]:
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "system", "content": system}] + [
                    {"role": m["role"], "content": m["content"]} for m in messages
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=timeout
            )
        except self._openai.APITimeoutError as e:
            raise LLMTimeoutError(f"OpenAI request exceeded timeout of {timeout}s: {e}", timeout_seconds=timeout)
        except self._openai.OpenAIError as e:
            raise LLMError(f"OpenAI API error: {e}")

        if not response.choices or not response.choices[0].message.content:
            raise LLMError("Empty response from OpenAI")

        return response.choices[0].message.content, self._calculate_usage(response.usage)

    def _calculate_usage(self, usage_obj) -> LLMUsage:
        input_tokens = usage_obj.prompt_tokens
        output_tokens = usage_obj.completion_tokens
        return LLMUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=usage_obj.total_tokens,
            estimated_cost_usd=estimate_cost(input_tokens, output_tokens, 2.50, 10.00)
        )

    @property
    def model_name(self) -> str:
        """Return the OpenAI model being used."""
        return self._model
