"""OpenRouter LLM provider.

OpenRouter exposes many hosted models behind one OpenAI-compatible chat
completions endpoint; called directly with requests.
"""
import os
from typing import Dict, Sequence

import requests

from ..base import LLMProvider, LLMUsage, LLMError, LLMTimeoutError


class OpenRouterProvider(LLMProvider):
    """OpenRouter API provider.

    Requires OPENROUTER_API_KEY environment variable or explicit API key.

    Example:
        >>> provider = OpenRouterProvider(model="anthropic/claude-sonnet-4")
        >>> text, usage = provider.complete(
        ...     "Reply with JSON only.",
        ...     [{"role": "user", "content": "Top 10 members by claim count"}],
        ...     timeout=30.0
        ... )
    """

    API_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"

    def __init__(self, model: str | None = None, api_key: str | None = None):
        """Initialize OpenRouter provider.

        Args:
            model: Model to use (default: from OPENROUTER_MODEL env var or anthropic/claude-sonnet-4)
            api_key: API key (default: from OPENROUTER_API_KEY env var)

        Raises:
            LLMError: If API key is not provided
        """
        self._api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        if not self._api_key:
            raise LLMError("OPENROUTER_API_KEY environment variable not set or api_key not provided")

        self._model = model or os.getenv("OPENROUTER_MODEL", "anthropic/claude-sonnet-4")

    def complete(
        self,
        system: str,
        messages: Sequence[Dict[str, str]],
        timeout: float = 60.0,
        temperature: float = 0.0,
        max_tokens: int = 4096
    ) -> tuple[str, LLMUsage]:
        payload = {
            "model": self._model,
            "messages": [{"role": "system", "content": system}] + [
                {"role": m["role"], "content": m["content"]} for m in messages
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
            "X-Title": "snowquery"
        }

        try:
            response = requests.post(self.API_ENDPOINT, json=payload, headers=headers, timeout=timeout)
        except requests.exceptions.Timeout as e:
            raise LLMTimeoutError(
                f"OpenRouter request exceeded timeout of {timeout}s: {e}",
                timeout_seconds=timeout
            )
        except requests.exceptions.RequestException as e:
            raise LLMError(f"OpenRouter API request failed: {e}")

        if response.status_code != 200:
            raise LLMError(
                f"OpenRouter API returned status {response.status_code}: {response.text[:500]}",
                details={"status_code": response.status_code}
            )

        try:
            response_data = response.json()
        except ValueError as e:
            raise LLMError(f"OpenRouter returned a non-JSON body: {e}")

        choices = response_data.get("choices") or []
        content = choices[0].get("message", {}).get("content") if choices else None
        if not content:
            raise LLMError("Empty response from OpenRouter")

        return content, self._calculate_usage(response_data.get("usage") or {})

    def _calculate_usage(self, usage_obj: dict) -> LLMUsage:
        """Token counts and cost; OpenRouter reports cost in USD itself."""
        input_tokens = usage_obj.get("prompt_tokens", 0)
        output_tokens = usage_obj.get("completion_tokens", 0)
        return LLMUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=usage_obj.get("total_tokens", input_tokens + output_tokens),
            estimated_cost_usd=float(usage_obj.get("total_cost", 0.0))
        )

    @property
    def model_name(self) -> str:
        """Return the OpenRouter model being used."""
        return self._model
