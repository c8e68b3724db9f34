"""LLM provider implementations."""
from .mock import MockProvider
from .anthropic import AnthropicProvider
from .openai import OpenAIProvider
from .openrouter import OpenRouterProvider

__all__ = ["MockProvider", "AnthropicProvider", "OpenAIProvider", "OpenRouterProvider"]
