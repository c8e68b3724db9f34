"""Language-model service abstraction used by the translator."""
from .base import LLMProvider, LLMUsage, LLMError, LLMTimeoutError

__all__ = ["LLMProvider", "LLMUsage", "LLMError", "LLMTimeoutError"]
