"""LLM provider abstraction module."""

from wabot.providers.base import LLMProvider, LLMResponse
from wabot.providers.factory import build_provider
from wabot.providers.litellm_provider import LiteLLMProvider

__all__ = ["LLMProvider", "LLMResponse", "LiteLLMProvider", "build_provider"]
