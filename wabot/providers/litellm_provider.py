"""LiteLLM provider implementation for multi-provider support."""

import os
from typing import Any

import litellm
from litellm import acompletion
from loguru import logger

from wabot.providers.base import LLMProvider, LLMResponse

# provider name -> (env var LiteLLM reads, model prefix LiteLLM expects)
_PROVIDER_ENV: dict[str, tuple[str, str]] = {
    "openai": ("OPENAI_API_KEY", "openai"),
    "anthropic": ("ANTHROPIC_API_KEY", "anthropic"),
    "openrouter": ("OPENROUTER_API_KEY", "openrouter"),
    "deepseek": ("DEEPSEEK_API_KEY", "deepseek"),
    "gemini": ("GEMINI_API_KEY", "gemini"),
    "groq": ("GROQ_API_KEY", "groq"),
    "vllm": ("HOSTED_VLLM_API_KEY", "hosted_vllm"),
}

_GATEWAYS = {"openrouter", "vllm"}


class LiteLLMProvider(LLMProvider):
    """
    LLM provider backed by LiteLLM.

    Gateways (OpenRouter, vLLM) always get their prefix and override the
    environment; direct providers only fill the key when it is not already set.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "openai/gpt-4o-mini",
        extra_headers: dict[str, str] | None = None,
        provider_name: str | None = None,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.extra_headers = dict(extra_headers or {})
        self.provider_name = (provider_name or "").strip().lower()

        if api_key:
            self._setup_env(api_key)

        litellm.suppress_debug_info = True
        litellm.drop_params = True

    def _setup_env(self, api_key: str) -> None:
        entry = _PROVIDER_ENV.get(self.provider_name)
        if entry is None:
            return
        env_key, _ = entry
        if self.provider_name in _GATEWAYS:
            os.environ[env_key] = api_key
        else:
            os.environ.setdefault(env_key, api_key)

    def _resolve_model(self, model: str) -> str:
        """Apply the LiteLLM routing prefix the configured provider needs."""
        entry = _PROVIDER_ENV.get(self.provider_name)
        if entry is None:
            return model
        _, prefix = entry
        if self.provider_name in _GATEWAYS:
            return model if model.startswith(f"{prefix}/") else f"{prefix}/{model}"
        if "/" in model:
            return model
        return f"{prefix}/{model}"

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.4,
    ) -> LLMResponse:
        """Send a chat completion request via LiteLLM."""
        resolved = self._resolve_model(model or self.default_model)
        kwargs: dict[str, Any] = {
            "model": resolved,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers

        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            logger.error(f"LLM call failed ({resolved}): {e}")
            return LLMResponse(content=f"Error calling LLM: {e}", finish_reason="error")

        choice = response.choices[0]
        usage: dict[str, int] = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        return LLMResponse(
            content=choice.message.content,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    def get_default_model(self) -> str:
        return self.default_model
