"""Tests for LiteLLMProvider prefix routing and env setup."""

import asyncio
import importlib
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from wabot.config.schema import Config
from wabot.providers.base import LLMResponse


@pytest.fixture
def mock_litellm():
    """Mock litellm so no request ever leaves the test."""
    mock = MagicMock()
    mock.suppress_debug_info = False
    mock.drop_params = False
    mock.acompletion = AsyncMock()
    with patch.dict("sys.modules", {"litellm": mock}):
        yield mock


@pytest.fixture
def make_provider(mock_litellm):
    """Factory that creates a LiteLLMProvider bound to the mocked litellm."""
    import wabot.providers.litellm_provider as mod

    def _make(**kwargs):
        importlib.reload(mod)
        return mod.LiteLLMProvider(**kwargs)

    yield _make


@pytest.fixture(autouse=True)
def _isolate_provider_env(monkeypatch):
    for name in ("OPENAI_API_KEY", "OPENROUTER_API_KEY", "DEEPSEEK_API_KEY", "GEMINI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    yield
    import wabot.providers.factory as factory
    import wabot.providers.litellm_provider as mod

    importlib.reload(mod)
    importlib.reload(factory)


def _completion(content: str, finish_reason: str = "stop"):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason)],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
    )


def test_resolve_model_gateway_prefixes(make_provider):
    provider = make_provider(api_key="sk-or-v1-test", provider_name="openrouter")
    assert provider._resolve_model("anthropic/claude-sonnet-4-5") == "openrouter/anthropic/claude-sonnet-4-5"
    assert provider._resolve_model("openrouter/auto") == "openrouter/auto"


def test_resolve_model_vllm_uses_hosted_prefix(make_provider):
    provider = make_provider(api_base="http://127.0.0.1:8000/v1", provider_name="vllm")
    assert provider._resolve_model("qwen2.5-7b") == "hosted_vllm/qwen2.5-7b"


def test_resolve_model_standard_auto_prefix(make_provider):
    provider = make_provider(api_key="test-key", provider_name="gemini")
    assert provider._resolve_model("gemini-2.5-flash") == "gemini/gemini-2.5-flash"
    assert provider._resolve_model("gemini/gemini-2.5-flash") == "gemini/gemini-2.5-flash"


def test_resolve_model_unknown_provider_passthrough(make_provider):
    provider = make_provider(provider_name="")
    assert provider._resolve_model("gpt-4o-mini") == "gpt-4o-mini"


def test_setup_env_direct_provider_does_not_override(make_provider, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "from-shell")
    make_provider(api_key="from-config", provider_name="openai")
    assert os.environ["OPENAI_API_KEY"] == "from-shell"


def test_setup_env_gateway_overrides(make_provider, monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "stale")
    make_provider(api_key="sk-or-fresh", provider_name="openrouter")
    assert os.environ["OPENROUTER_API_KEY"] == "sk-or-fresh"


def test_litellm_flags_are_set(make_provider, mock_litellm):
    make_provider(api_key="k", provider_name="openai")
    assert mock_litellm.suppress_debug_info is True
    assert mock_litellm.drop_params is True


def test_chat_passes_headers_and_base(make_provider, mock_litellm):
    mock_litellm.acompletion.return_value = _completion('{"text": "hola"}')
    provider = make_provider(
        api_key="sk-or",
        api_base="https://openrouter.ai/api/v1",
        provider_name="openrouter",
        default_model="openai/gpt-4o-mini",
        extra_headers={"HTTP-Referer": "https://shop.example"},
    )

    response = asyncio.run(provider.chat([{"role": "user", "content": "hola"}]))

    assert response.content == '{"text": "hola"}'
    assert response.usage["total_tokens"] == 15
    kwargs = mock_litellm.acompletion.call_args.kwargs
    assert kwargs["model"] == "openrouter/openai/gpt-4o-mini"
    assert kwargs["api_base"] == "https://openrouter.ai/api/v1"
    assert kwargs["extra_headers"] == {"HTTP-Referer": "https://shop.example"}


def test_chat_error_becomes_error_response(make_provider, mock_litellm):
    mock_litellm.acompletion.side_effect = RuntimeError("rate limited")
    provider = make_provider(api_key="k", provider_name="openai")

    response = asyncio.run(provider.chat([{"role": "user", "content": "hola"}], model="gpt-4o-mini"))

    assert isinstance(response, LLMResponse)
    assert response.is_error
    assert "rate limited" in response.content


def test_build_provider_uses_route(make_provider):
    import wabot.providers.factory as factory

    importlib.reload(factory)
    config = Config.model_validate(
        {
            "agents": {"defaults": {"model": "deepseek-chat"}},
            "providers": {"deepseek": {"api_key": "ds-key", "extra_headers": {"X-Shop": "1"}}},
        }
    )

    provider = factory.build_provider(config)

    assert provider.provider_name == "deepseek"
    assert provider.extra_headers == {"X-Shop": "1"}
    assert provider.get_default_model() == "deepseek-chat"
