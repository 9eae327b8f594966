"""Provider construction from a resolved model route."""

from wabot.config.schema import Config, LLMRoute
from wabot.providers.base import LLMProvider
from wabot.providers.litellm_provider import LiteLLMProvider


def build_provider(config: Config, route: LLMRoute | None = None) -> LLMProvider:
    """Build the runtime provider for the configured (or given) route."""
    route = route or config.resolve_model_route()
    provider_cfg = config.get_provider(route.model)
    return LiteLLMProvider(
        api_key=route.api_key,
        api_base=route.api_base,
        default_model=route.model,
        extra_headers=provider_cfg.extra_headers if provider_cfg else None,
        provider_name=route.provider,
    )
