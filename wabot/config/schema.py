"""wabot settings: pydantic models, camelCase on disk."""

from pathlib import Path
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from wabot.utils.helpers import get_data_path


def _default_workspace() -> str:
    """`<data dir>/workspace`."""
    return str(get_data_path() / "workspace")


class WhatsAppConfig(BaseModel):
    """WhatsApp bridge channel configuration."""
    enabled: bool = True
    bridge_url: str = "ws://localhost:3001"
    bridge_token: str = ""
    operator_number: str = ""  # Digits of the account the bridge is logged in as
    allow_from: list[str] = Field(default_factory=list)  # Allowed phone numbers (empty = everyone)


class ChannelsConfig(BaseModel):
    """Chat transports."""
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)


class AgentDefaults(BaseModel):
    """Default reply generation settings."""
    workspace: str = Field(default_factory=_default_workspace)
    model: str = "openai/gpt-4o-mini"
    max_tokens: int = 1024
    temperature: float = 0.4


class AgentsConfig(BaseModel):
    """Agent configuration."""
    defaults: AgentDefaults = Field(default_factory=AgentDefaults)


class ProviderConfig(BaseModel):
    """Credentials and endpoint for one LLM provider."""
    api_key: str = ""
    api_base: str | None = None
    extra_headers: dict[str, str] = Field(default_factory=dict)


class ProvidersConfig(BaseModel):
    """Known LLM providers."""
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = Field(default_factory=ProviderConfig)
    deepseek: ProviderConfig = Field(default_factory=ProviderConfig)
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)
    groq: ProviderConfig = Field(default_factory=ProviderConfig)
    vllm: ProviderConfig = Field(default_factory=ProviderConfig)


class LLMRoute(BaseModel):
    """Which provider (and credentials) serves a model."""

    model: str
    provider: str
    api_key: str | None = None
    api_base: str | None = None


class ConversationConfig(BaseModel):
    """Debounce, pause and delivery policy for customer conversations."""
    quiet_window_s: float = 10.0
    pause_ttl_s: float = 2 * 60 * 60
    dedup_ttl_s: float = 10 * 60
    dedup_capacity: int = 5000
    pacing_delay_s: float = 10.0
    welcome_enabled: bool = True
    welcome_text: str = "Bienvenido. Estoy para asesorarte 🙂"
    welcome_media_url: str = ""
    fallback_text: str = "Disculpá, tuve un problema para responderte. ¿Me lo repetís en un momento?"
    generation_timeout_s: float = 60.0
    history_max_turns: int = 100
    history_prompt_turns: int = 10
    presence_enabled: bool = True
    command_ack: bool = True


class Config(BaseSettings):
    """Root configuration for wabot."""
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)

    @property
    def workspace_path(self) -> Path:
        """Workspace directory with `~` expanded."""
        return Path(self.agents.defaults.workspace).expanduser()

    def _provider_map(self) -> dict[str, ProviderConfig]:
        """Provider name -> config, in routing preference order."""
        return {
            "openrouter": self.providers.openrouter,
            "deepseek": self.providers.deepseek,
            "anthropic": self.providers.anthropic,
            "openai": self.providers.openai,
            "gemini": self.providers.gemini,
            "groq": self.providers.groq,
            "vllm": self.providers.vllm,
        }

    def _model_provider_hints(self, model: str) -> tuple[str, ...]:
        """Provider hints extracted from model text."""
        lowered = model.lower()
        hints: list[str] = []
        explicit = lowered.split("/", 1)[0] if "/" in lowered else ""
        if explicit == "claude":
            explicit = "anthropic"
        if explicit == "hosted_vllm":
            explicit = "vllm"
        if explicit in self._provider_map():
            hints.append(explicit)

        keyword_hints = {
            "openrouter": "openrouter",
            "deepseek": "deepseek",
            "claude": "anthropic",
            "gpt": "openai",
            "gemini": "gemini",
            "groq": "groq",
            "llama": "groq",
        }
        for keyword, provider_name in keyword_hints.items():
            if keyword in lowered and provider_name not in hints:
                hints.append(provider_name)
        return tuple(hints)

    def _provider_base(self, provider_name: str, provider_cfg: ProviderConfig) -> str | None:
        """API base, with OpenRouter's public endpoint as its default."""
        if provider_name == "openrouter":
            return provider_cfg.api_base or "https://openrouter.ai/api/v1"
        return provider_cfg.api_base

    def resolve_model_route(self, model: str | None = None) -> LLMRoute:
        """Resolve which provider serves the model, preferring explicit hints with a key."""
        selected_model = (model or self.agents.defaults.model).strip()
        providers = self._provider_map()

        for provider_name in self._model_provider_hints(selected_model):
            provider_cfg = providers[provider_name]
            if provider_cfg.api_key or (provider_name == "vllm" and provider_cfg.api_base):
                return LLMRoute(
                    model=selected_model,
                    provider=provider_name,
                    api_key=provider_cfg.api_key or None,
                    api_base=self._provider_base(provider_name, provider_cfg),
                )

        if providers["vllm"].api_base:
            vllm_cfg = providers["vllm"]
            return LLMRoute(
                model=selected_model,
                provider="vllm",
                api_key=vllm_cfg.api_key or None,
                api_base=vllm_cfg.api_base,
            )

        for provider_name, provider_cfg in providers.items():
            if provider_cfg.api_key:
                return LLMRoute(
                    model=selected_model,
                    provider=provider_name,
                    api_key=provider_cfg.api_key,
                    api_base=self._provider_base(provider_name, provider_cfg),
                )

        return LLMRoute(model=selected_model, provider="unresolved")

    def get_provider(self, model: str | None = None) -> ProviderConfig | None:
        """Provider config serving the given model, if any."""
        route = self.resolve_model_route(model)
        return self._provider_map().get(route.provider)

    model_config = SettingsConfigDict(
        env_prefix="WABOT_",
        env_nested_delimiter="__",
    )
