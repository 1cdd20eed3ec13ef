"""Provider registry — maps provider names to handlers.

Static handlers are installed once at construction. Dynamic entries are
OpenAI-compatible endpoints registered at runtime; they are checked first
on dispatch and may never shadow a static name.
"""

from __future__ import annotations

import logging

from .codex_provider import CodexCliProvider
from .command_provider import CommandProvider
from .config import GatewayConfig
from .errors import ProviderConfigError, UnknownProvider
from .gpt4free_provider import Gpt4FreeProvider
from .ollama_provider import OllamaProvider
from .openai_provider import DynamicOpenAIProvider, OpenAICompatibleProvider
from .provider import LLMProvider, ProviderConfig, ProviderContext, ProviderResult
from .sidecar import SidecarManager
from .telemetry import trace_provider_call

logger = logging.getLogger(__name__)

DEFAULT_DYNAMIC_PROVIDERS: tuple[ProviderConfig, ...] = (
    ProviderConfig(
        name="openai",
        base_url="https://api.openai.com",
        default_model="gpt-4o",
        models=["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"],
        description="OpenAI Official API",
    ),
    ProviderConfig(
        name="groq",
        base_url="https://api.groq.com/openai",
        default_model="llama-3.3-70b-versatile",
        models=["llama-3.3-70b-versatile", "llama-3.1-8b-instant", "mixtral-8x7b-32768"],
        description="Groq Cloud - Ultra-fast inference",
    ),
    ProviderConfig(
        name="together",
        base_url="https://api.together.xyz",
        default_model="meta-llama/Llama-3.3-70B-Instruct-Turbo",
        models=[
            "meta-llama/Llama-3.3-70B-Instruct-Turbo",
            "mistralai/Mixtral-8x7B-Instruct-v0.1",
        ],
        description="Together AI - Open source models",
    ),
    ProviderConfig(
        name="openrouter",
        base_url="https://openrouter.ai/api",
        default_model="anthropic/claude-3.5-sonnet",
        models=["anthropic/claude-3.5-sonnet", "openai/gpt-4o", "google/gemini-pro-1.5"],
        description="OpenRouter - Multi-provider gateway",
    ),
)


class ProviderRegistry:
    """Resolves provider names to handlers and dispatches requests."""

    def __init__(self, static_providers: list[LLMProvider] | None = None) -> None:
        self._static: dict[str, LLMProvider] = {}
        self._dynamic: dict[str, DynamicOpenAIProvider] = {}
        for provider in static_providers or []:
            self.register_static(provider)

    # -- registration -------------------------------------------------------

    def register_static(self, provider: LLMProvider) -> None:
        """Install a built-in handler under its canonical name."""
        name = provider.name()
        if name in self._dynamic:
            msg = f"Static provider '{name}' collides with a dynamic provider"
            raise ProviderConfigError(msg)
        self._static[name] = provider

    def register_provider(self, config: ProviderConfig) -> None:
        """Add or replace a dynamic OpenAI-compatible provider.

        Raises:
            ProviderConfigError: *config.name* is a static provider name.
        """
        if config.name in self._static:
            msg = f"Provider name '{config.name}' is reserved by a static provider"
            raise ProviderConfigError(msg)
        replaced = config.name in self._dynamic
        self._dynamic[config.name] = DynamicOpenAIProvider(config.model_copy(deep=True))
        logger.info(
            "%s dynamic provider %s (%s)",
            "Replaced" if replaced else "Registered",
            config.name,
            config.base_url,
        )

    def unregister_provider(self, name: str) -> bool:
        """Remove a dynamic provider. Returns False if it was not registered."""
        if self._dynamic.pop(name, None) is None:
            return False
        logger.info("Unregistered dynamic provider %s", name)
        return True

    def clear_dynamic_providers(self) -> None:
        self._dynamic.clear()

    # -- lookup -------------------------------------------------------------

    def has_provider(self, name: str) -> bool:
        return name in self._dynamic or name in self._static

    def get_static_provider_names(self) -> list[str]:
        return list(self._static)

    def get_dynamic_provider_names(self) -> list[str]:
        return list(self._dynamic)

    def get_provider_names(self) -> list[str]:
        """Return static names followed by dynamic names."""
        return [*self._static, *self._dynamic]

    def get_provider_config(self, name: str) -> ProviderConfig | None:
        provider = self._dynamic.get(name)
        return provider.config.model_copy(deep=True) if provider else None

    def get_all_provider_configs(self) -> dict[str, ProviderConfig]:
        return {name: p.config.model_copy(deep=True) for name, p in self._dynamic.items()}

    def get(self, name: str) -> LLMProvider:
        """Resolve *name*, dynamic entries first.

        Raises:
            UnknownProvider: Neither registry knows *name*.
        """
        provider = self._dynamic.get(name) or self._static.get(name)
        if provider is None:
            raise UnknownProvider(name, self.get_provider_names())
        return provider

    # -- dispatch -----------------------------------------------------------

    async def run_provider(self, name: str, ctx: ProviderContext) -> ProviderResult:
        """Dispatch *ctx* to the provider registered as *name*."""
        provider = self.get(name)
        logger.debug("Running provider %s with %d messages", name, len(ctx.messages))
        with trace_provider_call(name):
            return await provider.chat(ctx)

    # -- factory ------------------------------------------------------------

    @classmethod
    def with_defaults(
        cls,
        config: GatewayConfig | None = None,
        sidecar: SidecarManager | None = None,
    ) -> ProviderRegistry:
        """Create a registry with the built-in providers and default endpoints."""
        cfg = config or GatewayConfig.from_env()
        manager = sidecar or SidecarManager.from_config(cfg)
        registry = cls(
            [
                OllamaProvider(),
                OpenAICompatibleProvider(),
                Gpt4FreeProvider(manager),
                CodexCliProvider(cwd=cfg.root_dir, timeout_ms=cfg.command_timeout_ms),
                CommandProvider(
                    enabled=cfg.enable_command_llm,
                    cwd=cfg.root_dir,
                    timeout_ms=cfg.command_timeout_ms,
                ),
            ]
        )
        for provider_config in DEFAULT_DYNAMIC_PROVIDERS:
            registry.register_provider(provider_config)
        return registry
