"""Tests for the provider registry."""

from __future__ import annotations

import logging

import pytest

from llm_gateway.codex_provider import CodexCliProvider
from llm_gateway.command_provider import CommandProvider
from llm_gateway.config import GatewayConfig
from llm_gateway.errors import ProviderConfigError, ProviderDisabled, UnknownProvider
from llm_gateway.gpt4free_provider import Gpt4FreeProvider
from llm_gateway.openai_provider import DynamicOpenAIProvider
from llm_gateway.provider import (
    ChatMessage,
    ChatRole,
    LLMProvider,
    ProviderConfig,
    ProviderContext,
    ProviderResult,
)
from llm_gateway.registry import DEFAULT_DYNAMIC_PROVIDERS, ProviderRegistry
from llm_gateway.sidecar import SidecarManager


class EchoProvider(LLMProvider):
    """Returns the last user message back."""

    def __init__(self, provider_name: str = "echo") -> None:
        self._name = provider_name
        self.calls: list[ProviderContext] = []

    def name(self) -> str:
        return self._name

    async def chat(self, ctx: ProviderContext) -> ProviderResult:
        self.calls.append(ctx)
        return ProviderResult(text=f"{self._name}: {ctx.messages[-1].content}")


def _ctx(text: str = "ping") -> ProviderContext:
    return ProviderContext(messages=[ChatMessage(role=ChatRole.USER, content=text)])


def _config(name: str = "local", base_url: str = "http://localhost:8000") -> ProviderConfig:
    return ProviderConfig(name=name, base_url=base_url, default_model="m")


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def test_register_and_list_dynamic_provider():
    registry = ProviderRegistry([EchoProvider()])
    registry.register_provider(_config())

    assert registry.has_provider("local")
    assert registry.get_static_provider_names() == ["echo"]
    assert registry.get_dynamic_provider_names() == ["local"]
    assert registry.get_provider_names() == ["echo", "local"]
    assert isinstance(registry.get("local"), DynamicOpenAIProvider)


def test_register_replaces_existing_entry(caplog: pytest.LogCaptureFixture):
    registry = ProviderRegistry()
    registry.register_provider(_config())
    with caplog.at_level(logging.INFO, logger="llm_gateway.registry"):
        registry.register_provider(_config(base_url="http://localhost:9000"))

    config = registry.get_provider_config("local")
    assert config is not None
    assert config.base_url == "http://localhost:9000"
    assert registry.get_dynamic_provider_names() == ["local"]
    assert "Replaced dynamic provider local" in caplog.text


def test_dynamic_name_cannot_shadow_static():
    registry = ProviderRegistry([EchoProvider("ollama")])
    with pytest.raises(ProviderConfigError, match="reserved"):
        registry.register_provider(_config(name="ollama"))
    assert registry.get_dynamic_provider_names() == []


def test_provider_config_rejects_blank_base_url():
    with pytest.raises(ValueError, match="base_url"):
        ProviderConfig(name="bad", base_url="   ")


def test_unregister_provider():
    registry = ProviderRegistry()
    registry.register_provider(_config())

    assert registry.unregister_provider("local") is True
    assert registry.unregister_provider("local") is False
    assert not registry.has_provider("local")


def test_unregister_does_not_touch_static():
    registry = ProviderRegistry([EchoProvider()])
    assert registry.unregister_provider("echo") is False
    assert registry.has_provider("echo")


def test_clear_dynamic_providers_keeps_static():
    registry = ProviderRegistry([EchoProvider()])
    registry.register_provider(_config("a"))
    registry.register_provider(_config("b"))

    registry.clear_dynamic_providers()

    assert registry.get_provider_names() == ["echo"]


def test_returned_configs_are_copies():
    registry = ProviderRegistry()
    registry.register_provider(_config())

    snapshot = registry.get_provider_config("local")
    assert snapshot is not None
    snapshot.models.append("mutated")
    registry.get_all_provider_configs()["local"].headers["X"] = "y"

    stored = registry.get_provider_config("local")
    assert stored is not None
    assert stored.models == []
    assert stored.headers == {}


def test_registered_config_is_detached_from_caller():
    registry = ProviderRegistry()
    config = _config()
    registry.register_provider(config)
    config.models.append("late")

    stored = registry.get_provider_config("local")
    assert stored is not None
    assert stored.models == []


def test_get_provider_config_for_static_is_none():
    registry = ProviderRegistry([EchoProvider()])
    assert registry.get_provider_config("echo") is None


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def test_unknown_provider_lists_available():
    registry = ProviderRegistry([EchoProvider()])
    registry.register_provider(_config())

    with pytest.raises(UnknownProvider) as exc_info:
        registry.get("nope")

    assert str(exc_info.value) == "Unknown provider: nope. Available providers: echo, local"
    assert exc_info.value.available == ["echo", "local"]


@pytest.mark.asyncio
async def test_run_provider_dispatches_to_static():
    echo = EchoProvider()
    registry = ProviderRegistry([echo])

    result = await registry.run_provider("echo", _ctx("hello"))

    assert result.text == "echo: hello"
    assert len(echo.calls) == 1


@pytest.mark.asyncio
async def test_run_provider_unknown_raises():
    with pytest.raises(UnknownProvider, match="Available providers: none"):
        await ProviderRegistry().run_provider("ghost", _ctx())


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def _defaults(**config_kwargs) -> ProviderRegistry:
    return ProviderRegistry.with_defaults(GatewayConfig(**config_kwargs), sidecar=SidecarManager())


def test_with_defaults_installs_builtin_providers():
    registry = _defaults()

    assert registry.get_static_provider_names() == [
        "ollama",
        "openai_compatible",
        "gpt4free",
        "codex",
        "command",
    ]
    assert registry.get_dynamic_provider_names() == [c.name for c in DEFAULT_DYNAMIC_PROVIDERS]
    assert isinstance(registry.get("gpt4free"), Gpt4FreeProvider)
    assert isinstance(registry.get("codex"), CodexCliProvider)


def test_default_dynamic_providers():
    names = {c.name: c for c in DEFAULT_DYNAMIC_PROVIDERS}
    assert list(names) == ["openai", "groq", "together", "openrouter"]
    assert names["openai"].base_url == "https://api.openai.com"
    assert names["groq"].base_url == "https://api.groq.com/openai"
    assert all(c.api_key is None for c in DEFAULT_DYNAMIC_PROVIDERS)


def test_with_defaults_shares_sidecar():
    manager = SidecarManager()
    registry = ProviderRegistry.with_defaults(GatewayConfig(), sidecar=manager)
    provider = registry.get("gpt4free")
    assert isinstance(provider, Gpt4FreeProvider)
    assert provider.sidecar is manager


@pytest.mark.asyncio
async def test_with_defaults_command_disabled_by_default():
    registry = _defaults()
    assert isinstance(registry.get("command"), CommandProvider)

    ctx = ProviderContext(
        messages=[ChatMessage(role=ChatRole.USER, content="hi")], command="echo hi"
    )
    with pytest.raises(ProviderDisabled, match="ENABLE_COMMAND_LLM=1"):
        await registry.run_provider("command", ctx)
