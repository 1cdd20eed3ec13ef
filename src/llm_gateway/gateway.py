"""Request/response contract consumed by HTTP façades and tool adapters.

``ChatGateway`` turns a wire-level ``ChatRequest`` into a
``ProviderContext``, dispatches it through the registry and folds every
gateway failure into ``ChatResponse(ok=False, error=...)``.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from .errors import GatewayError, MissingParameter, UnknownProvider
from .gpt4free_provider import Gpt4FreeProvider
from .ollama_provider import OllamaProvider
from .openai_provider import list_openai_models
from .provider import ChatMessage, ChatRole, ProviderContext, TokenUsage
from .registry import ProviderRegistry

logger = logging.getLogger(__name__)

_ROLES = frozenset(r.value for r in ChatRole)


class ChatRequest(BaseModel):
    """Inbound chat request."""

    provider: str
    messages: list[ChatMessage] = Field(default_factory=list)
    model: str | None = None
    base_url: str | None = None
    api_key: str | None = None
    command: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


class ChatResponse(BaseModel):
    """Outbound chat response."""

    ok: bool
    text: str | None = None
    error: str | None = None
    usage: TokenUsage | None = None


class ModelListResponse(BaseModel):
    """Outbound model listing."""

    ok: bool
    models: list[str] = Field(default_factory=list)
    error: str | None = None


def _as_str(value: Any) -> str | None:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _as_number(value: Any) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


def parse_chat_request(payload: dict[str, Any]) -> ChatRequest:
    """Build a ``ChatRequest`` from loosely-typed JSON.

    Malformed messages are dropped and blank strings become ``None``.
    """
    raw_messages = payload.get("messages")
    messages = [
        ChatMessage(role=m["role"], content=m["content"])
        for m in (raw_messages if isinstance(raw_messages, list) else [])
        if isinstance(m, dict) and m.get("role") in _ROLES and isinstance(m.get("content"), str)
    ]
    max_tokens = _as_number(payload.get("max_tokens"))
    return ChatRequest(
        provider=_as_str(payload.get("provider")) or "",
        messages=messages,
        model=_as_str(payload.get("model")),
        base_url=_as_str(payload.get("base_url")),
        api_key=_as_str(payload.get("api_key")),
        command=_as_str(payload.get("command")),
        temperature=_as_number(payload.get("temperature")),
        max_tokens=int(max_tokens) if max_tokens is not None else None,
    )


class ChatGateway:
    """Front door of the gateway."""

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Run *request* and report the outcome without raising gateway errors."""
        if not request.provider:
            return ChatResponse(ok=False, error="Missing provider")
        if not self._registry.has_provider(request.provider):
            error = UnknownProvider(request.provider, self._registry.get_provider_names())
            return ChatResponse(ok=False, error=str(error))
        if not request.messages:
            return ChatResponse(ok=False, error="Missing or empty messages array")

        ctx = ProviderContext(
            messages=request.messages,
            model=request.model,
            base_url=request.base_url,
            api_key=request.api_key,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            command=request.command,
        )
        try:
            result = await self._registry.run_provider(request.provider, ctx)
        except GatewayError as exc:
            logger.warning("Provider %s failed: %s", request.provider, exc)
            return ChatResponse(ok=False, error=str(exc))
        return ChatResponse(ok=True, text=result.text, usage=result.usage)

    async def chat_from_dict(self, payload: dict[str, Any]) -> ChatResponse:
        return await self.chat(parse_chat_request(payload))

    async def list_models(
        self,
        provider: str,
        base_url: str | None = None,
        api_key: str | None = None,
    ) -> ModelListResponse:
        """List models for ``ollama``, ``openai_compatible``, ``gpt4free`` or a dynamic entry."""
        try:
            models = await self._list_models(provider, base_url, api_key)
        except GatewayError as exc:
            return ModelListResponse(ok=False, error=str(exc))
        return ModelListResponse(ok=True, models=models)

    async def _list_models(
        self,
        provider: str,
        base_url: str | None,
        api_key: str | None,
    ) -> list[str]:
        handler = self._registry.get(provider)

        if isinstance(handler, Gpt4FreeProvider):
            return await handler.list_models()
        if isinstance(handler, OllamaProvider):
            if not base_url:
                raise MissingParameter("base_url", provider)
            return await handler.list_models(base_url)

        config = self._registry.get_provider_config(provider)
        if config is not None:
            return await list_openai_models(base_url or config.base_url, api_key or config.api_key)
        if provider == "openai_compatible":
            if not base_url:
                raise MissingParameter("base_url", provider)
            return await list_openai_models(base_url, api_key)

        msg = f"Provider '{provider}' does not support model listing"
        raise GatewayError(msg)

    def describe(self) -> dict[str, Any]:
        """Summarize registered providers with API keys redacted."""
        configs = {
            name: cfg.model_dump(exclude={"api_key"}) | {"has_api_key": bool(cfg.api_key)}
            for name, cfg in self._registry.get_all_provider_configs().items()
        }
        return {
            "static": self._registry.get_static_provider_names(),
            "dynamic": self._registry.get_dynamic_provider_names(),
            "all": self._registry.get_provider_names(),
            "configs": configs,
        }
