"""OpenAI-compatible providers — OpenAI, Groq, Together, OpenRouter, and friends."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from .context_window import prepare_messages
from .errors import InvalidUpstreamResponse, MissingParameter
from .http_client import DEFAULT_TIMEOUT, build_openai_url, get_json, post_json
from .provider import (
    ChatMessage,
    LLMProvider,
    ProviderConfig,
    ProviderContext,
    ProviderResult,
    TokenUsage,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7

# Every OpenAI-compatible endpoint shares one context budget.
TOKEN_LIMIT_KEY = "openai_compatible"


def _auth_headers(api_key: str | None, extra: dict[str, str] | None = None) -> dict[str, str]:
    headers = dict(extra or {})
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def _parse_usage(raw: Any) -> TokenUsage | None:
    if not isinstance(raw, dict):
        return None
    try:
        return TokenUsage.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Ignoring malformed usage block: %s", exc.errors(include_url=False))
        return None


async def run_openai_compatible(
    base_url: str,
    model: str,
    messages: list[ChatMessage],
    api_key: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    headers: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> ProviderResult:
    """POST a chat completion and normalize the reply.

    Raises:
        UpstreamHTTPError: Non-2xx status or network failure.
        InvalidUpstreamResponse: ``choices[0].message.content`` missing or blank.
    """
    url = build_openai_url(base_url, "/chat/completions")
    payload: dict[str, Any] = {
        "model": model,
        "messages": [m.model_dump(mode="json") for m in messages],
        "temperature": DEFAULT_TEMPERATURE if temperature is None else temperature,
    }
    if max_tokens:
        payload["max_tokens"] = max_tokens

    data = await post_json(url, payload, _auth_headers(api_key, headers), timeout=timeout)

    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        content = None
    if not isinstance(content, str) or not content.strip():
        msg = "OpenAI-compatible response missing choices[0].message.content"
        raise InvalidUpstreamResponse(msg)

    return ProviderResult(text=content.strip(), usage=_parse_usage(data.get("usage")))


async def list_openai_models(
    base_url: str,
    api_key: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> list[str]:
    """Return model ids advertised by ``/v1/models``."""
    data = await get_json(
        build_openai_url(base_url, "/models"), _auth_headers(api_key), timeout=timeout
    )
    entries = data.get("data", []) if isinstance(data, dict) else []
    return [m["id"] for m in entries if isinstance(m, dict) and "id" in m]


class OpenAICompatibleProvider(LLMProvider):
    """The static ``openai_compatible`` provider: everything comes with the request."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._timeout = timeout

    def name(self) -> str:
        return "openai_compatible"

    async def chat(self, ctx: ProviderContext) -> ProviderResult:
        if not ctx.base_url:
            raise MissingParameter("base_url", self.name())
        if not ctx.model:
            raise MissingParameter("model", self.name())

        return await run_openai_compatible(
            ctx.base_url,
            ctx.model,
            prepare_messages(ctx.messages, TOKEN_LIMIT_KEY),
            api_key=ctx.api_key,
            temperature=ctx.temperature,
            max_tokens=ctx.max_tokens,
            timeout=self._timeout,
        )


class DynamicOpenAIProvider(LLMProvider):
    """A registered endpoint; request values override the stored defaults."""

    def __init__(self, config: ProviderConfig, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._config = config
        self._timeout = timeout

    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> ProviderConfig:
        return self._config

    async def chat(self, ctx: ProviderContext) -> ProviderResult:
        cfg = self._config
        base_url = ctx.base_url or cfg.base_url
        model = ctx.model or cfg.default_model
        api_key = ctx.api_key or cfg.api_key

        if not model:
            raise MissingParameter("model", cfg.name)

        logger.debug("Dispatching to dynamic provider %s (model=%s)", cfg.name, model)
        return await run_openai_compatible(
            base_url,
            model,
            prepare_messages(ctx.messages, TOKEN_LIMIT_KEY),
            api_key=api_key,
            temperature=ctx.temperature,
            max_tokens=ctx.max_tokens,
            headers=cfg.headers,
            timeout=self._timeout,
        )
