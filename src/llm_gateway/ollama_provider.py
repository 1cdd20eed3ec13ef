"""Ollama provider — local HTTP daemon exposing ``/api/chat``."""

from __future__ import annotations

from .context_window import prepare_messages
from .errors import InvalidUpstreamResponse, MissingParameter
from .http_client import DEFAULT_TIMEOUT, get_json, post_json
from .provider import LLMProvider, ProviderContext, ProviderResult


class OllamaProvider(LLMProvider):
    """Non-streaming chat against an Ollama daemon.

    Both ``base_url`` and ``model`` must come with the request; there is no
    implicit default daemon.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._timeout = timeout

    def name(self) -> str:
        return "ollama"

    async def chat(self, ctx: ProviderContext) -> ProviderResult:
        if not ctx.base_url:
            raise MissingParameter("base_url", self.name())
        if not ctx.model:
            raise MissingParameter("model", self.name())

        messages = prepare_messages(ctx.messages, self.name())
        url = f"{ctx.base_url.rstrip('/')}/api/chat"
        payload = {
            "model": ctx.model,
            "messages": [m.model_dump(mode="json") for m in messages],
            "stream": False,
        }
        data = await post_json(url, payload, timeout=self._timeout)

        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            msg = f"Ollama response from {url} missing message.content"
            raise InvalidUpstreamResponse(msg)
        return ProviderResult(text=content.strip())

    async def list_models(self, base_url: str) -> list[str]:
        """Return the model names installed on the daemon."""
        data = await get_json(f"{base_url.rstrip('/')}/api/tags", timeout=self._timeout)
        models = data.get("models", []) if isinstance(data, dict) else []
        return [m["name"] for m in models if isinstance(m, dict) and "name" in m]
