"""gpt4free provider — OpenAI-compatible calls against the managed sidecar."""

from __future__ import annotations

from .context_window import prepare_messages
from .http_client import DEFAULT_TIMEOUT
from .openai_provider import list_openai_models, run_openai_compatible
from .provider import LLMProvider, ProviderContext, ProviderResult
from .sidecar import SidecarManager

DEFAULT_MODEL = "gpt-4o-mini"


class Gpt4FreeProvider(LLMProvider):
    """Starts the sidecar on demand and talks to it like any OpenAI endpoint."""

    def __init__(
        self,
        sidecar: SidecarManager,
        default_model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._sidecar = sidecar
        self._default_model = default_model
        self._timeout = timeout

    def name(self) -> str:
        return "gpt4free"

    @property
    def sidecar(self) -> SidecarManager:
        return self._sidecar

    async def chat(self, ctx: ProviderContext) -> ProviderResult:
        await self._sidecar.ensure_running()
        return await run_openai_compatible(
            self._sidecar.base_url,
            ctx.model or self._default_model,
            prepare_messages(ctx.messages, self.name()),
            api_key=ctx.api_key,
            temperature=ctx.temperature,
            max_tokens=ctx.max_tokens,
            timeout=self._timeout,
        )

    async def list_models(self) -> list[str]:
        """Return the sidecar's models, or an empty list if it is down."""
        if not await self._sidecar.is_healthy():
            return []
        return await list_openai_models(self._sidecar.base_url, timeout=self._timeout)
