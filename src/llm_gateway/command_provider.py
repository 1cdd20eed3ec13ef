"""Generic command provider — runs an arbitrary CLI as an LLM backend.

Disabled unless ``ENABLE_COMMAND_LLM`` is set: whoever can send a request
can run any executable on the host.
"""

from __future__ import annotations

import shlex
from pathlib import Path

from .command_runner import DEFAULT_TIMEOUT_MS, run_command_llm
from .context_window import prepare_messages
from .errors import MissingParameter, ProviderDisabled
from .provider import ChatMessage, LLMProvider, ProviderContext, ProviderResult


class CommandProvider(LLMProvider):
    """Pipes the conversation to a user-supplied command on stdin."""

    def __init__(
        self,
        enabled: bool = False,  # noqa: FBT001, FBT002
        cwd: Path | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self._enabled = enabled
        self._cwd = cwd
        self._timeout_ms = timeout_ms

    def name(self) -> str:
        return "command"

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def chat(self, ctx: ProviderContext) -> ProviderResult:
        if not self._enabled:
            msg = "Command LLM is disabled. Start with ENABLE_COMMAND_LLM=1"
            raise ProviderDisabled(msg)
        if not ctx.command:
            raise MissingParameter("command", self.name())

        argv = shlex.split(ctx.command)
        if not argv:
            raise MissingParameter("command", self.name())

        messages = prepare_messages(ctx.messages, self.name())
        text = await run_command_llm(
            argv[0],
            argv[1:],
            input=self._build_prompt(messages),
            timeout_ms=self._timeout_ms,
            cwd=self._cwd,
        )
        return ProviderResult(text=text)

    @staticmethod
    def _build_prompt(messages: list[ChatMessage]) -> str:
        return "\n\n".join(f"{m.role}: {m.content}" for m in messages)
