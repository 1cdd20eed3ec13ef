"""Codex CLI provider — runs ``codex exec`` as a subprocess for LLM inference."""

from __future__ import annotations

import shutil
from pathlib import Path

from .command_runner import DEFAULT_TIMEOUT_MS, run_command_llm
from .context_window import prepare_messages
from .errors import CommandNotFound, MissingParameter
from .provider import ChatMessage, ChatRole, LLMProvider, ProviderContext, ProviderResult

_NOT_INSTALLED = "Codex CLI is not installed. Make sure 'codex' is on PATH."


class CodexCliProvider(LLMProvider):
    """LLM provider that delegates to the ``codex`` CLI.

    The flattened conversation is piped on stdin to
    ``codex exec [-m model] --color never -- -``, so the user's existing
    Codex CLI login is used and no API key is needed.
    """

    def __init__(
        self,
        cwd: Path | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self._cwd = cwd
        self._timeout_ms = timeout_ms

    def name(self) -> str:
        return "codex"

    @staticmethod
    def find_executable() -> str | None:
        """Locate the codex CLI.

        On Windows, npm-installed CLIs are ``.cmd`` batch scripts, so we
        also look for ``codex.cmd``.
        """
        return shutil.which("codex") or shutil.which("codex.cmd")

    def is_available(self) -> bool:
        return self.find_executable() is not None

    async def chat(self, ctx: ProviderContext) -> ProviderResult:
        """Send the optimized history through ``codex exec``."""
        messages = prepare_messages(ctx.messages, self.name())
        conversation = [m for m in messages if m.role != ChatRole.SYSTEM]
        if not conversation or conversation[-1].role != ChatRole.USER:
            raise MissingParameter("user message", self.name())

        codex_bin = self.find_executable()
        if codex_bin is None:
            raise CommandNotFound(_NOT_INSTALLED, command="codex")

        try:
            text = await run_command_llm(
                codex_bin,
                self._build_args(ctx.model),
                input=self._build_prompt(messages),
                timeout_ms=self._timeout_ms,
                cwd=self._cwd,
            )
        except CommandNotFound as exc:
            raise CommandNotFound(_NOT_INSTALLED, command=codex_bin) from exc
        return ProviderResult(text=text)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _build_args(model: str | None) -> list[str]:
        args = ["exec"]
        if model:
            args += ["-m", model]
        args += ["--color", "never", "--", "-"]
        return args

    @staticmethod
    def _build_prompt(messages: list[ChatMessage]) -> str:
        """Flatten messages into role-labeled blocks with a trailing cue."""
        labels = {
            ChatRole.SYSTEM: "System",
            ChatRole.USER: "User",
            ChatRole.ASSISTANT: "Assistant",
        }
        body = "\n\n".join(f"{labels[m.role]}: {m.content}" for m in messages)
        return f"{body}\n\nAssistant:"
