"""Provider abstraction — normalized request/response types and the handler ABC."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class ChatRole(StrEnum):
    """Role of a message participant."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """Single message in a conversation."""

    role: ChatRole
    content: str


class TokenUsage(BaseModel):
    """Token consumption reported by an upstream provider.

    Upstream usage blocks often carry extra keys; only the three counters
    are kept.
    """

    model_config = ConfigDict(extra="ignore")

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class ProviderContext(BaseModel):
    """Normalized request handed to a provider handler."""

    messages: list[ChatMessage]
    model: str | None = None
    base_url: str | None = None
    api_key: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    command: str | None = None


class ProviderResult(BaseModel):
    """Normalized response returned by a provider handler."""

    text: str
    usage: TokenUsage | None = None


class ProviderConfig(BaseModel):
    """A runtime-registered OpenAI-compatible endpoint."""

    name: str
    base_url: str
    api_key: str | None = None
    default_model: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    models: list[str] = Field(default_factory=list)
    description: str | None = None

    @field_validator("name", "base_url")
    @classmethod
    def _require_non_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            msg = "must not be empty"
            raise ValueError(msg)
        return stripped


# ---------------------------------------------------------------------------
# LLMProvider ABC
# ---------------------------------------------------------------------------


class LLMProvider(ABC):
    """Abstract base class for provider handlers."""

    @abstractmethod
    def name(self) -> str:
        """Return the canonical provider name (e.g. 'ollama', 'codex')."""

    @abstractmethod
    async def chat(self, ctx: ProviderContext) -> ProviderResult:
        """Produce a chat completion for the given context."""
