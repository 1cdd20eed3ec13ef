"""LLM gateway — provider-agnostic dispatch for chat completions."""

from __future__ import annotations

__version__ = "0.1.0"

from .codex_provider import CodexCliProvider
from .command_provider import CommandProvider
from .command_runner import ShellPolicy, run_command_llm
from .config import GatewayConfig
from .context_window import (
    CONTEXT_TOKEN_LIMITS,
    DEFAULT_MAX_CONTEXT_TOKENS,
    count_message_tokens,
    count_total_tokens,
    format_messages_as_prompt,
    get_provider_token_limit,
    optimize_messages_for_context,
    prepare_messages,
)
from .errors import (
    BinaryDownloadFailed,
    CommandNotFound,
    GatewayError,
    InvalidUpstreamResponse,
    MissingParameter,
    OutputLimitExceeded,
    ProcessFailed,
    ProcessTimeout,
    ProviderConfigError,
    ProviderDisabled,
    SidecarNotReady,
    SidecarStartTimeout,
    UnknownProvider,
    UnsupportedPlatform,
    UpstreamHTTPError,
)
from .gateway import ChatGateway, ChatRequest, ChatResponse, ModelListResponse
from .gpt4free_provider import Gpt4FreeProvider
from .ollama_provider import OllamaProvider
from .openai_provider import DynamicOpenAIProvider, OpenAICompatibleProvider
from .provider import (
    ChatMessage,
    ChatRole,
    LLMProvider,
    ProviderConfig,
    ProviderContext,
    ProviderResult,
    TokenUsage,
)
from .registry import ProviderRegistry
from .sidecar import SidecarManager, SidecarStartResult, SidecarState, SidecarStatus
from .telemetry import GatewayTracer, TelemetryConfig

__all__ = [
    "BinaryDownloadFailed",
    "CONTEXT_TOKEN_LIMITS",
    "ChatGateway",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatRole",
    "CodexCliProvider",
    "CommandNotFound",
    "CommandProvider",
    "DEFAULT_MAX_CONTEXT_TOKENS",
    "DynamicOpenAIProvider",
    "GatewayConfig",
    "GatewayError",
    "GatewayTracer",
    "Gpt4FreeProvider",
    "InvalidUpstreamResponse",
    "LLMProvider",
    "MissingParameter",
    "ModelListResponse",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "OutputLimitExceeded",
    "ProcessFailed",
    "ProcessTimeout",
    "ProviderConfig",
    "ProviderConfigError",
    "ProviderContext",
    "ProviderDisabled",
    "ProviderRegistry",
    "ProviderResult",
    "ShellPolicy",
    "SidecarManager",
    "SidecarNotReady",
    "SidecarStartResult",
    "SidecarStartTimeout",
    "SidecarState",
    "SidecarStatus",
    "TelemetryConfig",
    "TokenUsage",
    "UnknownProvider",
    "UnsupportedPlatform",
    "UpstreamHTTPError",
    "count_message_tokens",
    "count_total_tokens",
    "format_messages_as_prompt",
    "get_provider_token_limit",
    "optimize_messages_for_context",
    "prepare_messages",
    "run_command_llm",
]
