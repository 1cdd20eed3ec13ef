"""Context window optimizer — token counting and sliding-window trimming.

System messages are always kept in full. The most recent conversation
message is always kept, even when it alone exceeds the budget. Older
messages are added newest-first until the first one that does not fit.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from functools import lru_cache

import tiktoken

from .provider import ChatMessage, ChatRole

logger = logging.getLogger(__name__)

TokenCounter = Callable[[str], int]

# Role and formatting cost added to every message.
MESSAGE_OVERHEAD_TOKENS = 4
# Reserved for prompt formatting on top of the system messages.
FORMATTING_RESERVE_TOKENS = 100

DEFAULT_MAX_CONTEXT_TOKENS = 8_000

CONTEXT_TOKEN_LIMITS: dict[str, int] = {
    "ollama": 8_000,
    "openai_compatible": 128_000,
    "gpt4free": 16_000,
    "codex": 32_000,
    "command": 8_000,
}

_ENCODING_NAME = "cl100k_base"


@lru_cache(maxsize=1)
def _encoding() -> tiktoken.Encoding:
    return tiktoken.get_encoding(_ENCODING_NAME)


def count_text_tokens(text: str) -> int:
    """Return the BPE token count of *text*."""
    if not text:
        return 0
    return len(_encoding().encode(text, disallowed_special=()))


def count_message_tokens(message: ChatMessage, counter: TokenCounter | None = None) -> int:
    """Count tokens for one message, including the per-message overhead."""
    count = counter or count_text_tokens
    return count(message.content) + MESSAGE_OVERHEAD_TOKENS


def count_total_tokens(
    messages: Sequence[ChatMessage],
    counter: TokenCounter | None = None,
) -> int:
    """Count tokens for a list of messages."""
    return sum(count_message_tokens(m, counter) for m in messages)


def optimize_messages_for_context(
    messages: Sequence[ChatMessage],
    max_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS,
    counter: TokenCounter | None = None,
) -> list[ChatMessage]:
    """Trim *messages* to fit *max_tokens* using a sliding window.

    Returns all system messages (original order) followed by the most
    recent conversation messages that fit, in chronological order.
    """
    system_messages = [m for m in messages if m.role == ChatRole.SYSTEM]
    conversation = [m for m in messages if m.role != ChatRole.SYSTEM]

    system_tokens = count_total_tokens(system_messages, counter)
    budget = max_tokens - system_tokens - FORMATTING_RESERVE_TOKENS

    if budget <= 0:
        logger.warning(
            "Token budget exhausted by system messages alone (%d system tokens, limit %d)",
            system_tokens,
            max_tokens,
        )
        return system_messages

    if not conversation:
        return system_messages

    # The current message is always sent, whatever it costs.
    kept: list[ChatMessage] = [conversation[-1]]
    used = count_message_tokens(conversation[-1], counter)

    for index in range(len(conversation) - 2, -1, -1):
        msg = conversation[index]
        msg_tokens = count_message_tokens(msg, counter)
        if used + msg_tokens > budget:
            logger.warning(
                "Dropped %d oldest messages to fit context window of %d tokens",
                index + 1,
                max_tokens,
            )
            break
        used += msg_tokens
        kept.append(msg)

    kept.reverse()
    return [*system_messages, *kept]


def format_messages_as_prompt(messages: Sequence[ChatMessage]) -> str:
    """Flatten a conversation into a single prompt for stdin-driven CLI tools."""
    parts: list[str] = []

    system_messages = [m for m in messages if m.role == ChatRole.SYSTEM]
    if system_messages:
        parts.append("System Instructions:")
        parts.append("\n".join(m.content for m in system_messages))
        parts.append("")

    conversation = [m for m in messages if m.role != ChatRole.SYSTEM]
    if len(conversation) > 1:
        parts.append("Conversation History:")
        for msg in conversation[:-1]:
            label = "User" if msg.role == ChatRole.USER else "Assistant"
            parts.append(f"{label}: {msg.content}")
        parts.append("")

    if conversation:
        parts.append("Current Message:")
        parts.append(conversation[-1].content)
        parts.append("")
        parts.append(
            "Please respond to the current message, "
            "considering the conversation history above."
        )

    return "\n".join(parts)


def get_provider_token_limit(provider: str) -> int:
    """Return the context token limit for *provider*."""
    return CONTEXT_TOKEN_LIMITS.get(provider, DEFAULT_MAX_CONTEXT_TOKENS)


def prepare_messages(
    messages: Sequence[ChatMessage],
    provider: str,
    counter: TokenCounter | None = None,
) -> list[ChatMessage]:
    """Trim *messages* to the token limit of *provider*."""
    return optimize_messages_for_context(messages, get_provider_token_limit(provider), counter)
