"""Shared fixtures."""

from __future__ import annotations

import pytest

from llm_gateway import context_window


def word_count(text: str) -> int:
    """Deterministic tokenizer stand-in: one token per whitespace-separated word."""
    return len(text.split())


@pytest.fixture(autouse=True)
def _offline_tokenizer(monkeypatch: pytest.MonkeyPatch) -> None:
    # tiktoken fetches its BPE ranks over the network on first use.
    monkeypatch.setattr(context_window, "count_text_tokens", word_count)
