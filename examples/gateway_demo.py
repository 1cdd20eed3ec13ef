"""LLM Gateway demo.

Walks through the gateway without any hosted LLM:
1. Context optimizer trims a long conversation to a provider budget
2. The opt-in command provider answers using a local Python one-liner
3. A dynamic OpenAI-compatible endpoint is registered and removed
4. Failures come back as ``ok=False`` responses instead of exceptions

The first run may fetch the tiktoken vocabulary.

Run: python examples/gateway_demo.py
"""

from __future__ import annotations

import asyncio
import shlex
import sys

from llm_gateway import (
    ChatGateway,
    ChatMessage,
    ChatRequest,
    ChatRole,
    GatewayConfig,
    ProviderConfig,
    ProviderRegistry,
    optimize_messages_for_context,
)


def _check(condition: bool, msg: str) -> None:  # noqa: FBT001
    """Raise RuntimeError if *condition* is False (demo validation)."""
    if not condition:
        raise RuntimeError(msg)


def _word_count(text: str) -> int:
    return len(text.split())


async def run_demo() -> None:
    print("=" * 60)
    print("LLM Gateway Demo")
    print("=" * 60)

    # ------------------------------------------------------------------
    # Step 1: Context optimization
    # ------------------------------------------------------------------
    print("\n[1/4] Trimming a long conversation...")
    history = [ChatMessage(role=ChatRole.SYSTEM, content="You are terse.")]
    for i in range(20):
        role = ChatRole.USER if i % 2 == 0 else ChatRole.ASSISTANT
        history.append(ChatMessage(role=role, content=f"turn {i} " + "word " * 40))
    kept = optimize_messages_for_context(history, max_tokens=300, counter=_word_count)
    print(f"  Messages in : {len(history)}")
    print(f"  Messages out: {len(kept)}")
    _check(kept[0].role == ChatRole.SYSTEM, "System prompt must survive trimming")
    _check(kept[-1] == history[-1], "Latest message must survive trimming")

    # ------------------------------------------------------------------
    # Step 2: Command provider
    # ------------------------------------------------------------------
    print("\n[2/4] Dispatching to the command provider...")
    config = GatewayConfig.from_env()
    config.enable_command_llm = True
    gateway = ChatGateway(ProviderRegistry.with_defaults(config))

    script = "import sys; print(len(sys.stdin.read().split()), 'words received')"
    command = f"{shlex.quote(sys.executable)} -c {shlex.quote(script)}"
    response = await gateway.chat(
        ChatRequest(
            provider="command",
            command=command,
            messages=[ChatMessage(role=ChatRole.USER, content="Count these words please")],
        )
    )
    print(f"  ok   : {response.ok}")
    print(f"  text : {response.text}")
    _check(response.ok, f"Command provider failed: {response.error}")

    # ------------------------------------------------------------------
    # Step 3: Dynamic providers
    # ------------------------------------------------------------------
    print("\n[3/4] Registering a dynamic provider...")
    registry = gateway.registry
    registry.register_provider(
        ProviderConfig(name="local-vllm", base_url="http://127.0.0.1:8000", default_model="qwen")
    )
    print(f"  Providers: {', '.join(registry.get_provider_names())}")
    _check(registry.has_provider("local-vllm"), "Dynamic provider missing after register")
    _check(registry.unregister_provider("local-vllm"), "Unregister should report removal")

    # ------------------------------------------------------------------
    # Step 4: Error reporting
    # ------------------------------------------------------------------
    print("\n[4/4] Error responses...")
    unknown = await gateway.chat_from_dict(
        {"provider": "local-vllm", "messages": [{"role": "user", "content": "hi"}]}
    )
    print(f"  unknown : {unknown.error}")
    empty = await gateway.chat_from_dict({"provider": "ollama", "messages": []})
    print(f"  empty   : {empty.error}")
    _check(not unknown.ok and not empty.ok, "Invalid requests must not succeed")

    print("\n" + "=" * 60)
    print("Gateway demo complete -- all checks passed!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(run_demo())
