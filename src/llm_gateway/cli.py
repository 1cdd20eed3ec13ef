"""Command-line entry point: ``llm-gateway``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from .config import GatewayConfig
from .gateway import ChatGateway, ChatRequest
from .provider import ChatMessage, ChatRole
from .registry import ProviderRegistry
from .sidecar import SidecarManager
from .telemetry import TelemetryConfig, configure_tracing


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2))  # noqa: T201


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="llm-gateway",
        description="Route chat completions to local and remote LLM providers",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command_name", required=True)

    chat = sub.add_parser("chat", help="Send one message to a provider")
    chat.add_argument("message", help="User message")
    chat.add_argument("--provider", required=True)
    chat.add_argument("--model")
    chat.add_argument("--base-url")
    chat.add_argument("--api-key")
    chat.add_argument("--command", dest="llm_command", help="Command for the 'command' provider")
    chat.add_argument("--system", help="Optional system prompt")
    chat.add_argument("--temperature", type=float)
    chat.add_argument("--max-tokens", type=int)

    sub.add_parser("providers", help="List static and dynamic providers")

    models = sub.add_parser("models", help="List models offered by a provider")
    models.add_argument("--provider", required=True)
    models.add_argument("--base-url")
    models.add_argument("--api-key")

    sidecar = sub.add_parser("sidecar", help="Manage the gpt4free sidecar")
    sidecar_sub = sidecar.add_subparsers(dest="sidecar_action", required=True)
    sidecar_sub.add_parser("status", help="Report installation and health")
    start = sidecar_sub.add_parser("start", help="Start and supervise until interrupted")
    start.add_argument("--force-update", action="store_true", help="Re-download the binary")

    return parser


async def _run_chat(gateway: ChatGateway, args: argparse.Namespace) -> int:
    messages: list[ChatMessage] = []
    if args.system:
        messages.append(ChatMessage(role=ChatRole.SYSTEM, content=args.system))
    messages.append(ChatMessage(role=ChatRole.USER, content=args.message))

    response = await gateway.chat(
        ChatRequest(
            provider=args.provider,
            messages=messages,
            model=args.model,
            base_url=args.base_url,
            api_key=args.api_key,
            command=args.llm_command,
            temperature=args.temperature,
            max_tokens=args.max_tokens,
        )
    )
    _print_json(response.model_dump(exclude_none=True))
    return 0 if response.ok else 1


async def _run_models(gateway: ChatGateway, args: argparse.Namespace) -> int:
    response = await gateway.list_models(args.provider, args.base_url, args.api_key)
    _print_json(response.model_dump(exclude_none=True))
    return 0 if response.ok else 1


async def _run_sidecar(manager: SidecarManager, args: argparse.Namespace) -> int:
    if args.sidecar_action == "status":
        status = await manager.status()
        _print_json(status.model_dump(mode="json"))
        return 0

    result = await manager.start(force_update=args.force_update)
    _print_json({"ok": True, **result.model_dump()})
    # Supervise until the process is interrupted.
    await asyncio.Event().wait()
    return 0


async def async_main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    config = GatewayConfig.from_env()
    configure_tracing(TelemetryConfig(exporter=config.trace_exporter))
    manager = SidecarManager.from_config(config)
    gateway = ChatGateway(ProviderRegistry.with_defaults(config, sidecar=manager))

    try:
        if args.command_name == "chat":
            return await _run_chat(gateway, args)
        if args.command_name == "models":
            return await _run_models(gateway, args)
        if args.command_name == "sidecar":
            return await _run_sidecar(manager, args)
        _print_json(gateway.describe())
        return 0
    finally:
        # A sidecar spawned by this invocation must not outlive it.
        manager.stop()


def main() -> None:
    """Sync wrapper that launches :func:`async_main` via ``asyncio.run``."""
    try:
        code = asyncio.run(async_main())
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
