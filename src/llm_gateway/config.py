"""Gateway configuration — environment-driven, every value optional."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

_TRUTHY = frozenset({"1", "true", "yes", "on"})

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3333
DEFAULT_COMMAND_TIMEOUT_SEC = 120.0
DEFAULT_SIDECAR_URL = "http://127.0.0.1:1337"
DEFAULT_SIDECAR_STARTUP_TIMEOUT_MS = 60_000


def default_install_dir() -> Path:
    """Return the directory downloaded sidecar binaries live in."""
    return Path.home() / ".llm-gateway" / "bin"


def _env_flag(env: dict[str, str], key: str) -> bool:
    return env.get(key, "").strip().lower() in _TRUTHY


def _env_str(env: dict[str, str], key: str) -> str | None:
    value = env.get(key, "").strip()
    return value or None


def _env_int(env: dict[str, str], key: str, default: int) -> int:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        msg = f"{key} must be an integer, got {raw!r}"
        raise ValueError(msg) from exc


def _env_float(env: dict[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        msg = f"{key} must be a number, got {raw!r}"
        raise ValueError(msg) from exc


@dataclass
class GatewayConfig:
    """Settings consumed by the providers and the sidecar manager.

    Environment variables:
        - ``LLM_GATEWAY_HOST`` / ``LLM_GATEWAY_PORT``: bind address of a wrapping server
        - ``ENABLE_COMMAND_LLM``: opt in to the arbitrary ``command`` provider
        - ``LLM_GATEWAY_ROOT_DIR``: working directory for CLI providers (default: cwd)
        - ``LLM_COMMAND_TIMEOUT_SEC``: subprocess wall-clock limit (default 120)
        - ``G4F_BINARY_PATH``: pre-installed sidecar binary, never downloaded over
        - ``G4F_INSTALL_DIR``: download directory (default ``~/.llm-gateway/bin``)
        - ``G4F_API_URL``: sidecar base URL (default ``http://127.0.0.1:1337``)
        - ``G4F_STARTUP_TIMEOUT_MS``: readiness deadline, ``<= 0`` waits forever
        - ``LLM_GATEWAY_TRACE_EXPORTER``: ``none`` | ``stdout`` | ``otlp``
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    enable_command_llm: bool = False
    root_dir: Path = field(default_factory=Path.cwd)
    command_timeout_sec: float = DEFAULT_COMMAND_TIMEOUT_SEC
    sidecar_binary_path: Path | None = None
    sidecar_install_dir: Path = field(default_factory=default_install_dir)
    sidecar_url: str = DEFAULT_SIDECAR_URL
    sidecar_startup_timeout_ms: int = DEFAULT_SIDECAR_STARTUP_TIMEOUT_MS
    trace_exporter: str = "none"

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> GatewayConfig:
        """Build a config from ``os.environ`` (or an explicit mapping)."""
        source = dict(os.environ) if env is None else env

        root_dir = _env_str(source, "LLM_GATEWAY_ROOT_DIR")
        binary_path = _env_str(source, "G4F_BINARY_PATH")
        install_dir = _env_str(source, "G4F_INSTALL_DIR")

        return cls(
            host=_env_str(source, "LLM_GATEWAY_HOST") or DEFAULT_HOST,
            port=_env_int(source, "LLM_GATEWAY_PORT", DEFAULT_PORT),
            enable_command_llm=_env_flag(source, "ENABLE_COMMAND_LLM"),
            root_dir=Path(root_dir) if root_dir else Path.cwd(),
            command_timeout_sec=_env_float(
                source, "LLM_COMMAND_TIMEOUT_SEC", DEFAULT_COMMAND_TIMEOUT_SEC
            ),
            sidecar_binary_path=Path(binary_path).expanduser() if binary_path else None,
            sidecar_install_dir=(
                Path(install_dir).expanduser() if install_dir else default_install_dir()
            ),
            sidecar_url=(_env_str(source, "G4F_API_URL") or DEFAULT_SIDECAR_URL).rstrip("/"),
            sidecar_startup_timeout_ms=_env_int(
                source, "G4F_STARTUP_TIMEOUT_MS", DEFAULT_SIDECAR_STARTUP_TIMEOUT_MS
            ),
            trace_exporter=(
                _env_str(source, "LLM_GATEWAY_TRACE_EXPORTER") or "none"
            ).lower(),
        )

    @property
    def command_timeout_ms(self) -> int:
        return int(self.command_timeout_sec * 1000)
