"""Error taxonomy for the gateway.

Every failure a provider can hit maps onto one of these classes so callers
can tell a disabled provider from a crashed subprocess or an upstream 5xx.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for all gateway failures."""


class UnknownProvider(GatewayError):
    """Raised when no static or dynamic provider matches a name."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = list(available)
        listing = ", ".join(self.available) if self.available else "none"
        super().__init__(f"Unknown provider: {name}. Available providers: {listing}")


class MissingParameter(GatewayError):
    """Raised when a required request field (base_url, model, command) is absent."""

    def __init__(self, parameter: str, provider: str) -> None:
        self.parameter = parameter
        self.provider = provider
        super().__init__(f"Missing {parameter} for provider: {provider}")


class ProviderDisabled(GatewayError):
    """Raised when an opt-in provider is invoked without its flag."""


class ProviderConfigError(GatewayError, ValueError):
    """Raised when a dynamic provider registration is rejected."""


class CommandNotFound(GatewayError):
    """Raised when a subprocess executable cannot be located."""

    def __init__(self, message: str, command: str | None = None) -> None:
        self.command = command
        super().__init__(message)


class ProcessTimeout(GatewayError):
    """Raised when a subprocess outlives its wall-clock limit."""

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"Command timed out after {timeout_ms}ms")


class OutputLimitExceeded(GatewayError):
    """Raised when a subprocess writes more stdout than allowed."""

    def __init__(self, limit_bytes: int) -> None:
        self.limit_bytes = limit_bytes
        super().__init__(f"Command output exceeded {limit_bytes} bytes")


class ProcessFailed(GatewayError):
    """Raised when a subprocess exits non-zero or dies from a signal."""

    def __init__(
        self,
        exit_code: int | None,
        stderr: str,
        signal_name: str | None = None,
    ) -> None:
        self.exit_code = exit_code
        self.signal_name = signal_name
        self.stderr = stderr
        signal_info = f", signal {signal_name}" if signal_name else ""
        detail = stderr or "no stderr"
        super().__init__(f"Command failed (exit {exit_code}{signal_info}): {detail}")


class UpstreamHTTPError(GatewayError):
    """Raised when an HTTP backend fails or answers with a non-2xx status."""

    def __init__(self, url: str, status: int | None, body: str) -> None:
        self.url = url
        self.status = status
        self.body = body
        if status is None:
            super().__init__(f"Request to {url} failed: {body}")
        else:
            super().__init__(f"HTTP {status} from {url}\n{body}")


class InvalidUpstreamResponse(GatewayError):
    """Raised when an HTTP backend answers 2xx with an unusable body."""


class SidecarStartTimeout(GatewayError):
    """Raised when the sidecar does not become healthy before its deadline."""


class SidecarNotReady(GatewayError):
    """Raised when the sidecar process exits before becoming healthy."""


class BinaryDownloadFailed(GatewayError):
    """Raised when the sidecar binary cannot be downloaded."""


class UnsupportedPlatform(GatewayError):
    """Raised when no sidecar release asset exists for this platform."""

    def __init__(self, platform: str, machine: str) -> None:
        self.platform = platform
        self.machine = machine
        super().__init__(f"Unsupported platform for sidecar binary: {platform}/{machine}")
