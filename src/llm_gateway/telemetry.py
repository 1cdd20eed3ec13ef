"""OpenTelemetry tracing integration for the gateway.

Provides tracing with support for stdout, OTLP, and noop exporters.
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import NoOpTracer, Span, Tracer

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class TelemetryConfig:
    """Configuration for the gateway tracing subsystem."""

    service_name: str = "llm-gateway"
    enabled: bool = True
    exporter: str = "none"  # "stdout" | "otlp" | "none"
    otlp_endpoint: str = "http://localhost:4317"


# ---------------------------------------------------------------------------
# GatewayTracer
# ---------------------------------------------------------------------------


class GatewayTracer:
    """Central tracer for the gateway.

    Wraps OpenTelemetry ``TracerProvider`` setup and provides helpers for
    creating spans and recording events.
    """

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        self._config = config or TelemetryConfig()
        self._provider: TracerProvider | None = None
        self._tracer: Tracer = NoOpTracer()

    # -- lifecycle -----------------------------------------------------------

    def init(self) -> None:
        """Set up the OTel TracerProvider based on config."""
        cfg = self._config

        if not cfg.enabled or cfg.exporter == "none":
            return

        resource = Resource.create({"service.name": cfg.service_name})

        if cfg.exporter == "stdout":
            from opentelemetry.sdk.trace.export import (
                ConsoleSpanExporter,
                SimpleSpanProcessor,
            )

            provider = TracerProvider(resource=resource)
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
            self._provider = provider
            self._tracer = provider.get_tracer(cfg.service_name)

        elif cfg.exporter == "otlp":
            try:
                from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                    OTLPSpanExporter,
                )
                from opentelemetry.sdk.trace.export import SimpleSpanProcessor
            except ImportError:  # pragma: no cover
                # OTLP exporter is an optional extra; stay on the noop tracer.
                return

            exporter = OTLPSpanExporter(endpoint=cfg.otlp_endpoint, insecure=True)
            provider = TracerProvider(resource=resource)
            provider.add_span_processor(SimpleSpanProcessor(exporter))
            self._provider = provider
            self._tracer = provider.get_tracer(cfg.service_name)

    # -- span helpers --------------------------------------------------------

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, str] | None = None,
    ) -> Generator[Span, None, None]:
        """Create a span as a context manager.

        Usage::

            with tracer.span("provider/call", {"provider.name": "ollama"}) as s:
                ...
        """
        with self._tracer.start_as_current_span(name) as s:
            if attributes:
                for k, v in attributes.items():
                    s.set_attribute(k, v)
            yield s

    def record_event(
        self,
        name: str,
        attributes: dict[str, str] | None = None,
    ) -> None:
        """Record a named event on the current active span (if any)."""
        current_span = trace.get_current_span()
        if current_span.is_recording():
            otel_attrs: dict[str, Any] = dict(attributes) if attributes else {}
            current_span.add_event(name, otel_attrs)

    def shutdown(self) -> None:
        """Flush pending spans and shut down the provider.

        Safe to call multiple times.
        """
        if self._provider is not None:
            self._provider.shutdown()
            self._provider = None


# ---------------------------------------------------------------------------
# Module-level default tracer (lazily initialised)
# ---------------------------------------------------------------------------

_DEFAULT_TRACER: GatewayTracer | None = None


def get_default_tracer() -> GatewayTracer:
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is None:
        _DEFAULT_TRACER = GatewayTracer()
    return _DEFAULT_TRACER


def configure_tracing(config: TelemetryConfig) -> GatewayTracer:
    """Replace the default tracer with one built from *config*."""
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is not None:
        _DEFAULT_TRACER.shutdown()
    _DEFAULT_TRACER = GatewayTracer(config)
    _DEFAULT_TRACER.init()
    return _DEFAULT_TRACER


# ---------------------------------------------------------------------------
# Convenience context managers
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def trace_provider_call(provider_name: str) -> Generator[Span, None, None]:
    """Trace a single provider dispatch."""
    with get_default_tracer().span("provider/call", {"provider.name": provider_name}) as s:
        yield s


@contextlib.contextmanager
def trace_sidecar_start(force_update: bool) -> Generator[Span, None, None]:  # noqa: FBT001
    """Trace a sidecar startup attempt."""
    attrs = {"sidecar.force_update": str(force_update).lower()}
    with get_default_tracer().span("sidecar/start", attrs) as s:
        yield s
