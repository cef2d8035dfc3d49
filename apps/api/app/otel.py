from __future__ import annotations

import os
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter


SERVICE_NAME = "crm-api"
CORRELATION_HEADER = b"x-correlation-id"


class _TracingState:
    provider: TracerProvider | None = None
    exporters_installed: bool = False


_state = _TracingState()


def tracer_provider(service_name: str = SERVICE_NAME) -> TracerProvider:
    """The process-wide SDK provider; the global provider can only be set once."""

    if _state.provider is None:
        resource = Resource.create(
            {
                "service.name": service_name,
                "service.version": os.getenv("APP_VERSION", "0.1.0"),
                "deployment.environment": os.getenv("APP_ENV", "local"),
            }
        )
        _state.provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_state.provider)
    return _state.provider


def setup_otel(service_name: str = SERVICE_NAME, enable: bool = True) -> TracerProvider | None:
    """Install the OTLP and console exporters selected by the environment."""

    if not enable:
        return None

    provider = tracer_provider(service_name)
    if _state.exporters_installed:
        return provider

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if os.getenv("OTEL_CONSOLE_EXPORTER", "false").lower() == "true":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _state.exporters_installed = True
    return provider


def setup_inmemory_otel(service_name: str = SERVICE_NAME) -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    tracer_provider(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def get_fastapi_server_request_hook():
    """Copy the inbound correlation header onto the server span before routing."""

    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        for name, value in scope.get("headers", []):
            if name == CORRELATION_HEADER and value:
                span.set_attribute("correlation_id", value.decode("utf-8"))
                return

    return server_request_hook
