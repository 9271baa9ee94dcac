from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from app.core.config import Settings
from app.middleware.correlation_id import CORRELATION_HEADER, normalize_correlation_id


SERVICE_VERSION = "0.1.0"

# The global provider can only be set once per process; tests and the app share it.
_provider: TracerProvider | None = None
_exporters_installed = False


def _shared_provider(service_name: str, environment: str = "local") -> TracerProvider:
    global _provider
    if _provider is None:
        _provider = TracerProvider(
            resource=Resource.create(
                {
                    "service.name": service_name,
                    "service.version": SERVICE_VERSION,
                    "deployment.environment": environment,
                }
            )
        )
        trace.set_tracer_provider(_provider)
    return _provider


def _export_processors(settings: Settings) -> list[SpanProcessor]:
    processors: list[SpanProcessor] = []
    if settings.otel_exporter_otlp_endpoint:
        processors.append(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        processors.append(SimpleSpanProcessor(ConsoleSpanExporter()))
    return processors


def configure_tracing(settings: Settings) -> TracerProvider | None:
    """Install exporters named by settings. Returns ``None`` when tracing is off."""
    global _exporters_installed
    if not settings.otel_enabled:
        return None

    provider = _shared_provider(settings.app_name, settings.app_env)
    if not _exporters_installed:
        for processor in _export_processors(settings):
            provider.add_span_processor(processor)
        _exporters_installed = True
    return provider


def setup_inmemory_otel(service_name: str = "crm-api") -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _shared_provider(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def server_request_hook(span: Any, scope: dict[str, Any]) -> None:
    if span is None or not span.is_recording():
        return
    raw = dict(scope.get("headers", [])).get(CORRELATION_HEADER.encode("latin-1"))
    correlation_id = normalize_correlation_id(raw)
    if correlation_id:
        span.set_attribute("correlation_id", correlation_id)
