"""OpenTelemetry tracer setup for exporting request spans to a collector."""

import logging
from typing import Optional

from opentelemetry import propagate, trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from mockms.bootstrap.config import ServerConfig
from mockms.domain.correlation_id import CorrelationLoggerAdapter

TRACING_LOGGER = CorrelationLoggerAdapter(logging.getLogger("mock_ms.tracing"), {})

SERVICE_VERSION_VALUE = "1.0.0"
INSTRUMENTATION_NAME = "mock_ms"


def build_tracer_provider(service_name: str, exporter: SpanExporter) -> TracerProvider:
    """Return a provider batching spans tagged with the service name and version."""
    resource = Resource.create(
        {SERVICE_NAME: service_name, SERVICE_VERSION: SERVICE_VERSION_VALUE}
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def configure_tracing(config: ServerConfig) -> Optional[TracerProvider]:
    """Install a global OTLP/gRPC tracer provider when an endpoint is configured."""
    if not config.otel_endpoint:
        return None

    exporter = OTLPSpanExporter(endpoint=config.otel_endpoint, insecure=True)
    provider = build_tracer_provider(config.service_name, exporter)
    trace.set_tracer_provider(provider)
    propagate.set_global_textmap(TraceContextTextMapPropagator())
    TRACING_LOGGER.info(
        "OpenTelemetry tracing initialized",
        extra={
            "event": "tracing_configured",
            "otel_endpoint": config.otel_endpoint,
            "service": config.service_name,
        },
    )
    return provider


def shutdown_tracing(provider: Optional[TracerProvider]) -> None:
    """Flush and stop the span pipeline; export failures are only logged."""
    if provider is None:
        return
    try:
        provider.shutdown()
    except Exception as error:  # pylint: disable=broad-except
        TRACING_LOGGER.warning(
            "Error shutting down tracer provider",
            extra={"event": "tracing_shutdown_failed", "error": str(error)},
        )
