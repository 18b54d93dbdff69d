"""OpenTelemetry wiring for the API.

Request spans are always recorded so log lines carry trace and span ids; they
leave the process only when an OTLP endpoint is configured. Exporter headers
come from ``OTEL_EXPORTER_OTLP_HEADERS``, which the exporter reads itself.
"""

from __future__ import annotations

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

# Liveness probes are not traced.
_EXCLUDED_URLS = "healthz"


def build_tracer_provider(
    *,
    service_name: str,
    service_version: str,
    environment: str,
    exporter_endpoint: str | None = None,
) -> TracerProvider:
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": service_name,
                "service.version": service_version,
                "deployment.environment": environment,
            }
        )
    )
    if exporter_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=exporter_endpoint)))
    return provider


def configure_tracing(
    app: FastAPI,
    *,
    service_name: str,
    service_version: str,
    environment: str,
    exporter_endpoint: str | None = None,
) -> None:
    """Instrument the app, installing the global tracer provider on first use."""

    tracer_provider = trace.get_tracer_provider()
    if not isinstance(tracer_provider, TracerProvider):
        tracer_provider = build_tracer_provider(
            service_name=service_name,
            service_version=service_version,
            environment=environment,
            exporter_endpoint=exporter_endpoint,
        )
        trace.set_tracer_provider(tracer_provider)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider, excluded_urls=_EXCLUDED_URLS)


__all__ = ["build_tracer_provider", "configure_tracing"]
