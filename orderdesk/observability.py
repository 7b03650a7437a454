from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from sqlalchemy.engine import Engine

from .logging import ServiceLogger
from .settings import Settings


def configure_observability(app: FastAPI, settings: Settings, engine: Optional[Engine] = None) -> bool:
    """Install OpenTelemetry tracing when ``OTEL_ENABLED`` is set.

    Spans opened by the bulk dispatcher attach to the provider configured
    here; without it they go to the API's no-op tracer.
    """
    if not settings.otel_enabled:
        return False

    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

    resource = Resource.create({SERVICE_NAME: settings.otel_service_name})
    provider = TracerProvider(resource=resource)

    if settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
    else:
        exporter = ConsoleSpanExporter()

    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app)
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine)

    ServiceLogger("observability").info(
        "Tracing enabled",
        service=settings.otel_service_name,
        exporter="otlp" if settings.otel_exporter_otlp_endpoint else "console",
    )
    return True
