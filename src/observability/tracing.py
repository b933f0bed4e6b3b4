import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from src.config import DATABASE_URL, OTEL_EXPORTER_OTLP_ENDPOINT, TRACING_ENABLED

logger = logging.getLogger(__name__)

TRACER_NAME = "catalog-recommendations"


@lru_cache
def database_name(url: str = DATABASE_URL) -> Optional[str]:
    """catalog database name for span attributes, never the credentials"""
    try:
        return make_url(url).database
    except ArgumentError:
        return None


@contextmanager
def store_span(
    operation: str,
    table: str,
    **attributes: Any,
):
    """
    Span around one catalog store call.

    Usage:
        with store_span("list_active_products", "products", limit=24) as span:
            rows = await session.scalars(stmt)
            span.set_attribute("db.store.results_count", len(rows))

    Extra keyword attributes land under db.store.*, None values are skipped.
    Errors are recorded on the span and re-raised.
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(
        f"store.{operation}",
        kind=trace.SpanKind.CLIENT,
    ) as span:
        span.set_attribute("db.system", "postgresql")
        span.set_attribute("db.operation", operation)
        span.set_attribute("db.sql.table", table)
        db_name = database_name()
        if db_name:
            span.set_attribute("db.name", db_name)
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"db.store.{key}", value)
        try:
            yield span
        except Exception as e:
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


def setup_tracing(app=None, service_name: str = "recommendation-api"):
    """
    Install an OTLP-exporting tracer provider for this process.

    The api passes its FastAPI app for request spans. The score refresher
    and the batch job call it without one so their store and redis calls
    are still traced. OTEL_SDK_DISABLED=true turns all of it off.
    """
    if not TRACING_ENABLED:
        logger.info("Tracing disabled")
        return trace.get_tracer(TRACER_NAME)

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        exporter = OTLPSpanExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    except Exception as e:
        logger.warning(f"Tracing export disabled (OTLP exporter unavailable): {e}")

    trace.set_tracer_provider(provider)

    if app is not None:
        FastAPIInstrumentor.instrument_app(app)

    redis_instrumentor = RedisInstrumentor()
    if not redis_instrumentor.is_instrumented_by_opentelemetry:
        redis_instrumentor.instrument()

    return trace.get_tracer(TRACER_NAME)


def shutdown_tracing() -> None:
    """flush buffered spans before a short-lived process exits"""
    provider = trace.get_tracer_provider()
    shutdown = getattr(provider, "shutdown", None)
    if shutdown is not None:
        shutdown()
