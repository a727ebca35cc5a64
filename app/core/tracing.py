"""
OpenTelemetry tracing setup.

Spans are created for HTTP requests (FastAPI instrumentation), database
queries (SQLAlchemy instrumentation) and each message send. Export to the
console is opt-in through ``TRACING_ENABLED``.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from core.config import settings

logger = logging.getLogger(__name__)

SERVICE_NAME = "chatline-api"
SERVICE_VERSION = "1.0.0"


def setup_tracing() -> TracerProvider:
    """Install the global tracer provider."""
    resource = Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": SERVICE_VERSION,
    })
    tracer_provider = TracerProvider(resource=resource)

    if settings.tracing_enabled:
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("OpenTelemetry tracing enabled with console exporter")

    trace.set_tracer_provider(tracer_provider)
    return tracer_provider
