from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from config import get_settings

SERVICE_NAME = "live-scribe-api"

_configured = False


def configure_tracing() -> None:
    global _configured
    settings = get_settings()
    if _configured or not settings.otel_endpoint:
        return

    resource = Resource.create(
        {
            "service.name": SERVICE_NAME,
            "service.version": settings.stack_version,
            "deployment.environment": settings.env,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=str(settings.otel_endpoint))))
    trace.set_tracer_provider(provider)
    _configured = True
