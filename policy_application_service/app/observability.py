"""
Logging, tracing and metrics for the policy application service.

JSON logging is installed when this module is imported. Tracer and meter
providers are installed by the entry point through `setup_opentelemetry`;
until then `tracer` and `meter` are the OpenTelemetry proxies and forward to
whatever provider is set later.
"""
import logging
from typing import Dict, List, Optional

from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader, ConsoleMetricExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME as ResourceAttributesServiceName
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.context import Context
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator
from pythonjsonlogger import jsonlogger

from policy_application_service.app.config import settings

METRIC_EXPORT_INTERVAL_MS = 5000
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(module)s %(funcName)s %(lineno)d %(otelTraceID)s %(otelSpanID)s %(message)s"

logger = logging.getLogger("policy_application_service")


def setup_json_logging():
    """Replaces the root handlers with a single JSON handler. Calling it again changes nothing."""
    root_logger = logging.getLogger()
    if any(isinstance(h.formatter, jsonlogger.JsonFormatter) for h in root_logger.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(jsonlogger.JsonFormatter(
        fmt=LOG_FORMAT,
        rename_fields={"levelname": "level", "name": "logger_name", "asctime": "timestamp"},
    ))
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    level = settings.LOG_LEVEL.upper()
    root_logger.setLevel(level)
    logger.setLevel(level)
    logger.info(f"JSON logging enabled at {level}.")


def setup_opentelemetry(service_name: str):
    """Installs tracer and meter providers: console exporters always, OTLP when an endpoint is set."""
    resource = Resource(attributes={ResourceAttributesServiceName: service_name})

    span_exporters = [ConsoleSpanExporter()]
    if settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT:
        span_exporters.append(OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT, insecure=True))
    tracer_provider = TracerProvider(resource=resource)
    for exporter in span_exporters:
        tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(tracer_provider)

    metric_exporters = [ConsoleMetricExporter()]
    if settings.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT:
        metric_exporters.append(OTLPMetricExporter(endpoint=settings.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT, insecure=True))
    readers = [
        PeriodicExportingMetricReader(exporter, export_interval_millis=METRIC_EXPORT_INTERVAL_MS)
        for exporter in metric_exporters
    ]
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=readers))

    logger.info(
        f"OpenTelemetry configured for {service_name}: "
        f"{len(span_exporters)} span exporter(s), {len(metric_exporters)} metric exporter(s)."
    )


def extract_trace_context_from_kafka_headers(headers: Optional[List[tuple]]) -> Optional[Context]:
    """Parent context from W3C trace headers on a Kafka message; None when the message has no headers."""
    if not headers:
        return None
    carrier: Dict[str, str] = {key: value.decode('utf-8') for key, value in headers if value is not None}
    return TraceContextTextMapPropagator().extract(carrier=carrier)


# Call at module load time
setup_json_logging()

# --- Tracer and Meter instances ---
# Proxies until an entry point calls setup_opentelemetry.
tracer = trace.get_tracer("policy_application_service.tracer")
meter = metrics.get_meter("policy_application_service.meter")

# --- Custom Metrics Definitions ---
applications_submitted_counter = meter.create_counter(
    name="policy_application.applications.submitted.total",
    description="Counts applications that passed validation and reconciliation and were persisted as Submitted.",
    unit="1"
)

drafts_saved_counter = meter.create_counter(
    name="policy_application.drafts.saved.total",
    description="Counts draft saves.",
    unit="1"
)

attachments_uploaded_counter = meter.create_counter(
    name="policy_application.attachments.uploaded.total",
    description="Counts attachments uploaded to blob storage during reconciliation.",
    unit="1"
)

share_grants_created_counter = meter.create_counter(
    name="policy_application.share_grants.created.total",
    description="Counts share grants created.",
    unit="1"
)

notifications_created_counter = meter.create_counter(
    name="policy_application.notifications.created.total",
    description="Counts notifications created by share fan-out.",
    unit="1"
)

change_events_consumed_counter = meter.create_counter(
    name="policy_application.change_events.consumed.total",
    description="Counts change-feed events consumed from Kafka.",
    unit="1"
)

submission_latency_histogram = meter.create_histogram(
    name="policy_application.submission.latency.seconds",
    description="Measures submit() latency from validation to persisted record.",
    unit="s"
)
logger.info("Custom metrics (Counters, Histogram) defined in observability.py.")
