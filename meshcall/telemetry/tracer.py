"""
OpenTelemetry Tracing

Each exposed or observed handler invocation runs inside a span tagged with the
transaction id, so a causal chain of requests can be followed across services.
"""

import logging
from typing import Any, Dict

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ALWAYS_ON
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

logger = logging.getLogger(__name__)

# Span attribute keys
ATTR_TX = "meshcall.tx"
ATTR_SUBJECT = "meshcall.subject"
ATTR_SERVICE = "meshcall.service"
ATTR_STATUS_CODE = "meshcall.status_code"


def setup_tracer(service_name: str, otlp_endpoint: str = "localhost:4317"):
    """Configure OpenTelemetry tracer

    Args:
        service_name: Service full name
        otlp_endpoint: OTLP receiver address

    Returns:
        Tracer for the service
    """
    provider = TracerProvider(
        sampler=ALWAYS_ON,
        resource=Resource.create({"service.name": service_name}),
    )
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))

    trace.set_tracer_provider(provider)

    logger.info(f"OpenTelemetry trace configured, service name: {service_name}, OTLP endpoint: {otlp_endpoint}")

    return trace.get_tracer(service_name)


def create_span(name: str, attributes: Dict[str, Any] = None, kind=trace.SpanKind.INTERNAL):
    """Create new span, usable as a context manager

    Args:
        name: Span name
        attributes: Span attributes
        kind: Span kind (SERVER for exposed handlers, CONSUMER for observers)
    """
    tracer = trace.get_tracer(__name__)
    return tracer.start_as_current_span(
        name,
        attributes=attributes or {},
        kind=kind,
    )
