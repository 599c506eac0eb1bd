"""
OpenTelemetry Integration Module

Provides tracing and metrics collection for the dispatch engine and the client side:
- tracer: span creation around handler invocations, OTLP exporter setup
- metrics: counters and latency histograms for requests and notices

Without a configured provider every call is a no-op.
"""

from .tracer import setup_tracer, create_span
from .metrics import setup_metrics, increment_counter, record_latency

__all__ = [
    "setup_tracer",
    "create_span",
    "setup_metrics",
    "increment_counter",
    "record_latency",
]
