"""
Tests for the OpenTelemetry helpers

Exporters and global providers are patched so nothing leaves the process.
"""

import pytest
from unittest.mock import patch

from meshcall.telemetry import create_span, increment_counter, record_latency, setup_metrics, setup_tracer
from meshcall.telemetry import metrics as meshcall_metrics


class TestTracer:
    """Tracer setup and spans"""

    def test_setup_tracer(self):
        with patch("meshcall.telemetry.tracer.OTLPSpanExporter") as exporter, \
                patch("meshcall.telemetry.tracer.BatchSpanProcessor") as processor, \
                patch("meshcall.telemetry.tracer.trace.set_tracer_provider") as set_provider:
            tracer = setup_tracer("demo.server", "collector:4317")

        exporter.assert_called_once_with(endpoint="collector:4317")
        processor.assert_called_once_with(exporter.return_value)
        set_provider.assert_called_once()
        provider = set_provider.call_args.args[0]
        assert provider.resource.attributes["service.name"] == "demo.server"
        assert tracer is not None

    def test_create_span_without_provider(self):
        with create_span("expose server.echo", {"meshcall.tx": "t"}) as span:
            span.set_attribute("meshcall.status_code", 200)


class TestMetrics:
    """Metric helpers"""

    def test_setup_metrics(self):
        with patch("meshcall.telemetry.metrics.OTLPMetricExporter") as exporter, \
                patch("meshcall.telemetry.metrics.PeriodicExportingMetricReader") as reader, \
                patch("meshcall.telemetry.metrics.MeterProvider") as provider, \
                patch("meshcall.telemetry.metrics.metrics.set_meter_provider") as set_provider:
            setup_metrics("demo.server", "collector:4317", export_interval_ms=1000)

        exporter.assert_called_once_with(endpoint="collector:4317")
        reader.assert_called_once_with(exporter.return_value, export_interval_millis=1000)
        set_provider.assert_called_once_with(provider.return_value)

    def test_instruments_are_cached(self):
        counter = meshcall_metrics.get_counter("meshcall.test.counter", "test counter")
        histogram = meshcall_metrics.get_histogram("meshcall.test.latency", "test latency")

        assert meshcall_metrics.get_counter("meshcall.test.counter", "again") is counter
        assert meshcall_metrics.get_histogram("meshcall.test.latency", "again") is histogram

    def test_recording_without_provider(self):
        increment_counter(meshcall_metrics.REQUESTS_SENT, 1, {"service": "client"})
        record_latency(meshcall_metrics.REQUEST_LATENCY, 1.5)


class TestServiceTelemetry:
    """Service.ready configures exporters only when an endpoint is set"""

    @pytest.mark.asyncio
    async def test_ready_with_endpoint(self, make_service):
        service = make_service("server", otlp_endpoint="collector:4317")

        with patch("meshcall.service._telemetry_endpoint", None), \
                patch("meshcall.service.setup_tracer") as tracer, \
                patch("meshcall.service.setup_metrics") as metrics:
            await service.ready()
            await service.shutdown()

        tracer.assert_called_once_with("server", "collector:4317")
        metrics.assert_called_once_with("server", "collector:4317")

    @pytest.mark.asyncio
    async def test_providers_are_installed_once_per_process(self, make_service):
        first = make_service("server", otlp_endpoint="collector:4317")
        second = make_service("client", otlp_endpoint="collector:4317")

        with patch("meshcall.service._telemetry_endpoint", None), \
                patch("meshcall.service.setup_tracer") as tracer, \
                patch("meshcall.service.setup_metrics") as metrics:
            async with first, second:
                pass

        tracer.assert_called_once_with("server", "collector:4317")
        metrics.assert_called_once_with("server", "collector:4317")

    @pytest.mark.asyncio
    async def test_ready_without_endpoint(self, make_service):
        service = make_service("server")

        with patch("meshcall.service.setup_tracer") as tracer:
            await service.ready()
            await service.shutdown()

        tracer.assert_not_called()
