"""OpenTelemetry tracing and metrics for Azure DevOps calls and identity lookups."""

import logging
import os
import time
from contextlib import contextmanager
from typing import Optional

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.semconv.resource import ResourceAttributes

from .config import TelemetryConfig

logger = logging.getLogger(__name__)


class TelemetryManager:
    """
    Owns the tracer and meter used by the client and the enrichment code.

    Exporters are only attached when the matching ``OTEL_EXPORTER_OTLP_*_ENDPOINT``
    variable is set. If setup fails the manager disables itself rather than
    taking the server down.
    """

    def __init__(self, config: TelemetryConfig):
        self.config = config
        self.tracer: Optional[trace.Tracer] = None
        self.meter: Optional[metrics.Meter] = None
        self._initialized = False

        self._api_call_counter = None
        self._api_call_duration = None
        self._error_counter = None
        self._auth_counter = None
        self._identity_cache_counter = None

        if config.enabled:
            self._setup()

    def _setup(self):
        try:
            resource = Resource(
                attributes={
                    ResourceAttributes.SERVICE_NAME: self.config.service_name,
                    ResourceAttributes.SERVICE_VERSION: self.config.service_version,
                    ResourceAttributes.PROCESS_PID: os.getpid(),
                }
            )
            self._setup_tracing(resource)
            if self.config.metrics_enabled:
                self._setup_metrics(resource)

            RequestsInstrumentor().instrument()
            self._initialized = True
            logger.info("Telemetry initialized")
        except Exception as e:
            logger.error(f"Failed to initialize telemetry: {e}")
            self.config.enabled = False

    def _setup_tracing(self, resource: Resource):
        provider = TracerProvider(
            resource=resource, sampler=TraceIdRatioBased(self.config.trace_sampling_rate)
        )
        endpoint = os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        if endpoint:
            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))

        trace.set_tracer_provider(provider)
        self.tracer = trace.get_tracer(__name__)

    def _setup_metrics(self, resource: Resource):
        endpoint = os.getenv("OTEL_EXPORTER_OTLP_METRICS_ENDPOINT")
        if not endpoint:
            return

        reader = PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(endpoint=endpoint), export_interval_millis=30000
        )
        metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))
        self.meter = metrics.get_meter(__name__)

        self._api_call_counter = self.meter.create_counter(
            name="ado_api_calls_total", description="Total number of ADO API calls", unit="1"
        )
        self._api_call_duration = self.meter.create_histogram(
            name="ado_api_call_duration_seconds",
            description="Duration of ADO API calls in seconds",
            unit="s",
        )
        self._error_counter = self.meter.create_counter(
            name="ado_errors_total", description="Total number of failed ADO API calls", unit="1"
        )
        self._auth_counter = self.meter.create_counter(
            name="ado_auth_attempts_total",
            description="Total number of authentication attempts",
            unit="1",
        )
        self._identity_cache_counter = self.meter.create_counter(
            name="ado_identity_lookups_total",
            description="Identity lookups during team member enrichment, by outcome",
            unit="1",
        )

    @contextmanager
    def trace_api_call(self, operation: str, **attributes):
        """
        Wrap one REST call in an ``ado_<operation>`` span and record its metrics.

        Yields the span, or None when telemetry is not initialized.
        """
        if not self._initialized or not self.tracer:
            yield None
            return

        with self.tracer.start_as_current_span(f"ado_{operation}") as span:
            span.set_attribute("ado.operation", operation)
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)

            start = time.time()
            status = "success"
            try:
                yield span
            except Exception as e:
                status = "error"
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                if self._error_counter:
                    self._error_counter.add(
                        1, {"operation": operation, "error_type": type(e).__name__}
                    )
                raise
            finally:
                if self._api_call_counter:
                    self._api_call_counter.add(1, {"operation": operation, "status": status})
                if self._api_call_duration:
                    self._api_call_duration.record(time.time() - start, {"operation": operation})

    def record_auth_attempt(self, method: str, success: bool):
        if self._auth_counter:
            self._auth_counter.add(1, {"method": method, "success": str(success).lower()})

    def record_identity_lookup(self, outcome: str):
        """Count an enrichment lookup; outcome is "hit", "miss", "not_found" or "error"."""
        if self._identity_cache_counter:
            self._identity_cache_counter.add(1, {"outcome": outcome})

    def shutdown(self):
        if not self._initialized:
            return
        try:
            for provider in (trace.get_tracer_provider(), metrics.get_meter_provider()):
                if hasattr(provider, "shutdown"):
                    provider.shutdown()
            logger.info("Telemetry shutdown complete")
        except Exception as e:
            logger.error(f"Error during telemetry shutdown: {e}")


_telemetry_manager: Optional[TelemetryManager] = None


def initialize_telemetry(config: TelemetryConfig) -> TelemetryManager:
    global _telemetry_manager
    _telemetry_manager = TelemetryManager(config)
    return _telemetry_manager


def get_telemetry_manager() -> Optional[TelemetryManager]:
    return _telemetry_manager


def shutdown_telemetry():
    global _telemetry_manager
    if _telemetry_manager:
        _telemetry_manager.shutdown()
        _telemetry_manager = None
