"""
OpenTelemetry configuration with OTLP exporters for Morpheus.

Provides traces and metrics for routing decisions and capability agent
operations. Telemetry is optional; when it is not initialized the OpenTelemetry
API falls back to no-op providers.
"""

import logging
import os
from typing import Any, Dict, Optional

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.asyncio import AsyncioInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased


logger = logging.getLogger(__name__)


class TelemetrySettings:
    """Resolved settings for OpenTelemetry setup."""

    def __init__(self, config: Dict[str, Any]):
        self.service_name = config.get("service_name", "morpheus")
        self.service_version = config.get("service_version", "1.0.0")
        self.environment = config.get("environment", "development")

        self.otlp_endpoint = config.get(
            "otlp_endpoint", os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
        )
        self.export_timeout = config.get("export_timeout", 30)
        self.max_export_batch_size = config.get("max_export_batch_size", 512)
        self.trace_sampling_ratio = config.get("trace_sampling_ratio", 1.0)
        self.resource_attributes = config.get("resource_attributes", {})


class TelemetryManager:
    """Manages OpenTelemetry setup and lifecycle."""

    def __init__(self, settings: TelemetrySettings):
        self.settings = settings
        self._initialized = False
        self._tracer_provider: Optional[TracerProvider] = None
        self._meter_provider: Optional[MeterProvider] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Initialize OpenTelemetry with OTLP exporters."""
        if self._initialized:
            logger.warning("Telemetry already initialized")
            return

        resource = Resource.create({
            "service.name": self.settings.service_name,
            "service.version": self.settings.service_version,
            "deployment.environment": self.settings.environment,
            **self.settings.resource_attributes
        })

        span_processor = BatchSpanProcessor(
            OTLPSpanExporter(endpoint=self.settings.otlp_endpoint, timeout=self.settings.export_timeout),
            max_export_batch_size=self.settings.max_export_batch_size,
            export_timeout_millis=self.settings.export_timeout * 1000
        )
        self._tracer_provider = TracerProvider(
            resource=resource,
            sampler=TraceIdRatioBased(self.settings.trace_sampling_ratio)
        )
        self._tracer_provider.add_span_processor(span_processor)
        trace.set_tracer_provider(self._tracer_provider)

        metric_reader = PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(endpoint=self.settings.otlp_endpoint, timeout=self.settings.export_timeout),
            export_interval_millis=10000
        )
        self._meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
        metrics.set_meter_provider(self._meter_provider)

        self._setup_instrumentation()

        self._initialized = True
        logger.info(f"OpenTelemetry initialized for service: {self.settings.service_name}")

    def _setup_instrumentation(self) -> None:
        """Instrument asyncio tasks and inject trace ids into log records."""
        AsyncioInstrumentor().instrument()
        LoggingInstrumentor().instrument(set_logging_format=False)
        logger.info("Automatic instrumentation configured")

    def get_meter(self, name: str = "morpheus") -> metrics.Meter:
        """Get a meter from the configured provider, or the global one."""
        if self._meter_provider is not None:
            return self._meter_provider.get_meter(name)
        return metrics.get_meter(name)

    def shutdown(self) -> None:
        """Gracefully shutdown telemetry and flush pending data."""
        if not self._initialized:
            return

        try:
            if self._tracer_provider is not None:
                self._tracer_provider.shutdown()
            if self._meter_provider is not None:
                self._meter_provider.shutdown()
            AsyncioInstrumentor().uninstrument()
            LoggingInstrumentor().uninstrument()
            logger.info("OpenTelemetry shutdown completed")
        except Exception as e:
            logger.error(f"Error during telemetry shutdown: {e}")
        finally:
            self._initialized = False


_telemetry_manager: Optional[TelemetryManager] = None


def initialize_telemetry(config: Dict[str, Any]) -> TelemetryManager:
    """Initialize global telemetry manager."""
    global _telemetry_manager

    _telemetry_manager = TelemetryManager(TelemetrySettings(config))
    _telemetry_manager.initialize()

    return _telemetry_manager


def get_tracer(name: str = "morpheus") -> trace.Tracer:
    """Get a tracer; a no-op tracer until telemetry is initialized."""
    return trace.get_tracer(name)


def shutdown_telemetry() -> None:
    """Shutdown global telemetry manager."""
    global _telemetry_manager
    if _telemetry_manager:
        _telemetry_manager.shutdown()
        _telemetry_manager = None
