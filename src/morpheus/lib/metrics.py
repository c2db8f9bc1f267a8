"""
Metrics collection for routing and sandboxed agent operations.

Instruments are created from the global OpenTelemetry meter, so recording is a
no-op until a meter provider is installed by `initialize_telemetry`.
"""

import time
from contextlib import contextmanager
from typing import Optional

from opentelemetry import metrics


class MetricsCollector:
    """Collects Morpheus routing, agent and sandbox metrics."""

    def __init__(self, meter: metrics.Meter):
        self.meter = meter
        self._setup_instruments()

    def _setup_instruments(self) -> None:
        """Setup OpenTelemetry metric instruments."""
        self.routing_decisions = self.meter.create_counter(
            name="morpheus_routing_decisions_total",
            description="Routing decisions by target agent and decision source",
            unit="1"
        )

        self.routing_confidence = self.meter.create_histogram(
            name="morpheus_routing_confidence",
            description="Confidence of routing decisions",
            unit="1"
        )

        self.agent_requests = self.meter.create_counter(
            name="morpheus_agent_requests_total",
            description="Agent operations by agent, operation and outcome",
            unit="1"
        )

        self.agent_duration = self.meter.create_histogram(
            name="morpheus_agent_duration_ms",
            description="Agent operation duration",
            unit="ms"
        )

        self.sandbox_blocks = self.meter.create_counter(
            name="morpheus_sandbox_blocks_total",
            description="Requests rejected at a sandbox boundary",
            unit="1"
        )

        self.active_sessions = self.meter.create_up_down_counter(
            name="morpheus_active_sessions",
            description="Number of live sessions",
            unit="1"
        )

    def record_routing_decision(self, agent_name: Optional[str], source: str, confidence: float) -> None:
        attributes = {"agent": agent_name or "direct", "source": source}
        self.routing_decisions.add(1, attributes)
        self.routing_confidence.record(confidence, attributes)

    def record_agent_operation(self, agent_name: str, operation: str, duration_ms: int, success: bool) -> None:
        """Record agent operation metrics."""
        attributes = {
            "agent": agent_name,
            "operation": operation,
            "success": str(success).lower()
        }
        self.agent_requests.add(1, attributes)
        self.agent_duration.record(duration_ms, attributes)

    def record_sandbox_block(self, boundary: str, reason: str) -> None:
        self.sandbox_blocks.add(1, {"boundary": boundary, "reason": reason})

    def record_session_change(self, delta: int) -> None:
        self.active_sessions.add(delta)


class AgentTimer:
    """Context manager for timing agent operations."""

    def __init__(self, metrics_collector: MetricsCollector, agent_name: str, operation: str):
        self.metrics_collector = metrics_collector
        self.agent_name = agent_name
        self.operation = operation
        self.start_time: Optional[float] = None
        self.success: bool = True
        self.duration_ms: Optional[int] = None

    def __enter__(self) -> "AgentTimer":
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return
        if exc_type is not None:
            self.success = False
        self.duration_ms = int((time.monotonic() - self.start_time) * 1000)
        self.metrics_collector.record_agent_operation(
            self.agent_name, self.operation, self.duration_ms, self.success
        )


_metrics_collector: Optional[MetricsCollector] = None


def initialize_metrics(meter: Optional[metrics.Meter] = None) -> MetricsCollector:
    """Initialize global metrics collector."""
    global _metrics_collector
    _metrics_collector = MetricsCollector(meter or metrics.get_meter("morpheus"))
    return _metrics_collector


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector, creating it from the global meter if needed."""
    if _metrics_collector is None:
        return initialize_metrics()
    return _metrics_collector


@contextmanager
def time_agent_operation(agent_name: str, operation: str):
    """Context manager for timing agent operations."""
    collector = get_metrics_collector()
    with AgentTimer(collector, agent_name, operation) as timer:
        yield timer
