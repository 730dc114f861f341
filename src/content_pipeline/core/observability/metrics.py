"""Metrics collection for observability.

Every metric is emitted as a structured log line. Fetch and phase metrics are
also recorded in Prometheus collectors registered on a package-owned
registry, so embedding applications can expose them without touching the
global default registry.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from prometheus_client import CollectorRegistry, Counter, Histogram

logger = logging.getLogger(__name__)

REGISTRY = CollectorRegistry(auto_describe=True)

_fetch_duration = Histogram(
    "content_pipeline_fetch_duration_seconds",
    "Image fetch duration in seconds",
    ["outcome"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    registry=REGISTRY,
)

_fetch_total = Counter(
    "content_pipeline_fetch_total",
    "Image fetch attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

_phase_duration = Histogram(
    "content_pipeline_phase_duration_seconds",
    "Generation phase duration in seconds",
    ["phase"],
    buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0),
    registry=REGISTRY,
)

_generation_total = Counter(
    "content_pipeline_generation_total",
    "Generation runs by outcome",
    ["outcome"],
    registry=REGISTRY,
)


class MetricType(Enum):
    """Types of metrics that can be emitted."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"
    TIMER = "timer"


@dataclass
class Metric:
    """Structured metric data."""

    name: str
    value: Union[int, float]
    metric_type: MetricType
    labels: Dict[str, str] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "value": self.value,
            "type": self.metric_type.value,
            "labels": self.labels,
            "timestamp": self.timestamp,
        }


class MetricsCollector:
    """
    Collects and emits metrics to the standard logger and Prometheus.

    Metrics are logged as structured records for log aggregation. Known
    metric names are mirrored into the package Prometheus registry.
    """

    def __init__(self, prefix: str = "content_pipeline"):
        self.prefix = prefix
        self._logger = logging.getLogger(f"{__name__}.metrics")

    def emit(self, metric: Metric) -> None:
        """Emit a metric to the logger and Prometheus.

        Args:
            metric: The Metric to emit
        """
        self._logger.info(f"METRIC: {self.prefix}.{metric.name}", extra={"metric": metric.to_dict()})

        if metric.name == "fetch.duration" and metric.metric_type == MetricType.TIMER:
            outcome = metric.labels.get("outcome", "unknown")
            _fetch_duration.labels(outcome=outcome).observe(metric.value / 1000.0)
            _fetch_total.labels(outcome=outcome).inc()
        elif metric.name == "phase.duration" and metric.metric_type == MetricType.TIMER:
            _phase_duration.labels(phase=metric.labels.get("phase", "unknown")).observe(metric.value / 1000.0)
        elif metric.name == "generation.completed" and metric.metric_type == MetricType.COUNTER:
            _generation_total.labels(outcome=metric.labels.get("outcome", "unknown")).inc(metric.value)

    def counter(self, name: str, value: int = 1, labels: Optional[Dict[str, str]] = None) -> None:
        """Emit a counter metric."""
        self.emit(Metric(name=name, value=value, metric_type=MetricType.COUNTER, labels=labels or {}))

    def gauge(
        self,
        name: str,
        value: Union[int, float],
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Emit a gauge metric."""
        self.emit(Metric(name=name, value=value, metric_type=MetricType.GAUGE, labels=labels or {}))

    def timer(self, name: str, duration_ms: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Emit a timer metric (duration in milliseconds)."""
        self.emit(Metric(name=name, value=duration_ms, metric_type=MetricType.TIMER, labels=labels or {}))


# Global metrics collector
_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return _metrics
