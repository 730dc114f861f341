"""Audit logging and metrics for content-pipeline."""

from content_pipeline.core.observability.audit import (
    AuditEvent,
    AuditEventType,
    AuditLogger,
    get_audit_logger,
)
from content_pipeline.core.observability.metrics import (
    REGISTRY,
    Metric,
    MetricsCollector,
    MetricType,
    get_metrics,
)

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
    "get_audit_logger",
    "REGISTRY",
    "Metric",
    "MetricsCollector",
    "MetricType",
    "get_metrics",
]
