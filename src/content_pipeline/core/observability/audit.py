"""Audit logging for security events.

Security rejections (SSRF blocks on an initial URL or a redirect hop) are
written to a dedicated logger so they can be filtered apart from ordinary
network noise. The current run id is attached automatically.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from content_pipeline.core.context import get_run_id

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events for security logging."""

    SSRF_BLOCKED = "ssrf_blocked"
    REDIRECT_BLOCKED = "redirect_blocked"
    ASSET_REJECTED = "asset_rejected"


@dataclass
class AuditEvent:
    """Structured audit event for security logging."""

    event_type: AuditEventType
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    run_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.run_id is None:
            self.run_id = get_run_id() or None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "details": self.details,
        }
        if self.run_id:
            result["run_id"] = self.run_id
        return result


class AuditLogger:
    """
    Structured audit logging for security events.

    Audit logs are written to a separate logger for easy filtering.
    """

    def __init__(self):
        self._logger = logging.getLogger(f"{__name__}.audit")

    def log(self, event: AuditEvent) -> None:
        """Log an audit event."""
        self._logger.warning(f"AUDIT: {event.event_type.value}", extra={"audit": event.to_dict()})

    def ssrf_blocked(self, url: str, reason: str, *, redirect_hop: Optional[int] = None, **details: Any) -> None:
        """Log a URL rejected by SSRF protection."""
        event_type = AuditEventType.SSRF_BLOCKED if redirect_hop is None else AuditEventType.REDIRECT_BLOCKED
        payload: Dict[str, Any] = {"url": url, "reason": reason, **details}
        if redirect_hop is not None:
            payload["redirect_hop"] = redirect_hop
        self.log(AuditEvent(event_type=event_type, details=payload))

    def asset_rejected(self, url: str, error_code: str, **details: Any) -> None:
        """Log an asset whose payload failed validation."""
        self.log(
            AuditEvent(
                event_type=AuditEventType.ASSET_REJECTED,
                details={"url": url, "error_code": error_code, **details},
            )
        )


# Global audit logger
_audit = AuditLogger()


def get_audit_logger() -> AuditLogger:
    """Get the global audit logger."""
    return _audit
