"""Pipeline error classes.

Collaborator payload validation, cancellation, and configuration errors.
Content-quality rejections are deliberately absent: a reviewer rejection is
an orchestration state, not an exception.
"""

from __future__ import annotations

from typing import Any, Optional


class PayloadValidationError(ValueError):
    """Raised when a collaborator returns a payload of the wrong shape.

    Attributes:
        payload_type: Name of the model the payload was validated against.
        errors: Structured validation errors (pydantic ``errors()`` output).
    """

    error_code = "INVALID_PAYLOAD"

    def __init__(
        self,
        payload_type: str,
        message: str,
        errors: Optional[list[dict[str, Any]]] = None,
    ):
        self.payload_type = payload_type
        self.errors = errors or []
        super().__init__(f"Invalid {payload_type} payload: {message}")


class GenerationCancelledError(Exception):
    """Raised when a generation run is cancelled at a phase or section boundary.

    Attributes:
        phase: The phase that was about to start when cancellation was observed.
    """

    error_code = "CANCELLED"

    def __init__(self, phase: Optional[str] = None, message: Optional[str] = None):
        self.phase = phase
        if message is None:
            where = f" before phase {phase!r}" if phase else ""
            message = f"Generation cancelled{where}"
        super().__init__(message)


class ConfigValidationError(ValueError):
    """Raised when pipeline configuration values are inconsistent.

    Attributes:
        field: Dotted name of the offending configuration field.
    """

    error_code = "INVALID_CONFIG"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class GenerationTimeoutError(GenerationCancelledError):
    """Raised when a run exceeds its overall generation budget.

    Attributes:
        timeout: The budget in seconds.
    """

    error_code = "GENERATION_TIMEOUT"

    def __init__(self, timeout: float, phase: Optional[str] = None):
        self.timeout = timeout
        super().__init__(phase, f"Generation timed out after {timeout}s")
