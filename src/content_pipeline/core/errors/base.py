"""Error-to-code mapping registry.

Provides a centralized mapping from exception types to (error_code, error_type)
tuples so callers (CLI, metadata, logs) can report failures consistently.

Usage:
    from content_pipeline.core.errors.base import error_to_dict

    try:
        await fetcher.download_image_with_retry(request)
    except FetchError as e:
        payload = error_to_dict(e)
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple, Type

from content_pipeline.core.errors.fetch import (
    FetchError,
    FetchSecurityError,
    FetchValidationError,
    HTTPStatusFetchError,
    ImageTooLargeError,
    InvalidImageError,
    SSRFError,
    TooManyRedirectsError,
    TransientFetchError,
)
from content_pipeline.core.errors.pipeline import (
    ConfigValidationError,
    GenerationCancelledError,
    GenerationTimeoutError,
    PayloadValidationError,
)

# error_type buckets: transient, security, validation, cancelled, config, unknown
ERROR_MAPPINGS: Dict[Type[Exception], Tuple[str, str]] = {
    SSRFError: ("SSRF_BLOCKED", "security"),
    FetchSecurityError: ("FETCH_BLOCKED", "security"),
    ImageTooLargeError: ("IMAGE_TOO_LARGE", "validation"),
    InvalidImageError: ("INVALID_IMAGE", "validation"),
    TooManyRedirectsError: ("TOO_MANY_REDIRECTS", "validation"),
    HTTPStatusFetchError: ("HTTP_STATUS", "validation"),
    FetchValidationError: ("FETCH_INVALID", "validation"),
    TransientFetchError: ("FETCH_TRANSIENT", "transient"),
    FetchError: ("FETCH_FAILED", "unknown"),
    PayloadValidationError: ("INVALID_PAYLOAD", "validation"),
    GenerationTimeoutError: ("GENERATION_TIMEOUT", "cancelled"),
    GenerationCancelledError: ("CANCELLED", "cancelled"),
    ConfigValidationError: ("INVALID_CONFIG", "config"),
}


def classify_error(exc: Exception) -> Optional[Tuple[str, str]]:
    """Return the (error_code, error_type) for ``exc`` or None if unmapped.

    Walks the MRO so subclasses resolve to their most specific mapping.
    """
    for cls in type(exc).__mro__:
        mapping = ERROR_MAPPINGS.get(cls)
        if mapping is not None:
            return mapping
    return None


def error_to_dict(exc: Exception) -> Dict[str, Any]:
    """Convert an exception into a serializable error payload."""
    mapping = classify_error(exc)
    code, error_type = mapping if mapping is not None else ("INTERNAL_ERROR", "internal")
    payload: Dict[str, Any] = {
        "error_code": code,
        "error_type": error_type,
        "message": str(exc),
    }
    url = getattr(exc, "url", None)
    if url:
        payload["url"] = url
    status_code = getattr(exc, "status_code", None)
    if status_code is not None:
        payload["status_code"] = status_code
    return payload
