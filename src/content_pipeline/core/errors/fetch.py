"""Secure fetch error classes.

The hierarchy mirrors the three ways a fetch can fail:

- ``TransientFetchError``: connection errors, resets and timeouts. Retried.
- ``FetchSecurityError`` / ``SSRFError``: the target (or a redirect target)
  points at a blocked address class. Never retried; logged as a security event.
- ``FetchValidationError`` and subclasses: oversized payloads, bad magic
  bytes, non-2xx responses, excessive redirect chains. Never retried.
"""

from __future__ import annotations

from typing import Optional


class FetchError(Exception):
    """Base exception for all secure fetch failures.

    Attributes:
        url: The URL being fetched when the failure occurred (if known).
    """

    error_code: str = "FETCH_FAILED"

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


# =============================================================================
# Transient I/O
# =============================================================================


class TransientFetchError(FetchError):
    """Network-level failure that may succeed on retry (reset, refused, timeout)."""

    error_code = "FETCH_TRANSIENT"


# =============================================================================
# Security rejection
# =============================================================================


class FetchSecurityError(FetchError):
    """Base exception for fetches blocked by security policy."""

    error_code = "FETCH_BLOCKED"


class SSRFError(FetchSecurityError):
    """Raised when SSRF protection blocks a URL or redirect target.

    Attributes:
        url: The blocked URL.
        reason: Human-readable explanation of why it was blocked.
    """

    error_code = "SSRF_BLOCKED"

    def __init__(self, url: str, reason: str):
        self.reason = reason
        super().__init__(f"URL blocked by SSRF protection ({reason}): {url!r}", url=url)


# =============================================================================
# Validation rejection
# =============================================================================


class FetchValidationError(FetchError):
    """Base exception for responses or payloads that fail validation."""

    error_code = "FETCH_INVALID"


class ImageTooLargeError(FetchValidationError):
    """Raised when a declared or actual payload size exceeds the limit.

    Attributes:
        size: Declared or observed size in bytes.
        max_size: Configured maximum in bytes.
    """

    error_code = "IMAGE_TOO_LARGE"

    def __init__(self, size: int, max_size: int, url: Optional[str] = None, *, declared: bool = False):
        self.size = size
        self.max_size = max_size
        self.declared = declared
        where = "declared" if declared else "downloaded"
        super().__init__(
            f"Image too large: {size} bytes {where} (max: {max_size})",
            url=url,
        )


class InvalidImageError(FetchValidationError):
    """Raised when the payload's leading bytes match no known image signature."""

    error_code = "INVALID_IMAGE"


class TooManyRedirectsError(FetchValidationError):
    """Raised when a redirect chain exceeds the configured maximum.

    Attributes:
        max_redirects: The redirect limit that was exceeded.
    """

    error_code = "TOO_MANY_REDIRECTS"

    def __init__(self, max_redirects: int, url: Optional[str] = None):
        self.max_redirects = max_redirects
        super().__init__(f"Too many redirects (max: {max_redirects})", url=url)


class HTTPStatusFetchError(FetchValidationError):
    """Raised for non-2xx terminal responses.

    Attributes:
        status_code: HTTP status code returned by the server.
    """

    error_code = "HTTP_STATUS"

    def __init__(self, status_code: int, url: Optional[str] = None, detail: str = ""):
        self.status_code = status_code
        message = f"HTTP {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, url=url)
