"""Retryable-error predicates for collaborator calls.

Language-model calls fail transiently in ways that rarely surface as typed
exceptions, so besides exception types and HTTP status codes the message is
matched against known transient patterns. Malformed payloads are retryable
because model output is non-deterministic. Timeouts are not: the call most
likely succeeded upstream and simply took too long.
"""

from __future__ import annotations

import asyncio
import re

import httpx

from content_pipeline.core.errors import (
    ConfigValidationError,
    FetchSecurityError,
    FetchValidationError,
    GenerationCancelledError,
    PayloadValidationError,
    TransientFetchError,
)

RETRYABLE_MESSAGE_PATTERNS = [
    # Rate limiting
    re.compile(r"rate.?limit", re.IGNORECASE),
    re.compile(r"too.?many.?requests", re.IGNORECASE),
    # Network
    re.compile(r"network", re.IGNORECASE),
    re.compile(r"connection (reset|refused|aborted)", re.IGNORECASE),
    re.compile(r"ECONNRESET|ECONNREFUSED|ETIMEDOUT"),
    # Server side
    re.compile(r"internal.?server.?error", re.IGNORECASE),
    re.compile(r"service.?unavailable", re.IGNORECASE),
    re.compile(r"bad.?gateway", re.IGNORECASE),
    re.compile(r"overloaded", re.IGNORECASE),
    re.compile(r"temporarily", re.IGNORECASE),
    # Unparseable model output
    re.compile(r"invalid json", re.IGNORECASE),
    re.compile(r"could not parse|failed to parse", re.IGNORECASE),
]


def _status_code(exc: BaseException) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable_generation_error(exc: BaseException) -> bool:
    """Decide whether a failed collaborator call is worth another attempt."""
    if isinstance(exc, (GenerationCancelledError, ConfigValidationError)):
        return False
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return False
    if isinstance(exc, (FetchSecurityError, FetchValidationError)):
        return False
    if isinstance(exc, (PayloadValidationError, TransientFetchError, ConnectionError, httpx.TransportError)):
        return True

    status = _status_code(exc)
    if status is not None:
        return status == 429 or 500 <= status < 600

    message = str(exc)
    return any(pattern.search(message) for pattern in RETRYABLE_MESSAGE_PATTERNS)
