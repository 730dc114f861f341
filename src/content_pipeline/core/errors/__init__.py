"""Unified error hierarchy for content-pipeline.

All custom exception classes are defined in domain-specific modules within
this package. This __init__.py re-exports everything for convenient access.

Usage:
    from content_pipeline.core.errors import SSRFError, error_to_dict
"""

from content_pipeline.core.errors.base import ERROR_MAPPINGS, classify_error, error_to_dict
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

__all__ = [
    # Registry
    "ERROR_MAPPINGS",
    "classify_error",
    "error_to_dict",
    # Fetch
    "FetchError",
    "FetchSecurityError",
    "FetchValidationError",
    "HTTPStatusFetchError",
    "ImageTooLargeError",
    "InvalidImageError",
    "SSRFError",
    "TooManyRedirectsError",
    "TransientFetchError",
    # Pipeline
    "ConfigValidationError",
    "GenerationCancelledError",
    "GenerationTimeoutError",
    "PayloadValidationError",
]
