"""Secure image fetching: SSRF validation, bounded redirects, magic-byte checks."""

from content_pipeline.core.fetch.image_fetcher import (
    DEFAULT_MAX_SIZE_BYTES,
    MAX_REDIRECTS,
    FetchRequest,
    FetchResult,
    SecureImageFetcher,
    is_retryable_fetch_error,
)
from content_pipeline.core.fetch.signatures import IMAGE_SIGNATURES, detect_image_type
from content_pipeline.core.fetch.url_validation import (
    CLOUD_METADATA_HOSTS,
    Resolver,
    blocked_ip_reason,
    resolve_hostname,
    resolve_hostname_async,
    validate_image_url,
    validate_image_url_async,
)

__all__ = [
    "DEFAULT_MAX_SIZE_BYTES",
    "MAX_REDIRECTS",
    "FetchRequest",
    "FetchResult",
    "SecureImageFetcher",
    "is_retryable_fetch_error",
    "IMAGE_SIGNATURES",
    "detect_image_type",
    "CLOUD_METADATA_HOSTS",
    "Resolver",
    "blocked_ip_reason",
    "resolve_hostname",
    "resolve_hostname_async",
    "validate_image_url",
    "validate_image_url_async",
]
