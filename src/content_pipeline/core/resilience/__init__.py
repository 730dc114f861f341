"""Retry policy and backoff helpers shared by fetch and generation calls."""

from content_pipeline.core.resilience.models import (
    RetryPolicy,
    RetryPredicate,
    SleepFunc,
)
from content_pipeline.core.resilience.predicates import is_retryable_generation_error
from content_pipeline.core.resilience.retry import async_retry_with_backoff

__all__ = [
    "RetryPolicy",
    "RetryPredicate",
    "SleepFunc",
    "async_retry_with_backoff",
    "is_retryable_generation_error",
]
