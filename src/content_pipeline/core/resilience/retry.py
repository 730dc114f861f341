"""Async retry with exponential backoff and jitter.

Standalone retry utility applied uniformly to image downloads and to
collaborator (generation/review) calls.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from content_pipeline.core.resilience.models import RetryPolicy, SleepFunc

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def async_retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    *,
    policy: Optional[RetryPolicy] = None,
    context: str = "operation",
    rng: Optional[random.Random] = None,
    sleep_func: Optional[SleepFunc] = None,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> T:
    """Async retry with exponential backoff and jitter.

    Non-retryable exceptions (per ``policy.should_retry``) propagate on the
    attempt that raised them; no further calls are made.

    Args:
        func: Async function to retry (no arguments; use lambda for args).
        policy: Retry policy (default: ``RetryPolicy()``).
        context: Label used in log messages (e.g. "image download").
        rng: Injectable Random instance for deterministic testing.
        sleep_func: Injectable sleep function for time control in tests.
        on_retry: Optional hook called with (attempt, error, delay) before sleeping.

    Returns:
        Result from the function on success.

    Raises:
        Exception: The last exception if all retries are exhausted, or the
            first non-retryable exception.

    Testing example:
        >>> sleep_times = []
        >>> async def fake_sleep(s): sleep_times.append(s)
        >>> await async_retry_with_backoff(func, sleep_func=fake_sleep)
    """
    _policy = policy or RetryPolicy()
    _rng = rng or random.Random()
    _sleep = sleep_func or asyncio.sleep

    for attempt in range(_policy.max_attempts):
        try:
            return await func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not _policy.should_retry(e):
                raise

            if attempt >= _policy.max_retries:
                logger.warning(
                    "%s failed after %d attempts: %s",
                    context,
                    attempt + 1,
                    e,
                )
                raise

            delay = _policy.compute_delay(attempt, _rng.random())
            logger.info(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                context,
                attempt + 1,
                _policy.max_attempts,
                delay,
                e,
            )
            if on_retry is not None:
                on_retry(attempt, e, delay)
            await _sleep(delay)

    raise RuntimeError("async_retry_with_backoff: unexpected state")
