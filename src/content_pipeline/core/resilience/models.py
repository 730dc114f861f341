"""Retry policy models and protocols.

Defines the core types used across the resilience sub-package:
- RetryPolicy for max attempts, backoff shape, and retryable-error predicate
- SleepFunc protocol for injectable async sleep
"""

from dataclasses import dataclass
from typing import Callable, Optional, Protocol


class SleepFunc(Protocol):
    """Protocol for injectable sleep function."""

    async def __call__(self, seconds: float) -> None: ...


RetryPredicate = Callable[[BaseException], bool]


def _retry_everything(_exc: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """Composable retry policy shared by the fetcher and collaborator calls.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1).
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for any single delay, in seconds.
        backoff_multiplier: Growth factor applied per retry.
        jitter: Fractional jitter range around the computed delay
            (0.25 => 75-125%). 0 disables jitter.
        should_retry: Predicate deciding whether an exception is retryable.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.25
    should_retry: RetryPredicate = _retry_everything

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def compute_delay(self, attempt: int, random_value: Optional[float] = None) -> float:
        """Delay before retry number ``attempt + 1`` (``attempt`` is 0-based).

        Args:
            attempt: Index of the attempt that just failed.
            random_value: Value in [0, 1) used for jitter; None disables jitter.
        """
        delay = min(self.base_delay * (self.backoff_multiplier**attempt), self.max_delay)
        if self.jitter and random_value is not None:
            delay = delay * (1.0 - self.jitter + 2.0 * self.jitter * random_value)
        return max(delay, 0.0)

    def with_predicate(self, should_retry: RetryPredicate) -> "RetryPolicy":
        """Return a copy of this policy using a different retryable predicate."""
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            backoff_multiplier=self.backoff_multiplier,
            jitter=self.jitter,
            should_retry=should_retry,
        )
