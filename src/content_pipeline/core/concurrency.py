"""
Concurrency limiting for asset downloads.

Image references in a finished draft are fetched in parallel, but never more
than a configured number at a time. Each download owns its own client and
buffers, so the limiter only bounds how many run at once.

Example:
    from content_pipeline.core.concurrency import ConcurrencyLimiter

    limiter = ConcurrencyLimiter(max_concurrent=4, name="assets")
    result = await limiter.map(fetch_one, urls)
    for url, value, error in zip(urls, result.results, result.errors):
        ...
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Coroutine, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class ConcurrencyStats:
    """Statistics from concurrent operation execution.

    Attributes:
        total: Total operations attempted
        succeeded: Operations completed successfully
        failed: Operations that raised exceptions
        elapsed_seconds: Total execution time
    """

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    elapsed_seconds: float = 0.0


@dataclass
class GatherResult:
    """Per-operation results and errors, index-aligned with the input."""

    results: List[Any] = field(default_factory=list)
    errors: List[Optional[BaseException]] = field(default_factory=list)
    stats: ConcurrencyStats = field(default_factory=ConcurrencyStats)


class ConcurrencyLimiter:
    """Limit concurrent async operations using a semaphore.

    Failures of individual operations are captured in the ``GatherResult``
    rather than aborting their siblings. Cancellation of the caller still
    propagates.
    """

    def __init__(self, max_concurrent: int = 4, *, name: str = ""):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.name = name
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._active_count = 0
        self._peak_active = 0

    @property
    def peak_active(self) -> int:
        """Highest number of operations observed running at once."""
        return self._peak_active

    @asynccontextmanager
    async def acquire(self):
        """Hold one slot for the duration of the block."""
        async with self._semaphore:
            self._active_count += 1
            self._peak_active = max(self._peak_active, self._active_count)
            try:
                yield
            finally:
                self._active_count -= 1

    async def gather(self, coros: Sequence[Coroutine[Any, Any, T]]) -> GatherResult:
        """Run coroutines with at most ``max_concurrent`` in flight."""
        start = time.monotonic()
        stats = ConcurrencyStats(total=len(coros))
        results: List[Any] = [None] * len(coros)
        errors: List[Optional[BaseException]] = [None] * len(coros)

        async def run_one(index: int, coro: Coroutine[Any, Any, T]) -> None:
            try:
                async with self.acquire():
                    results[index] = await coro
                stats.succeeded += 1
            except Exception as e:
                errors[index] = e
                stats.failed += 1

        try:
            await asyncio.gather(*(run_one(i, c) for i, c in enumerate(coros)))
        finally:
            stats.elapsed_seconds = time.monotonic() - start

        if stats.failed:
            logger.debug(
                "Limiter %s: %d/%d operations failed",
                self.name or "<unnamed>",
                stats.failed,
                stats.total,
            )
        return GatherResult(results=results, errors=errors, stats=stats)

    async def map(self, func: Callable[[R], Awaitable[T]], items: Sequence[R]) -> GatherResult:
        """Apply an async function to items with concurrency limiting."""
        return await self.gather([func(item) for item in items])  # type: ignore[misc]


__all__ = ["ConcurrencyLimiter", "ConcurrencyStats", "GatherResult"]
