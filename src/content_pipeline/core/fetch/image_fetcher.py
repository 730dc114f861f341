"""SSRF-hardened image download.

Security features:
    - SSRF validation on the initial URL and on every redirect hop
    - Redirects followed manually (transport-level following disabled), bounded
    - Optional HEAD size probe before the transfer
    - Streaming download with early abort at the size limit
    - Magic-byte validation; the declared Content-Type is ignored

Only transient failures (connection errors, resets, timeouts) are retried by
``download_image_with_retry``. Security and validation rejections surface on
the attempt that produced them.

Example:
    fetcher = SecureImageFetcher()
    result = await fetcher.download_image_with_retry(FetchRequest(url=url))
    result.media_type  # "image/png"
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional
from urllib.parse import urljoin

import httpx

from content_pipeline.core.errors import (
    FetchError,
    HTTPStatusFetchError,
    ImageTooLargeError,
    InvalidImageError,
    SSRFError,
    TooManyRedirectsError,
    TransientFetchError,
    classify_error,
)
from content_pipeline.core.fetch.signatures import detect_image_type, extension_for
from content_pipeline.core.fetch.url_validation import Resolver, validate_image_url_async
from content_pipeline.core.observability import AuditLogger, MetricsCollector, get_audit_logger, get_metrics
from content_pipeline.core.resilience import RetryPolicy, SleepFunc, async_retry_with_backoff
from content_pipeline.core.timing import Clock, system_clock

if TYPE_CHECKING:
    from content_pipeline.config import FetchConfig

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 5
DEFAULT_MAX_SIZE_BYTES = 10 * 1024 * 1024
DEFAULT_USER_AGENT = "content-pipeline/0.1 ImageFetcher"
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
CHUNK_SIZE = 65536


def is_retryable_fetch_error(exc: BaseException) -> bool:
    """Only transient network failures are worth another attempt."""
    return isinstance(exc, TransientFetchError)


@dataclass
class FetchRequest:
    """One image download.

    Attributes:
        url: Target URL.
        max_size_bytes: Largest accepted payload.
        check_size_first: Issue a HEAD probe before the GET.
        timeout: Total transfer budget in seconds (probe, redirects, body).
        connect_timeout: Per-connection connect timeout in seconds.
        max_retries: Retries after the first attempt for transient failures.
        initial_delay: Backoff before the first retry, in seconds.
        backoff_multiplier: Growth factor per retry.
        max_delay: Cap on any single backoff, in seconds.
    """

    url: str
    max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES
    check_size_first: bool = True
    timeout: float = 30.0
    connect_timeout: float = 10.0
    max_retries: int = 2
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 10.0

    def __post_init__(self) -> None:
        if self.max_size_bytes <= 0:
            raise ValueError("max_size_bytes must be positive")
        if self.timeout <= 0 or self.connect_timeout <= 0:
            raise ValueError("timeouts must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.initial_delay,
            max_delay=self.max_delay,
            backoff_multiplier=self.backoff_multiplier,
            should_retry=is_retryable_fetch_error,
        )


@dataclass(frozen=True)
class FetchResult:
    """A validated image payload."""

    content: bytes
    media_type: str
    size: int
    final_url: str
    redirects: int = 0

    @property
    def extension(self) -> str:
        return extension_for(self.media_type)


def _declared_length(headers: httpx.Headers) -> Optional[int]:
    raw = headers.get("content-length")
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


class SecureImageFetcher:
    """Downloads images while defending against SSRF, oversize and spoofed payloads.

    Every collaborator is injectable: ``transport`` (an ``httpx`` transport,
    e.g. ``httpx.MockTransport`` in tests), ``resolver`` for DNS, ``clock``
    for duration metrics, and ``sleep_func``/``rng`` for retry backoff.
    """

    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        resolver: Optional[Resolver] = None,
        resolve_dns: bool = True,
        require_https: bool = True,
        trusted_http_hosts: Iterable[str] = (),
        user_agent: str = DEFAULT_USER_AGENT,
        clock: Optional[Clock] = None,
        sleep_func: Optional[SleepFunc] = None,
        rng: Optional[random.Random] = None,
        metrics: Optional[MetricsCollector] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self._transport = transport
        self._resolver = resolver
        self._resolve_dns = resolve_dns
        self._require_https = require_https
        self._trusted_http_hosts = frozenset(trusted_http_hosts)
        self._user_agent = user_agent
        self._clock = clock or system_clock
        self._sleep = sleep_func
        self._rng = rng
        self._metrics = metrics or get_metrics()
        self._audit = audit or get_audit_logger()

    @classmethod
    def from_config(cls, config: "FetchConfig", **overrides) -> "SecureImageFetcher":
        """Build a fetcher from a ``FetchConfig``; keyword overrides win."""
        kwargs = {
            "resolve_dns": config.resolve_dns,
            "require_https": config.require_https,
            "trusted_http_hosts": config.trusted_http_hosts,
            "user_agent": config.user_agent,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    async def validate_url(self, url: str, *, redirect_hop: Optional[int] = None) -> None:
        """Run SSRF validation, writing any rejection to the audit log.

        DNS lookups run off the event loop.

        Raises:
            SSRFError: If the URL is blocked.
        """
        try:
            await validate_image_url_async(
                url,
                resolver=self._resolver,
                resolve_dns=self._resolve_dns,
                require_https=self._require_https,
                trusted_http_hosts=self._trusted_http_hosts,
            )
        except SSRFError as e:
            self._audit.ssrf_blocked(url, e.reason, redirect_hop=redirect_hop)
            raise

    async def download_image(self, request: FetchRequest) -> FetchResult:
        """Download and validate one image (single attempt).

        Raises:
            SSRFError: URL or a redirect target is blocked.
            ImageTooLargeError: Declared or streamed size exceeds the limit.
            TooManyRedirectsError: More than ``MAX_REDIRECTS`` redirects.
            HTTPStatusFetchError: Non-2xx terminal response.
            InvalidImageError: Payload matches no image signature.
            TransientFetchError: Network failure or timeout.
        """
        started = self._clock.now()
        outcome = "error"
        try:
            result = await self._download(request)
            outcome = "success"
            return result
        except FetchError as e:
            mapping = classify_error(e)
            outcome = mapping[1] if mapping else "error"
            raise
        finally:
            self._metrics.timer(
                "fetch.duration",
                self._clock.now() - started,
                labels={"outcome": outcome},
            )

    async def download_image_with_retry(self, request: FetchRequest) -> FetchResult:
        """Download with bounded exponential backoff for transient failures only."""
        return await async_retry_with_backoff(
            lambda: self.download_image(request),
            policy=request.retry_policy(),
            context=f"Image download {request.url}",
            rng=self._rng,
            sleep_func=self._sleep,
        )

    async def _download(self, request: FetchRequest) -> FetchResult:
        # Validate before any client exists so a blocked URL never reaches the transport
        await self.validate_url(request.url)

        timeout = httpx.Timeout(request.timeout, connect=request.connect_timeout)
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=timeout,
            follow_redirects=False,
            headers={"User-Agent": self._user_agent},
        ) as client:
            try:
                return await asyncio.wait_for(self._transfer(client, request), timeout=request.timeout)
            except asyncio.TimeoutError as e:
                raise TransientFetchError(
                    f"Download timed out after {request.timeout}s",
                    url=request.url,
                ) from e
            except httpx.TransportError as e:
                raise TransientFetchError(f"Network error: {e}", url=request.url) from e

    async def _transfer(self, client: httpx.AsyncClient, request: FetchRequest) -> FetchResult:
        if request.check_size_first:
            await self._probe_size(client, request)

        current_url = request.url
        redirects = 0
        while True:
            async with client.stream("GET", current_url) as response:
                if response.status_code in REDIRECT_STATUSES:
                    location = response.headers.get("location")
                    if not location:
                        raise HTTPStatusFetchError(
                            response.status_code,
                            url=current_url,
                            detail="redirect without Location header",
                        )
                    if redirects >= MAX_REDIRECTS:
                        raise TooManyRedirectsError(MAX_REDIRECTS, url=current_url)
                    next_url = urljoin(current_url, location)
                    await self.validate_url(next_url, redirect_hop=redirects + 1)
                    logger.debug("Redirect %d: %s -> %s", redirects + 1, current_url, next_url)
                    redirects += 1
                    current_url = next_url
                    continue

                if not response.is_success:
                    raise HTTPStatusFetchError(
                        response.status_code,
                        url=current_url,
                        detail=response.reason_phrase,
                    )

                content = await self._read_body(response, request, current_url)
                break

        media_type = detect_image_type(content)
        if media_type is None:
            raise InvalidImageError(
                "Downloaded content is not a valid image (invalid magic bytes)",
                url=current_url,
            )

        logger.debug("Downloaded %d bytes (%s) from %s", len(content), media_type, current_url)
        return FetchResult(
            content=content,
            media_type=media_type,
            size=len(content),
            final_url=current_url,
            redirects=redirects,
        )

    async def _probe_size(self, client: httpx.AsyncClient, request: FetchRequest) -> Optional[int]:
        """HEAD the target and enforce its declared size.

        A redirecting HEAD only has its target validated. A failed or
        unsupported HEAD is ignored and the GET decides.
        """
        try:
            response = await client.head(request.url)
        except httpx.TransportError as e:
            logger.debug("HEAD probe failed for %s, continuing with GET: %s", request.url, e)
            return None

        if response.status_code in REDIRECT_STATUSES:
            location = response.headers.get("location")
            if location:
                await self.validate_url(urljoin(request.url, location), redirect_hop=1)
            return None

        if not response.is_success:
            return None

        declared = _declared_length(response.headers)
        if declared is not None and declared > request.max_size_bytes:
            raise ImageTooLargeError(declared, request.max_size_bytes, url=request.url, declared=True)
        return declared

    async def _read_body(self, response: httpx.Response, request: FetchRequest, url: str) -> bytes:
        declared = _declared_length(response.headers)
        if declared is not None and declared > request.max_size_bytes:
            raise ImageTooLargeError(declared, request.max_size_bytes, url=url, declared=True)

        chunks: list[bytes] = []
        total_size = 0
        async for chunk in response.aiter_bytes(chunk_size=CHUNK_SIZE):
            total_size += len(chunk)
            if total_size > request.max_size_bytes:
                raise ImageTooLargeError(total_size, request.max_size_bytes, url=url)
            chunks.append(chunk)
        return b"".join(chunks)
