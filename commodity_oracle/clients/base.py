"""
Base API client with rate limiting, retries, and common functionality.
All HTTP price-source clients inherit from this class.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from commodity_oracle.config import Settings, get_settings
from commodity_oracle.models import CommoditySymbol, PriceQuote, Region

logger = structlog.get_logger()


class RateLimiter:
    """Token bucket rate limiter with async support."""

    def __init__(self, rate: float, capacity: Optional[float] = None):
        """
        Initialize rate limiter.

        Args:
            rate: Tokens per second
            capacity: Maximum burst capacity (default: rate * 2, at least 1)
        """
        self.rate = rate
        self.capacity = capacity or max(rate * 2, 1.0)
        self.tokens = self.capacity
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self, tokens: float = 1.0) -> float:
        """
        Acquire tokens, waiting if necessary.

        Returns:
            Wait time in seconds (0 if no wait needed)
        """
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens >= tokens:
                self.tokens -= tokens
                return 0.0

            wait_time = (tokens - self.tokens) / self.rate
            await asyncio.sleep(wait_time)
            self.tokens = 0
            self.last_update = time.monotonic()
            return wait_time


def _is_retryable(exc: BaseException) -> bool:
    """Transport errors, 5xx and 429 are retried; other 4xx are not."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


class BaseAPIClient(ABC):
    """
    Abstract base class for HTTP price sources.
    Provides rate limiting, retries, metrics and the ``fetch`` contract.
    """

    # Must be set by subclasses
    SOURCE: str = ""
    BASE_URL: str = ""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        base_url: Optional[str] = None,
        rate_limit_rps: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or get_settings()
        self._client: Optional[httpx.AsyncClient] = None
        self._transport = transport
        self._base_url = base_url or self._get_default_base_url()

        self._rate_limiter = RateLimiter(rate_limit_rps or self._get_default_rate_limit())
        self._timeout = timeout_seconds or self._settings.api_timeout_seconds
        self._max_retries = max_retries or self._settings.retry_max_attempts
        self._backoff_seconds = backoff_seconds

        # Metrics
        self._request_count = 0
        self._error_count = 0
        self._total_latency_ms = 0.0

    def _get_default_base_url(self) -> str:
        return self.BASE_URL

    @abstractmethod
    def _get_default_rate_limit(self) -> float:
        """Get default rate limit for this source."""

    def _get_headers(self) -> dict[str, str]:
        """Get headers for requests."""
        return {"Accept": "application/json"}

    @abstractmethod
    async def fetch(self, symbol: CommoditySymbol, region: Region) -> PriceQuote:
        """Fetch the latest quote; raise on any failure."""

    async def __aenter__(self) -> "BaseAPIClient":
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def connect(self) -> None:
        """Initialize the HTTP client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            headers=self._get_headers(),
            transport=self._transport,
        )
        logger.info("API client connected", source=self.SOURCE, base_url=self._base_url)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info(
                "API client closed",
                source=self.SOURCE,
                requests_made=self._request_count,
                errors=self._error_count,
            )

    async def _make_request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Make a single HTTP request with rate limiting.
        Does not include retry logic (handled by caller).
        """
        if self._client is None:
            await self.connect()

        wait_time = await self._rate_limiter.acquire()
        log = logger.bind(source=self.SOURCE, method=method, path=path)
        start = time.monotonic()

        try:
            response = await self._client.request(method, path, params=params)
            elapsed_ms = (time.monotonic() - start) * 1000
            self._request_count += 1
            self._total_latency_ms += elapsed_ms

            log.debug(
                "API request completed",
                status=response.status_code,
                latency_ms=round(elapsed_ms, 2),
                wait_time=round(wait_time, 3),
            )
            response.raise_for_status()
            return response

        except Exception as e:
            self._error_count += 1
            log.warning("API request failed", error=str(e))
            raise

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        Make a GET request with retries.
        Returns parsed JSON response.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential_jitter(initial=self._backoff_seconds, max=10, jitter=self._backoff_seconds),
            reraise=True,
        ):
            with attempt:
                response = await self._make_request("GET", path, params=params)
        return response.json()

    def get_metrics(self) -> dict[str, Any]:
        """Get client metrics."""
        avg_latency = (
            self._total_latency_ms / self._request_count
            if self._request_count > 0
            else 0
        )
        return {
            "source": self.SOURCE,
            "requests": self._request_count,
            "errors": self._error_count,
            "error_rate": self._error_count / max(self._request_count, 1),
            "avg_latency_ms": round(avg_latency, 2),
        }
