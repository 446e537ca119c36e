"""
Price Oracle Cache

Wraps a price source with:
- a freshness window per (symbol, region) key
- single-flight: concurrent misses on one key share one upstream fetch
- bounded fan-out for batch lookups
- stale fallback: on upstream failure the last known quote is served, marked stale,
  and upstream is left alone for a back-off period
- a bounded observation history per key, seeded once from the source's
  historical series and used as forecaster input

The cache is an ordinary object so tests can inject a clock and a fake source.
"""
import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

import structlog

from commodity_oracle.config import Settings, get_settings
from commodity_oracle.exceptions import PriceLookupError, UnknownSymbolError
from commodity_oracle.models import (
    CommoditySymbol,
    PricePoint,
    PriceQuote,
    PriceResult,
    Region,
)
from commodity_oracle.services.price_sources import PriceSource

logger = structlog.get_logger()

CacheKey = tuple[CommoditySymbol, Region]


@dataclass
class CacheEntry:
    quote: PriceQuote
    fetched_at: float  # clock() reading when the quote was stored
    retry_at: Optional[float] = None  # no upstream refresh before this reading


def _consume_exception(task: asyncio.Task) -> None:
    # Fetch failures are re-raised to every waiter; a task nobody awaits anymore
    # must not log "exception was never retrieved".
    if not task.cancelled():
        task.exception()


class PriceOracleCache:
    """Concurrency-safe price cache in front of a PriceSource."""

    def __init__(
        self,
        source: PriceSource,
        ttl_seconds: float = 300.0,
        fetch_timeout_seconds: float = 15.0,
        max_concurrency: int = 4,
        history_size: int = 90,
        failure_backoff_seconds: float = 30.0,
        history_seed_points: int = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._source = source
        self._ttl = ttl_seconds
        self._fetch_timeout = fetch_timeout_seconds
        self._backoff = failure_backoff_seconds
        self._history_size = history_size
        self._seed_points = history_seed_points
        self._clock = clock

        self._entries: dict[CacheKey, CacheEntry] = {}
        self._history: dict[CacheKey, deque[PricePoint]] = {}
        self._inflight: dict[CacheKey, asyncio.Task] = {}
        self._seeding: dict[CacheKey, asyncio.Task] = {}
        self._seeded: set[CacheKey] = set()

        # Guards _inflight and _seeding registration only; never held across a fetch
        self._lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(max_concurrency)

        # Metrics
        self._hits = 0
        self._misses = 0
        self._fetches = 0
        self._failures = 0
        self._stale_served = 0
        self._backoff_served = 0

    @classmethod
    def from_settings(
        cls,
        source: PriceSource,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "PriceOracleCache":
        settings = settings or get_settings()
        return cls(
            source,
            ttl_seconds=settings.price_cache_ttl_seconds,
            fetch_timeout_seconds=settings.price_fetch_timeout_seconds,
            max_concurrency=settings.max_concurrency,
            history_size=settings.price_history_size,
            failure_backoff_seconds=settings.price_failure_backoff_seconds,
            history_seed_points=settings.price_history_seed_points,
            clock=clock,
        )

    @property
    def source(self) -> PriceSource:
        return self._source

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get_price(
        self,
        symbol: "str | CommoditySymbol",
        region: "str | Region",
    ) -> PriceQuote:
        """
        Resolve a quote for (symbol, region).

        Raises:
            UnknownSymbolError / UnknownRegionError: before any I/O
            PriceLookupError: upstream failed and nothing was cached for the key
        """
        key = (CommoditySymbol.parse(symbol), Region.parse(region))

        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            self._hits += 1
            return entry.quote
        if entry is not None and self._in_backoff(entry):
            return self._serve_backoff(entry)

        self._misses += 1
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._is_fresh(entry):
                return entry.quote
            if entry is not None and self._in_backoff(entry):
                return self._serve_backoff(entry)
            task = self._inflight.get(key)
            if task is None:
                task = asyncio.create_task(self._refresh(key))
                task.add_done_callback(_consume_exception)
                self._inflight[key] = task

        # Shielded so a cancelled caller leaves the shared fetch running
        return await asyncio.shield(task)

    async def get_prices(
        self,
        symbols: Sequence[str],
        region: "str | Region",
    ) -> list[PriceResult]:
        """
        Batch lookup. One result per requested symbol, in request order.
        Unknown symbols and failed lookups become failure markers.
        """
        region = Region.parse(region)

        async def lookup(raw: str) -> PriceResult:
            try:
                symbol = CommoditySymbol.parse(raw)
            except UnknownSymbolError as e:
                return PriceResult(symbol=str(raw), region=region, error="unknown_symbol", detail=str(e))
            try:
                quote = await self.get_price(symbol, region)
            except PriceLookupError as e:
                return PriceResult(symbol=str(raw), region=region, error="lookup_failed", detail=str(e))
            return PriceResult(symbol=str(raw), region=region, quote=quote)

        return list(await asyncio.gather(*(lookup(s) for s in symbols)))

    async def _refresh(self, key: CacheKey) -> PriceQuote:
        symbol, region = key
        try:
            async with self._semaphore:
                self._fetches += 1
                try:
                    quote = await asyncio.wait_for(
                        self._source.fetch(symbol, region),
                        timeout=self._fetch_timeout,
                    )
                    if not isinstance(quote, PriceQuote):
                        raise PriceLookupError(
                            f"Price source returned {type(quote).__name__}, expected PriceQuote"
                        )
                except Exception as e:
                    return self._on_fetch_failure(key, e)

            if quote.symbol != symbol or quote.region != region:
                quote = quote.model_copy(update={"symbol": symbol, "region": region})
            if not self.put(quote):
                # Upstream answered with an older observation; keep ours, restart its window
                entry = self._entries[key]
                entry.fetched_at = self._clock()
                entry.retry_at = None
                return entry.quote
            logger.debug("Price refreshed", symbol=symbol.value, region=region.value, source=quote.source)
            return self._entries[key].quote
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    def _on_fetch_failure(self, key: CacheKey, error: Exception) -> PriceQuote:
        symbol, region = key
        self._failures += 1
        reason = "timeout" if isinstance(error, asyncio.TimeoutError) else str(error)

        entry = self._entries.get(key)
        if entry is not None:
            self._stale_served += 1
            entry.retry_at = self._clock() + self._backoff
            logger.warning(
                "Price fetch failed, serving stale quote",
                symbol=symbol.value,
                region=region.value,
                error=reason,
                observed_at=entry.quote.observed_at.isoformat(),
                retry_in_seconds=self._backoff,
            )
            return entry.quote.model_copy(update={"stale": True})

        logger.error("Failed to fetch price", symbol=symbol.value, region=region.value, error=reason)
        raise PriceLookupError(
            f"Price lookup failed for {symbol.value}/{region.value}: {reason}"
        ) from error

    def _in_backoff(self, entry: CacheEntry) -> bool:
        return entry.retry_at is not None and self._clock() < entry.retry_at

    def _serve_backoff(self, entry: CacheEntry) -> PriceQuote:
        self._stale_served += 1
        self._backoff_served += 1
        return entry.quote.model_copy(update={"stale": True})

    # =========================================================================
    # HISTORY
    # =========================================================================

    async def get_history(
        self,
        symbol: "str | CommoditySymbol",
        region: "str | Region",
    ) -> list[PricePoint]:
        """
        Observed prices for a key, oldest first.

        The first call for a key merges in the source's historical series
        (when the source offers one) so forecasts do not start from a single
        point. A failed seed is logged and retried on a later call.
        """
        key = (CommoditySymbol.parse(symbol), Region.parse(region))
        fetch_history = getattr(self._source, "fetch_history", None)
        if fetch_history is None or self._seed_points <= 0 or key in self._seeded:
            return self.history(*key)

        async with self._lock:
            task = self._seeding.get(key)
            if task is None and key not in self._seeded:
                task = asyncio.create_task(self._seed_history(key, fetch_history))
                self._seeding[key] = task
        if task is not None:
            await asyncio.shield(task)
        return self.history(*key)

    async def _seed_history(self, key: CacheKey, fetch_history) -> None:
        symbol, region = key
        try:
            async with self._semaphore:
                points = await asyncio.wait_for(
                    fetch_history(symbol, region, self._seed_points),
                    timeout=self._fetch_timeout,
                )
            self._merge_history(key, points)
            self._seeded.add(key)
            logger.info(
                "Seeded price history",
                symbol=symbol.value,
                region=region.value,
                points=len(points),
            )
        except Exception as e:
            reason = "timeout" if isinstance(e, asyncio.TimeoutError) else str(e)
            logger.warning(
                "Failed to seed price history",
                symbol=symbol.value,
                region=region.value,
                error=reason,
            )
        finally:
            if self._seeding.get(key) is asyncio.current_task():
                del self._seeding[key]

    def _merge_history(self, key: CacheKey, points: Sequence[PricePoint]) -> None:
        by_time = {p.observed_at: p for p in points if isinstance(p, PricePoint)}
        by_time.update((p.observed_at, p) for p in self._history.get(key, ()))
        merged = sorted(by_time.values(), key=lambda p: p.observed_at)
        self._history[key] = deque(merged, maxlen=self._history_size)

    def history(
        self,
        symbol: "str | CommoditySymbol",
        region: "str | Region",
    ) -> list[PricePoint]:
        """Locally held prices for a key, oldest first. Never touches upstream."""
        key = (CommoditySymbol.parse(symbol), Region.parse(region))
        return list(self._history.get(key, ()))

    # =========================================================================
    # EXPLICIT CACHE API
    # =========================================================================

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.fetched_at < self._ttl

    def get_cached(
        self,
        symbol: "str | CommoditySymbol",
        region: "str | Region",
        allow_stale: bool = False,
    ) -> Optional[PriceQuote]:
        """Cached quote without touching upstream. Expired entries only with allow_stale."""
        entry = self._entries.get((CommoditySymbol.parse(symbol), Region.parse(region)))
        if entry is None:
            return None
        if self._is_fresh(entry):
            return entry.quote
        if allow_stale:
            return entry.quote.model_copy(update={"stale": True})
        return None

    def put(self, quote: PriceQuote) -> bool:
        """
        Store a quote as the current observation for its key.

        Returns False, leaving the entry untouched, if the cache already
        holds a newer observation.
        """
        key = (quote.symbol, quote.region)
        current = self._entries.get(key)
        if current is not None and current.quote.observed_at > quote.observed_at:
            return False

        if quote.stale:
            quote = quote.model_copy(update={"stale": False})
        self._entries[key] = CacheEntry(quote=quote, fetched_at=self._clock())
        history = self._history.setdefault(key, deque(maxlen=self._history_size))
        if not history or history[-1].observed_at < quote.observed_at:
            history.append(PricePoint(observed_at=quote.observed_at, price=quote.price))
        return True

    def invalidate(
        self,
        symbol: "str | CommoditySymbol | None" = None,
        region: "str | Region | None" = None,
    ) -> int:
        """Drop cached quotes matching the filters (all when none given). History is kept."""
        symbol = CommoditySymbol.parse(symbol) if symbol is not None else None
        region = Region.parse(region) if region is not None else None

        keys = [
            key for key in self._entries
            if (symbol is None or key[0] == symbol) and (region is None or key[1] == region)
        ]
        for key in keys:
            del self._entries[key]
        logger.info(
            "Invalidated price cache",
            symbol=symbol.value if symbol else None,
            region=region.value if region else None,
            removed=len(keys),
        )
        return len(keys)

    def stats(self) -> dict[str, Any]:
        return {
            "entries": len(self._entries),
            "fresh_entries": sum(1 for e in self._entries.values() if self._is_fresh(e)),
            "inflight": len(self._inflight),
            "hits": self._hits,
            "misses": self._misses,
            "upstream_fetches": self._fetches,
            "upstream_failures": self._failures,
            "stale_served": self._stale_served,
            "backoff_served": self._backoff_served,
            "history_seeded": len(self._seeded),
            "ttl_seconds": self._ttl,
        }

    async def close(self) -> None:
        close = getattr(self._source, "close", None)
        if close is not None:
            await close()
