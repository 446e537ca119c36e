"""Tests for the price oracle cache: freshness, single-flight, fallback, batch lookups."""
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from structlog.testing import capture_logs

from commodity_oracle.exceptions import (
    PriceLookupError,
    UnknownRegionError,
    UnknownSymbolError,
)
from commodity_oracle.models import CommoditySymbol, PriceQuote, Region
from commodity_oracle.services.price_oracle import PriceOracleCache
from tests.conftest import BASE_TIME, FakeHistorySource, FakePriceSource, daily_history


class TestFreshness:

    async def test_second_call_within_window_is_served_from_cache(self, oracle, source):
        first = await oracle.get_price("COFFEE", "AFRICA")
        second = await oracle.get_price("COFFEE", "AFRICA")

        assert len(source.calls) == 1
        assert first == second
        assert oracle.stats()["hits"] == 1

    async def test_every_pair_fetched_at_most_once_within_window(self, oracle, source, clock):
        for symbol in ("COFFEE", "TEA", "GOLD"):
            for region in ("AFRICA", "LATAM"):
                await oracle.get_price(symbol, region)
                clock.advance(10)
                await oracle.get_price(symbol, region)

        assert len(source.calls) == 6
        assert len(set(source.calls)) == 6

    async def test_expired_entry_is_refetched(self, oracle, source, clock):
        await oracle.get_price("TEA", "AFRICA")
        clock.advance(301)
        await oracle.get_price("TEA", "AFRICA")

        assert len(source.calls) == 2

    async def test_regions_are_cached_separately(self, oracle, source):
        await oracle.get_price("TEA", "AFRICA")
        await oracle.get_price("TEA", "LATAM")

        assert source.calls == [
            (CommoditySymbol.TEA, Region.AFRICA),
            (CommoditySymbol.TEA, Region.LATAM),
        ]

    async def test_symbol_parsing_is_case_insensitive(self, oracle, source):
        quote = await oracle.get_price("coffee", "africa")

        assert quote.symbol is CommoditySymbol.COFFEE
        assert quote.region is Region.AFRICA


class TestSingleFlight:

    async def test_concurrent_misses_share_one_fetch(self, oracle, source):
        source.delay = 0.05

        quotes = await asyncio.gather(*(oracle.get_price("COFFEE", "AFRICA") for _ in range(10)))

        assert len(source.calls) == 1
        assert all(q == quotes[0] for q in quotes)

    async def test_cancelled_waiter_does_not_cancel_shared_fetch(self, oracle, source):
        source.delay = 0.05
        first = asyncio.create_task(oracle.get_price("GOLD", "GLOBAL"))
        second = asyncio.create_task(oracle.get_price("GOLD", "GLOBAL"))
        await asyncio.sleep(0.01)

        first.cancel()
        quote = await second

        with pytest.raises(asyncio.CancelledError):
            await first
        assert quote.price == Decimal("1950.00")
        assert len(source.calls) == 1
        assert oracle.get_cached("GOLD", "GLOBAL") == quote

    async def test_inflight_registration_is_cleared_after_fetch(self, oracle, source):
        await oracle.get_price("COFFEE", "AFRICA")

        assert oracle.stats()["inflight"] == 0


class TestStaleFallback:

    async def test_upstream_failure_serves_last_known_quote_marked_stale(self, oracle, source, clock):
        fresh = await oracle.get_price("COFFEE", "AFRICA")
        clock.advance(301)
        source.error = RuntimeError("upstream down")

        quote = await oracle.get_price("COFFEE", "AFRICA")

        assert quote.stale is True
        assert quote.price == fresh.price
        assert quote.observed_at == fresh.observed_at
        assert fresh.stale is False
        assert oracle.stats()["stale_served"] == 1

    async def test_failure_without_cached_quote_raises(self, oracle, source):
        source.error = RuntimeError("upstream down")

        with pytest.raises(PriceLookupError):
            await oracle.get_price("COFFEE", "AFRICA")

    async def test_timeout_is_treated_as_failure(self, source, clock):
        oracle = PriceOracleCache(source, fetch_timeout_seconds=0.05, clock=clock)
        source.delay = 1.0

        with pytest.raises(PriceLookupError, match="timeout"):
            await oracle.get_price("TEA", "AFRICA")

    async def test_timeout_after_success_serves_stale(self, source, clock):
        oracle = PriceOracleCache(source, fetch_timeout_seconds=0.05, clock=clock)
        await oracle.get_price("TEA", "AFRICA")
        clock.advance(301)
        source.delay = 1.0

        quote = await oracle.get_price("TEA", "AFRICA")

        assert quote.stale is True

    async def test_failed_refresh_can_be_retried(self, oracle, source):
        source.error = RuntimeError("blip")
        with pytest.raises(PriceLookupError):
            await oracle.get_price("TEA", "AFRICA")

        source.error = None
        quote = await oracle.get_price("TEA", "AFRICA")

        assert quote.price == Decimal("3.50")
        assert len(source.calls) == 2


class TestBatchLookup:

    async def test_unknown_symbol_gets_its_own_marker(self, oracle):
        results = await oracle.get_prices(["TEA", "BOGUS"], "AFRICA")

        assert len(results) == 2
        assert results[0].ok
        assert results[0].quote.symbol is CommoditySymbol.TEA
        assert not results[1].ok
        assert results[1].symbol == "BOGUS"
        assert results[1].error == "unknown_symbol"

    async def test_results_keep_request_order(self, oracle):
        requested = ["GOLD", "TEA", "COFFEE", "AVOCADO"]

        results = await oracle.get_prices(requested, "AFRICA")

        assert [r.symbol for r in results] == requested
        assert all(r.ok for r in results)

    async def test_lookup_failure_does_not_abort_other_symbols(self, oracle):
        # COCOA has no price in the fake source
        results = await oracle.get_prices(["COCOA", "TEA"], "AFRICA")

        assert results[0].error == "lookup_failed"
        assert results[1].ok

    async def test_fan_out_is_bounded(self, source, clock):
        oracle = PriceOracleCache(source, max_concurrency=2, clock=clock)
        source.delay = 0.02

        await oracle.get_prices(["COFFEE", "TEA", "AVOCADO", "MACADAMIA", "GOLD"], "AFRICA")

        assert source.max_active <= 2
        assert len(source.calls) == 5

    async def test_unknown_region_rejected_before_any_fetch(self, oracle, source):
        with pytest.raises(UnknownRegionError):
            await oracle.get_prices(["TEA"], "ASIA")

        assert source.calls == []


class TestExplicitCacheApi:

    def _quote(self, minutes: int, price: str = "3.50") -> PriceQuote:
        return PriceQuote(
            symbol=CommoditySymbol.TEA,
            region=Region.AFRICA,
            price=Decimal(price),
            observed_at=BASE_TIME + timedelta(minutes=minutes),
            source="manual",
        )

    def test_put_never_replaces_newer_observation(self, oracle):
        assert oracle.put(self._quote(10, "4.00"))
        assert not oracle.put(self._quote(5, "3.00"))

        assert oracle.get_cached("TEA", "AFRICA").price == Decimal("4.00")

    async def test_put_quote_is_served_without_upstream_call(self, oracle, source):
        oracle.put(self._quote(1))

        quote = await oracle.get_price("TEA", "AFRICA")

        assert quote.price == Decimal("3.50")
        assert source.calls == []

    def test_get_cached_respects_freshness(self, oracle, clock):
        oracle.put(self._quote(1))
        clock.advance(301)

        assert oracle.get_cached("TEA", "AFRICA") is None
        assert oracle.get_cached("TEA", "AFRICA", allow_stale=True).stale is True

    def test_invalidate_by_symbol(self, oracle):
        oracle.put(self._quote(1))
        oracle.put(self._quote(1).model_copy(update={"region": Region.LATAM}))
        oracle.put(self._quote(1).model_copy(update={"symbol": CommoditySymbol.COFFEE}))

        removed = oracle.invalidate(symbol="TEA")

        assert removed == 2
        assert oracle.get_cached("COFFEE", "AFRICA") is not None
        assert oracle.stats()["entries"] == 1

    def test_invalidate_everything(self, oracle):
        oracle.put(self._quote(1))
        oracle.put(self._quote(1).model_copy(update={"symbol": CommoditySymbol.COFFEE}))

        assert oracle.invalidate() == 2
        assert oracle.stats()["entries"] == 0

    async def test_history_records_each_new_observation(self, oracle, clock):
        for _ in range(3):
            await oracle.get_price("TEA", "AFRICA")
            clock.advance(301)

        history = oracle.history("TEA", "AFRICA")

        assert len(history) == 3
        assert history == sorted(history, key=lambda p: p.observed_at)

    def test_unknown_symbol_in_explicit_api(self, oracle):
        with pytest.raises(UnknownSymbolError):
            oracle.get_cached("BOGUS", "AFRICA")


class WrongTypeSource(FakePriceSource):
    """Answers one symbol with a plain dict instead of a PriceQuote."""

    def __init__(self, bad_symbol: CommoditySymbol):
        super().__init__()
        self.bad_symbol = bad_symbol
        self.broken = True

    async def fetch(self, symbol, region):
        quote = await super().fetch(symbol, region)
        if symbol is self.bad_symbol and self.broken:
            return quote.model_dump()
        return quote


class TestMalformedSourceResult:

    async def test_non_quote_result_is_a_lookup_failure(self, clock):
        oracle = PriceOracleCache(WrongTypeSource(CommoditySymbol.TEA), clock=clock)

        with pytest.raises(PriceLookupError, match="expected PriceQuote"):
            await oracle.get_price("TEA", "AFRICA")

        assert oracle.stats()["upstream_failures"] == 1
        assert oracle.stats()["inflight"] == 0

    async def test_batch_survives_a_non_quote_result(self, clock):
        oracle = PriceOracleCache(WrongTypeSource(CommoditySymbol.TEA), clock=clock)

        results = await oracle.get_prices(["COFFEE", "TEA", "GOLD"], "AFRICA")

        assert [r.error for r in results] == [None, "lookup_failed", None]
        assert results[0].quote.price == Decimal("250.00")
        assert results[2].quote.price == Decimal("1950.00")

    async def test_non_quote_after_success_serves_stale(self, clock):
        source = WrongTypeSource(CommoditySymbol.TEA)
        source.broken = False
        oracle = PriceOracleCache(source, clock=clock)
        await oracle.get_price("TEA", "AFRICA")
        clock.advance(301)
        source.broken = True

        quote = await oracle.get_price("TEA", "AFRICA")

        assert quote.stale is True
        assert quote.price == Decimal("3.50")


class TestFailureBackoff:

    @pytest.fixture
    def backoff_oracle(self, source, clock) -> PriceOracleCache:
        return PriceOracleCache(source, fetch_timeout_seconds=1.0, failure_backoff_seconds=30, clock=clock)

    async def test_no_upstream_call_within_backoff(self, backoff_oracle, source, clock):
        await backoff_oracle.get_price("COFFEE", "AFRICA")
        clock.advance(301)
        source.error = RuntimeError("upstream down")
        await backoff_oracle.get_price("COFFEE", "AFRICA")
        assert len(source.calls) == 2

        clock.advance(10)
        quotes = await asyncio.gather(*(backoff_oracle.get_price("COFFEE", "AFRICA") for _ in range(10)))

        assert len(source.calls) == 2
        assert all(q.stale for q in quotes)
        assert backoff_oracle.stats()["backoff_served"] == 10

    async def test_upstream_is_retried_after_backoff(self, backoff_oracle, source, clock):
        await backoff_oracle.get_price("COFFEE", "AFRICA")
        clock.advance(301)
        source.error = RuntimeError("upstream down")
        await backoff_oracle.get_price("COFFEE", "AFRICA")

        clock.advance(31)
        still_down = await backoff_oracle.get_price("COFFEE", "AFRICA")
        assert len(source.calls) == 3
        assert still_down.stale is True

        source.error = None
        clock.advance(31)
        recovered = await backoff_oracle.get_price("COFFEE", "AFRICA")

        assert len(source.calls) == 4
        assert recovered.stale is False
        assert recovered.observed_at > still_down.observed_at

    async def test_stale_serve_is_logged_once_per_failure(self, backoff_oracle, source, clock):
        await backoff_oracle.get_price("COFFEE", "AFRICA")
        clock.advance(301)
        source.error = RuntimeError("upstream down")

        with capture_logs() as logs:
            await backoff_oracle.get_price("COFFEE", "AFRICA")
            await backoff_oracle.get_price("COFFEE", "AFRICA")

        assert [log["event"] for log in logs] == ["Price fetch failed, serving stale quote"]
        assert logs[0]["retry_in_seconds"] == 30
        assert logs[0]["log_level"] == "warning"

    async def test_zero_backoff_retries_every_call(self, source, clock):
        oracle = PriceOracleCache(source, failure_backoff_seconds=0, clock=clock)
        await oracle.get_price("COFFEE", "AFRICA")
        clock.advance(301)
        source.error = RuntimeError("upstream down")

        await oracle.get_price("COFFEE", "AFRICA")
        await oracle.get_price("COFFEE", "AFRICA")

        assert len(source.calls) == 3


class TestHistorySeeding:

    @pytest.fixture
    def history_source(self) -> FakeHistorySource:
        return FakeHistorySource(history=daily_history("240", "245", "250"))

    @pytest.fixture
    def seeded_oracle(self, history_source, clock) -> PriceOracleCache:
        return PriceOracleCache(history_source, history_seed_points=30, clock=clock)

    async def test_cold_start_history_is_seeded_from_source(self, seeded_oracle, history_source):
        quote = await seeded_oracle.get_price("COFFEE", "AFRICA")

        history = await seeded_oracle.get_history("COFFEE", "AFRICA")

        assert [p.price for p in history] == [Decimal("240"), Decimal("245"), Decimal("250"), quote.price]
        assert history == sorted(history, key=lambda p: p.observed_at)
        assert history_source.history_calls == [(CommoditySymbol.COFFEE, Region.AFRICA, 30)]

    async def test_history_is_seeded_once_per_key(self, seeded_oracle, history_source):
        await asyncio.gather(*(seeded_oracle.get_history("COFFEE", "AFRICA") for _ in range(5)))
        await seeded_oracle.get_history("COFFEE", "AFRICA")
        await seeded_oracle.get_history("COFFEE", "LATAM")

        assert len(history_source.history_calls) == 2
        assert seeded_oracle.stats()["history_seeded"] == 2

    async def test_failed_seed_is_retried_later(self, seeded_oracle, history_source):
        history_source.history_error = RuntimeError("series unavailable")
        await seeded_oracle.get_price("TEA", "AFRICA")

        assert len(await seeded_oracle.get_history("TEA", "AFRICA")) == 1

        history_source.history_error = None
        history = await seeded_oracle.get_history("TEA", "AFRICA")

        assert len(history) == 4
        assert len(history_source.history_calls) == 2

    async def test_seeding_can_be_disabled(self, history_source, clock):
        oracle = PriceOracleCache(history_source, history_seed_points=0, clock=clock)
        await oracle.get_price("TEA", "AFRICA")

        assert len(await oracle.get_history("TEA", "AFRICA")) == 1
        assert history_source.history_calls == []

    async def test_source_without_series_keeps_local_history(self, oracle, source):
        await oracle.get_price("TEA", "AFRICA")

        assert len(await oracle.get_history("TEA", "AFRICA")) == 1
