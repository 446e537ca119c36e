"""Shared fixtures and fakes for the commodity oracle tests."""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

from commodity_oracle.config import Settings, get_settings
from commodity_oracle.exceptions import PriceLookupError
from commodity_oracle.models import CommoditySymbol, Forecast, PricePoint, PriceQuote, Region
from commodity_oracle.services.price_oracle import PriceOracleCache

OWNER = "0x" + "a" * 40
TOKEN = "0x" + "b" * 40
SPENDER = "0x" + "c" * 40

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)

DEFAULT_PRICES = {
    CommoditySymbol.COFFEE: Decimal("250.00"),
    CommoditySymbol.TEA: Decimal("3.50"),
    CommoditySymbol.AVOCADO: Decimal("2.50"),
    CommoditySymbol.MACADAMIA: Decimal("12.00"),
    CommoditySymbol.GOLD: Decimal("1950.00"),
}


@pytest.fixture(autouse=True)
def reset_settings():
    """Drop the cached settings before and after each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePriceSource:
    """Counts fetches; can be slowed down or made to fail."""

    SOURCE = "fake"

    def __init__(self, prices: Optional[dict] = None):
        self.prices = dict(DEFAULT_PRICES if prices is None else prices)
        self.calls: list[tuple[CommoditySymbol, Region]] = []
        self.delay = 0.0
        self.error: Optional[Exception] = None
        self.active = 0
        self.max_active = 0

    async def fetch(self, symbol: CommoditySymbol, region: Region) -> PriceQuote:
        self.calls.append((symbol, region))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            if symbol not in self.prices:
                raise PriceLookupError(f"no price for {symbol.value}")
            return PriceQuote(
                symbol=symbol,
                region=region,
                price=self.prices[symbol],
                observed_at=BASE_TIME + timedelta(minutes=len(self.calls)),
                source=self.SOURCE,
            )
        finally:
            self.active -= 1


class FakeHistorySource(FakePriceSource):
    """Price source that also publishes a dated series."""

    def __init__(self, history: Optional[list[PricePoint]] = None, **kwargs):
        super().__init__(**kwargs)
        self.history = list(history or [])
        self.history_calls: list[tuple[CommoditySymbol, Region, int]] = []
        self.history_error: Optional[Exception] = None

    async def fetch_history(self, symbol: CommoditySymbol, region: Region, limit: int) -> list[PricePoint]:
        self.history_calls.append((symbol, region, limit))
        if self.history_error is not None:
            raise self.history_error
        return self.history[-limit:]


def daily_history(*prices: str, end: datetime = BASE_TIME) -> list[PricePoint]:
    """One point per day, the last one a day before ``end``."""
    return [
        PricePoint(observed_at=end - timedelta(days=len(prices) - i), price=Decimal(price))
        for i, price in enumerate(prices)
    ]



class FakeForecaster:
    MODEL = "fake-forecaster"

    def __init__(self, result=None, error: Optional[Exception] = None, delay: float = 0.0):
        self.result = result if result is not None else Forecast(
            predicted_price=Decimal("260.00"), confidence=0.7, model=self.MODEL
        )
        self.error = error
        self.delay = delay
        self.calls = []

    async def forecast(self, history, horizon, symbol, region):
        self.calls.append((list(history), horizon, symbol, region))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FakeNarrator:
    def __init__(self, text: str = "Prices firm on strong demand.", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls = []

    async def narrate(self, context) -> str:
        self.calls.append(context)
        if self.error is not None:
            raise self.error
        return self.text


class FailingLedgerStore:
    """Backing store that is unreachable."""

    async def append(self, event):
        raise ConnectionError("connection refused")

    async def snapshot(self):
        raise ConnectionError("connection refused")

    async def get(self, event_id):
        raise ConnectionError("connection refused")


class FailingPredictionStore:
    """Prediction store whose database is down."""

    def __init__(self):
        self.saves = 0

    async def save(self, prediction):
        self.saves += 1
        raise ConnectionError("connection refused")

    async def recent(self, symbol=None, region=None, limit=10):
        raise ConnectionError("connection refused")


class FakeAllowanceReader:
    def __init__(self, value: int = 0, error: Optional[Exception] = None, delay: float = 0.0):
        self.value = value
        self.error = error
        self.delay = delay
        self.calls = []

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        self.calls.append((token, owner, spender))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.value


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        anthropic_api_key="",
        alpha_vantage_api_key="",
        usdc_address=TOKEN,
        prediction_market_address=SPENDER,
        ledger_backend="memory",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source() -> FakePriceSource:
    return FakePriceSource()


@pytest.fixture
def oracle(source, clock) -> PriceOracleCache:
    return PriceOracleCache(
        source,
        ttl_seconds=300,
        fetch_timeout_seconds=1.0,
        max_concurrency=4,
        clock=clock,
    )
