"""
Market catalog: the binary-outcome contracts stakes can be placed on.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Optional

import structlog
from cachetools import TTLCache, cachedmethod

from commodity_oracle.exceptions import UnknownMarketError
from commodity_oracle.models import CommoditySymbol, Market

logger = structlog.get_logger()


SEED_MARKETS: list[Market] = [
    Market(
        id="tea-1",
        commodity=CommoditySymbol.TEA,
        question="Will Kenya Tea Board auction average exceed $2.50/kg by Jan 15, 2025?",
        yes_price=Decimal("0.67"),
        no_price=Decimal("0.33"),
        volume=Decimal("450000"),
        participant_count=156,
        deadline=date(2025, 1, 15),
        description="Based on CTC BOP grade tea from Mombasa auctions",
    ),
    Market(
        id="tea-2",
        commodity=CommoditySymbol.TEA,
        question="Will Tanzania Tea Board report >85% Grade 1 tea by Feb 1, 2025?",
        yes_price=Decimal("0.42"),
        no_price=Decimal("0.58"),
        volume=Decimal("380000"),
        participant_count=98,
        deadline=date(2025, 2, 1),
        description="Quality grade percentage from Tanzania Tea Board monthly reports",
    ),
    Market(
        id="coffee-1",
        commodity=CommoditySymbol.COFFEE,
        question="Will Ethiopian coffee average SCA score exceed 85 by Mar 20, 2025?",
        yes_price=Decimal("0.73"),
        no_price=Decimal("0.27"),
        volume=Decimal("1100000"),
        participant_count=234,
        deadline=date(2025, 3, 20),
        description="Based on Ethiopian Commodity Exchange specialty coffee auctions",
    ),
    Market(
        id="coffee-2",
        commodity=CommoditySymbol.COFFEE,
        question="Will Kenyan AA coffee price exceed $6.00/lb by Feb 28, 2025?",
        yes_price=Decimal("0.38"),
        no_price=Decimal("0.62"),
        volume=Decimal("890000"),
        participant_count=189,
        deadline=date(2025, 2, 28),
        description="Nairobi Coffee Exchange auction prices for AA grade",
    ),
    Market(
        id="avocado-1",
        commodity=CommoditySymbol.AVOCADO,
        question="Will Kenya avocado exports exceed 50,000 tons by Apr 30, 2025?",
        yes_price=Decimal("0.55"),
        no_price=Decimal("0.45"),
        volume=Decimal("520000"),
        participant_count=123,
        deadline=date(2025, 4, 30),
        description="Based on Kenya Plant Health Inspectorate Service export data",
    ),
    Market(
        id="macadamia-1",
        commodity=CommoditySymbol.MACADAMIA,
        question="Will South African macadamia price exceed $13.00/kg by May 15, 2025?",
        yes_price=Decimal("0.61"),
        no_price=Decimal("0.39"),
        volume=Decimal("650000"),
        participant_count=145,
        deadline=date(2025, 5, 15),
        description="Based on South African Macadamia Growers Association pricing",
    ),
]


class MarketCatalog:
    """
    In-memory market registry.

    Listings are cached per catalog instance in a TTL cache keyed by
    commodity, and the cache is cleared whenever a market is added. Each
    call returns a new list.
    """

    def __init__(
        self,
        markets: Optional[Iterable[Market]] = None,
        cache_ttl_seconds: float = 300.0,
        cache_maxsize: int = 32,
    ):
        self._markets: dict[str, Market] = {}
        for market in (SEED_MARKETS if markets is None else markets):
            self._markets[market.id] = market
        self._listing_cache: TTLCache = TTLCache(maxsize=cache_maxsize, ttl=cache_ttl_seconds)

    def get(self, market_id: str) -> Market:
        market = self._markets.get(market_id)
        if market is None:
            raise UnknownMarketError(market_id)
        return market

    def exists(self, market_id: str) -> bool:
        return market_id in self._markets

    @cachedmethod(lambda self: self._listing_cache)
    def _listing(self, symbol: Optional[CommoditySymbol]) -> tuple[Market, ...]:
        markets = [m for m in self._markets.values() if symbol is None or m.commodity == symbol]
        return tuple(sorted(markets, key=lambda m: (m.deadline, m.id)))

    def cache_stats(self) -> dict[str, Any]:
        return {
            "size": len(self._listing_cache),
            "maxsize": self._listing_cache.maxsize,
            "ttl": self._listing_cache.ttl,
        }

    def list(self, commodity: "str | CommoditySymbol | None" = None) -> list[Market]:
        """All markets, optionally for one commodity, ordered by deadline."""
        symbol = CommoditySymbol.parse(commodity) if commodity is not None else None
        return list(self._listing(symbol))

    def add(self, market: Market) -> None:
        self._markets[market.id] = market
        self._listing_cache.clear()
        logger.info("Market added", market_id=market.id, commodity=market.commodity.value)
