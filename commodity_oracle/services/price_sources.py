"""
Price source adapters.

A source answers one (symbol, region) lookup with a PriceQuote or raises.
Sources backed by a dated series may also offer
``fetch_history(symbol, region, limit)`` returning PricePoints oldest first.
The chained source tries its members in order, the way the live-price
lookup falls back from Alpha Vantage to the World Bank.
"""
from decimal import Decimal
from typing import Optional, Protocol, Sequence

import structlog

from commodity_oracle.config import Settings, get_settings
from commodity_oracle.exceptions import PriceLookupError
from commodity_oracle.models import CommoditySymbol, PricePoint, PriceQuote, Region, utcnow

logger = structlog.get_logger()


class PriceSource(Protocol):
    async def fetch(self, symbol: CommoditySymbol, region: Region) -> PriceQuote:
        ...


# Last-resort reference prices in USD (per lb, per tonne, per oz, per kg)
STATIC_PRICES: dict[CommoditySymbol, Decimal] = {
    CommoditySymbol.COFFEE: Decimal("250.00"),
    CommoditySymbol.COCOA: Decimal("2500.00"),
    CommoditySymbol.GOLD: Decimal("1950.00"),
    CommoditySymbol.TEA: Decimal("3.50"),
    CommoditySymbol.AVOCADO: Decimal("2.50"),
    CommoditySymbol.MACADAMIA: Decimal("12.00"),
}


class StaticPriceSource:
    """Serves the fixed reference table. Only wired in when explicitly enabled."""

    SOURCE = "static"

    def __init__(self, prices: Optional[dict[CommoditySymbol, Decimal]] = None):
        self._prices = prices or STATIC_PRICES

    async def fetch(self, symbol: CommoditySymbol, region: Region) -> PriceQuote:
        price = self._prices.get(symbol)
        if price is None:
            raise PriceLookupError(f"No static price for {symbol.value}")
        return PriceQuote(
            symbol=symbol,
            region=region,
            price=price,
            observed_at=utcnow(),
            source=self.SOURCE,
        )


class ChainedPriceSource:
    """Tries each source in order and returns the first quote."""

    def __init__(self, sources: Sequence[PriceSource]):
        if not sources:
            raise ValueError("ChainedPriceSource needs at least one source")
        self._sources = list(sources)

    @property
    def sources(self) -> list[PriceSource]:
        return list(self._sources)

    async def fetch(self, symbol: CommoditySymbol, region: Region) -> PriceQuote:
        errors: list[str] = []
        for source in self._sources:
            name = getattr(source, "SOURCE", type(source).__name__)
            try:
                return await source.fetch(symbol, region)
            except Exception as e:
                logger.warning(
                    "Price source failed",
                    source=name,
                    symbol=symbol.value,
                    region=region.value,
                    error=str(e),
                )
                errors.append(f"{name}: {e}")
        raise PriceLookupError(
            f"All price sources failed for {symbol.value}/{region.value}: " + "; ".join(errors)
        )

    async def fetch_history(
        self,
        symbol: CommoditySymbol,
        region: Region,
        limit: int = 30,
    ) -> list[PricePoint]:
        """First non-empty series from the members that publish one."""
        errors: list[str] = []
        for source in self._sources:
            fetch_history = getattr(source, "fetch_history", None)
            if fetch_history is None:
                continue
            name = getattr(source, "SOURCE", type(source).__name__)
            try:
                points = await fetch_history(symbol, region, limit)
            except Exception as e:
                logger.warning(
                    "Price history source failed",
                    source=name,
                    symbol=symbol.value,
                    error=str(e),
                )
                errors.append(f"{name}: {e}")
                continue
            if points:
                return list(points)
        if errors:
            raise PriceLookupError(
                f"No price history for {symbol.value}/{region.value}: " + "; ".join(errors)
            )
        return []

    async def close(self) -> None:
        for source in self._sources:
            close = getattr(source, "close", None)
            if close is not None:
                await close()


def build_price_source(settings: Optional[Settings] = None) -> ChainedPriceSource:
    """Assemble the configured source chain."""
    from commodity_oracle.clients import AlphaVantageClient, WorldBankClient

    settings = settings or get_settings()
    sources: list[PriceSource] = []
    if settings.alpha_vantage_api_key:
        sources.append(AlphaVantageClient(settings=settings))
    sources.append(WorldBankClient(settings=settings))
    if settings.static_fallback_enabled:
        sources.append(StaticPriceSource())

    logger.info(
        "Configured price sources",
        sources=[getattr(s, "SOURCE", type(s).__name__) for s in sources],
    )
    return ChainedPriceSource(sources)
