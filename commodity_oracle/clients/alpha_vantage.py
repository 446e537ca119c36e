"""
Alpha Vantage price client.

Only used when ``ALPHA_VANTAGE_API_KEY`` is configured. Gold is read as the
XAU/USD exchange rate (FX_DAILY for its history), other supported
commodities from the daily series.
The free tier answers HTTP 200 with a "Note" or "Information" body when
throttled, which is treated as a failure.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog

from commodity_oracle.clients.base import BaseAPIClient
from commodity_oracle.exceptions import PriceLookupError
from commodity_oracle.models import CommoditySymbol, PricePoint, PriceQuote, Region, utcnow

logger = structlog.get_logger()


SERIES_CODES: dict[CommoditySymbol, str] = {
    CommoditySymbol.COFFEE: "COFFEE",
    CommoditySymbol.COCOA: "COCOA",
    CommoditySymbol.GOLD: "XAU",
}


def _to_price(raw: Any) -> Decimal:
    try:
        price = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise PriceLookupError(f"Alpha Vantage returned a non-numeric price: {raw!r}") from None
    if not price.is_finite() or price <= 0:
        raise PriceLookupError(f"Alpha Vantage returned an invalid price: {raw!r}")
    return price


class AlphaVantageClient(BaseAPIClient):
    """Client for https://www.alphavantage.co/query."""

    SOURCE = "alpha_vantage"
    BASE_URL = "https://www.alphavantage.co"

    def _get_default_base_url(self) -> str:
        return self._settings.alpha_vantage_base_url

    def _get_default_rate_limit(self) -> float:
        return self._settings.alpha_vantage_rate_limit_rps

    @property
    def enabled(self) -> bool:
        return bool(self._settings.alpha_vantage_api_key)

    def supports(self, symbol: CommoditySymbol) -> bool:
        return symbol in SERIES_CODES

    async def _query(self, **params: Any) -> dict[str, Any]:
        payload = await self.get(
            "/query",
            params={**params, "apikey": self._settings.alpha_vantage_api_key},
        )
        if not isinstance(payload, dict):
            raise PriceLookupError("Alpha Vantage returned an unexpected payload")
        for notice in ("Note", "Information", "Error Message"):
            if notice in payload:
                logger.warning("Alpha Vantage returned a notice", function=params.get("function"), notice=payload[notice])
                raise PriceLookupError(f"Alpha Vantage: {payload[notice]}")
        return payload

    async def fetch(self, symbol: CommoditySymbol, region: Region) -> PriceQuote:
        if not self.enabled:
            raise PriceLookupError("Alpha Vantage API key not configured")

        code = SERIES_CODES.get(symbol)
        if code is None:
            raise PriceLookupError(f"Alpha Vantage has no series for {symbol.value}")

        if symbol is CommoditySymbol.GOLD:
            payload = await self._query(
                function="CURRENCY_EXCHANGE_RATE", from_currency=code, to_currency="USD"
            )
            rate = payload.get("Realtime Currency Exchange Rate") or {}
            price = _to_price(rate.get("5. Exchange Rate"))
        else:
            payload = await self._query(function="TIME_SERIES_DAILY", symbol=code)
            series = payload.get("Time Series (Daily)")
            if not series:
                raise PriceLookupError(f"Alpha Vantage returned no daily series for {code}")
            latest_day = max(series)
            price = _to_price(series[latest_day].get("4. close"))

        return PriceQuote(
            symbol=symbol,
            region=region,
            price=price.quantize(Decimal("0.01")),
            observed_at=utcnow(),
            source=self.SOURCE,
        )

    async def fetch_history(
        self,
        symbol: CommoditySymbol,
        region: Region,
        limit: int = 30,
    ) -> list[PricePoint]:
        """Up to ``limit`` most recent daily closes, oldest first."""
        if not self.enabled:
            raise PriceLookupError("Alpha Vantage API key not configured")

        code = SERIES_CODES.get(symbol)
        if code is None:
            raise PriceLookupError(f"Alpha Vantage has no series for {symbol.value}")

        if symbol is CommoditySymbol.GOLD:
            payload = await self._query(function="FX_DAILY", from_symbol=code, to_symbol="USD")
            series = payload.get("Time Series FX (Daily)")
        else:
            payload = await self._query(function="TIME_SERIES_DAILY", symbol=code)
            series = payload.get("Time Series (Daily)")
        if not series:
            raise PriceLookupError(f"Alpha Vantage returned no daily series for {code}")

        points = []
        for day in sorted(series)[-limit:]:
            try:
                observed_at = datetime.strptime(day, "%Y-%m-%d").replace(tzinfo=timezone.utc)
            except ValueError:
                continue
            points.append(PricePoint(observed_at=observed_at, price=_to_price(series[day].get("4. close"))))
        return points
