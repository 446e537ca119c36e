"""
World Bank commodity price client (Pink Sheet indicators).

No API key required. Indicator series are monthly global benchmarks, so
the quote is stamped with the requested region but carries the global price.

API: https://api.worldbank.org/v2/country/all/indicator/{code}?format=json
"""
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog

from commodity_oracle.clients.base import BaseAPIClient
from commodity_oracle.exceptions import PriceLookupError
from commodity_oracle.models import CommoditySymbol, PricePoint, PriceQuote, Region, utcnow

logger = structlog.get_logger()


INDICATOR_CODES: dict[CommoditySymbol, str] = {
    CommoditySymbol.COFFEE: "PCOFFOTM",   # Coffee, Other Mild Arabicas
    CommoditySymbol.COCOA: "PCOCO",
    CommoditySymbol.TEA: "PTEA",
    CommoditySymbol.GOLD: "PGOLD",
    CommoditySymbol.AVOCADO: "PFRUVT",    # Fruits index as proxy
    CommoditySymbol.MACADAMIA: "PNUTS",   # Nuts index as proxy
}

# "2024" for annual observations, "2024M05" for monthly ones
_PERIOD = re.compile(r"^(\d{4})(?:M(\d{2}))?$")


def _observations(payload: Any) -> list:
    if not isinstance(payload, list) or len(payload) < 2:
        return []
    observations = payload[1]
    return observations if isinstance(observations, list) else []


def _positive(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return price if price.is_finite() and price > 0 else None


def parse_period(raw: Any) -> Optional[datetime]:
    """Start of a World Bank observation period, in UTC."""
    match = _PERIOD.match(str(raw or "").strip())
    if match is None:
        return None
    year, month = int(match.group(1)), int(match.group(2) or 1)
    if not 1 <= month <= 12:
        return None
    return datetime(year, month, 1, tzinfo=timezone.utc)


def extract_latest_value(payload: Any) -> Optional[Decimal]:
    """
    Pull the most recent non-null observation out of a World Bank response.

    The API answers ``[metadata, [observation, ...]]`` newest first, or
    ``[{"message": [...]}]`` on error.
    """
    for entry in _observations(payload):
        price = _positive(entry.get("value") if isinstance(entry, dict) else None)
        if price is not None:
            return price
    return None


def extract_series(payload: Any) -> list[PricePoint]:
    """Every dated, positive observation in a response, oldest first."""
    points: dict[datetime, PricePoint] = {}
    for entry in _observations(payload):
        if not isinstance(entry, dict):
            continue
        price = _positive(entry.get("value"))
        observed_at = parse_period(entry.get("date"))
        if price is None or observed_at is None:
            continue
        points.setdefault(observed_at, PricePoint(observed_at=observed_at, price=price))
    return sorted(points.values(), key=lambda p: p.observed_at)


class WorldBankClient(BaseAPIClient):
    """Fetches monthly benchmark prices for a commodity."""

    SOURCE = "world_bank"
    BASE_URL = "https://api.worldbank.org/v2"

    def __init__(self, lookback_years: int = 3, **kwargs):
        super().__init__(**kwargs)
        self._lookback_years = lookback_years

    def _get_default_base_url(self) -> str:
        return self._settings.world_bank_base_url

    def _get_default_rate_limit(self) -> float:
        return self._settings.world_bank_rate_limit_rps

    def _date_range(self, years: Optional[int] = None) -> str:
        year = utcnow().year
        return f"{year - (years or self._lookback_years)}:{year}"

    def _indicator(self, symbol: CommoditySymbol) -> str:
        code = INDICATOR_CODES.get(symbol)
        if code is None:
            raise PriceLookupError(f"World Bank has no indicator for {symbol.value}")
        return code

    async def fetch(self, symbol: CommoditySymbol, region: Region) -> PriceQuote:
        code = self._indicator(symbol)

        payload = await self.get(
            f"/country/all/indicator/{code}",
            params={"format": "json", "per_page": 5, "date": self._date_range()},
        )
        price = extract_latest_value(payload)
        if price is None:
            logger.warning("World Bank returned no data", symbol=symbol.value, indicator=code)
            raise PriceLookupError(f"World Bank returned no value for {code}")

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
        """Up to ``limit`` most recent observations, oldest first."""
        code = self._indicator(symbol)
        years = max(self._lookback_years, limit // 12 + 1)

        payload = await self.get(
            f"/country/all/indicator/{code}",
            params={"format": "json", "per_page": limit, "date": self._date_range(years)},
        )
        points = extract_series(payload)
        return points[-limit:]
