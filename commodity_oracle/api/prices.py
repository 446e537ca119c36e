"""
Price API
Single and batch commodity price lookups through the oracle cache
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from commodity_oracle.api.deps import get_oracle
from commodity_oracle.exceptions import ValidationError
from commodity_oracle.models import Region
from commodity_oracle.services.price_oracle import PriceOracleCache

router = APIRouter(tags=["prices"])

MAX_BATCH_SYMBOLS = 20


@router.get("/price")
async def get_price(
    symbol: Optional[str] = Query(None, description="Single commodity symbol, e.g. COFFEE"),
    symbols: Optional[str] = Query(None, description="Comma-separated symbols for a batch lookup"),
    region: str = Query("AFRICA", description="AFRICA, LATAM or GLOBAL"),
    oracle: PriceOracleCache = Depends(get_oracle),
):
    """
    Get the current price for one commodity, or for several with ``symbols``.

    Batch results keep request order; unknown symbols and failed lookups are
    reported per element instead of failing the request.
    """
    if symbols is not None:
        requested = [s.strip() for s in symbols.split(",") if s.strip()]
        if not requested:
            raise ValidationError("symbols must list at least one symbol")
        if len(requested) > MAX_BATCH_SYMBOLS:
            raise ValidationError(f"At most {MAX_BATCH_SYMBOLS} symbols per request")
        results = await oracle.get_prices(requested, region)
        return {
            "region": Region.parse(region).value,
            "results": [r.model_dump(mode="json") for r in results],
        }

    if not symbol:
        raise ValidationError("Either symbol or symbols is required")

    quote = await oracle.get_price(symbol, region)
    return quote.model_dump(mode="json")
