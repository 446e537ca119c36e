"""
Markets API
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from commodity_oracle.api.deps import get_catalog
from commodity_oracle.exceptions import UnknownMarketError
from commodity_oracle.services.market_catalog import MarketCatalog

router = APIRouter(prefix="/markets", tags=["markets"])


@router.get("")
async def list_markets(
    commodity: Optional[str] = Query(None, description="Filter by commodity symbol"),
    catalog: MarketCatalog = Depends(get_catalog),
):
    markets = catalog.list(commodity)
    return {
        "count": len(markets),
        "markets": [m.model_dump(mode="json") for m in markets],
    }


@router.get("/{market_id}")
async def get_market(market_id: str, catalog: MarketCatalog = Depends(get_catalog)):
    try:
        market = catalog.get(market_id)
    except UnknownMarketError:
        raise HTTPException(status_code=404, detail="Market not found")
    return market.model_dump(mode="json")
