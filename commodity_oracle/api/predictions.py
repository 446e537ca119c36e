"""
Prediction API
On-demand forecasts and the history of stored predictions
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from commodity_oracle.api.deps import get_engine
from commodity_oracle.models import CommoditySymbol, Region
from commodity_oracle.services.prediction_engine import PredictionEngine

router = APIRouter(tags=["predictions"])


@router.get("/prediction")
async def get_prediction(
    symbol: str = Query(..., description="Commodity symbol"),
    region: str = Query("AFRICA"),
    horizon: str = Query("7d", description="1d, 3d, 7d or 14d"),
    narrative: bool = Query(True, description="Generate a narrative (slower)"),
    engine: PredictionEngine = Depends(get_engine),
):
    """
    Forecast a commodity price over a horizon.
    Null price/confidence means the forecaster was unavailable.
    """
    prediction = await engine.predict(symbol, region, horizon, include_narrative=narrative)
    return prediction.model_dump(mode="json")


@router.get("/predictions")
async def list_predictions(
    symbol: Optional[str] = Query(None, description="Filter by commodity symbol"),
    region: Optional[str] = Query(None, description="Filter by region"),
    limit: int = Query(10, ge=1, le=100, description="Number of predictions (max 100)"),
    engine: PredictionEngine = Depends(get_engine),
):
    """Recently generated predictions with their signals, newest first."""
    symbol = CommoditySymbol.parse(symbol) if symbol else None
    region = Region.parse(region) if region else None
    predictions = await engine.recent_predictions(symbol=symbol, region=region, limit=limit)
    return {
        "count": len(predictions),
        "filters": {
            "symbol": symbol.value if symbol else None,
            "region": region.value if region else None,
            "limit": limit,
        },
        "predictions": [p.model_dump(mode="json") for p in predictions],
    }
