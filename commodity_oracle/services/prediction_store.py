"""
Prediction history stores.

Every successful prediction is kept with its signals so callers can list
recent forecasts per commodity and region. Store outages surface as
PredictionStoreUnavailableError.
"""
from collections import deque
from datetime import timezone
from typing import Optional, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from commodity_oracle.database import (
    DatabaseManager,
    commodity_predictions,
    prediction_signals,
)
from commodity_oracle.exceptions import PredictionStoreUnavailableError
from commodity_oracle.models import (
    CommoditySymbol,
    Horizon,
    Prediction,
    PredictionSignal,
    Region,
    SignalType,
)

logger = structlog.get_logger()


class PredictionStore(Protocol):
    async def save(self, prediction: Prediction) -> None:
        ...

    async def recent(
        self,
        symbol: Optional[CommoditySymbol] = None,
        region: Optional[Region] = None,
        limit: int = 10,
    ) -> list[Prediction]:
        ...


class InMemoryPredictionStore:
    """Process-local store holding the most recent predictions."""

    def __init__(self, max_predictions: int = 1000):
        self._predictions: deque[Prediction] = deque(maxlen=max_predictions)

    async def save(self, prediction: Prediction) -> None:
        self._predictions.append(prediction)

    async def recent(
        self,
        symbol: Optional[CommoditySymbol] = None,
        region: Optional[Region] = None,
        limit: int = 10,
    ) -> list[Prediction]:
        matches = [
            p for p in reversed(self._predictions)
            if (symbol is None or p.symbol == symbol) and (region is None or p.region == region)
        ]
        matches.sort(key=lambda p: p.as_of, reverse=True)
        return matches[:limit]

    def __len__(self) -> int:
        return len(self._predictions)


def _row_to_prediction(row, signals: list[PredictionSignal]) -> Prediction:
    as_of = row.as_of
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)
    return Prediction(
        id=row.id,
        symbol=CommoditySymbol(row.symbol),
        region=Region(row.region),
        horizon=Horizon(row.horizon),
        predicted_price=row.predicted_price,
        currency=row.currency,
        confidence=row.confidence,
        narrative=row.narrative,
        as_of=as_of,
        model=row.model,
        current_price=row.current_price,
        quote_stale=bool(row.quote_stale),
        signals=signals,
    )


class SqlPredictionStore:
    """SQLAlchemy Core store over ``commodity_predictions`` and ``prediction_signals``."""

    def __init__(self, db: DatabaseManager):
        self._db = db

    async def save(self, prediction: Prediction) -> None:
        try:
            async with self._db.transaction() as conn:
                await conn.execute(
                    commodity_predictions.insert().values(
                        id=prediction.id,
                        symbol=prediction.symbol.value,
                        region=prediction.region.value,
                        horizon=prediction.horizon.value,
                        predicted_price=prediction.predicted_price,
                        currency=prediction.currency,
                        confidence=prediction.confidence,
                        narrative=prediction.narrative,
                        model=prediction.model,
                        current_price=prediction.current_price,
                        quote_stale=prediction.quote_stale,
                        as_of=prediction.as_of,
                    )
                )
                if prediction.signals:
                    await conn.execute(
                        prediction_signals.insert(),
                        [
                            {
                                "prediction_id": prediction.id,
                                "signal_type": signal.signal_type.value,
                                "strength": signal.strength,
                                "description": signal.description,
                            }
                            for signal in prediction.signals
                        ],
                    )
        except (SQLAlchemyError, OSError) as e:
            logger.error("Failed to store prediction", prediction_id=prediction.id, error=str(e))
            raise PredictionStoreUnavailableError(f"Prediction store unavailable: {e}") from e

    async def recent(
        self,
        symbol: Optional[CommoditySymbol] = None,
        region: Optional[Region] = None,
        limit: int = 10,
    ) -> list[Prediction]:
        query = select(commodity_predictions)
        if symbol is not None:
            query = query.where(commodity_predictions.c.symbol == symbol.value)
        if region is not None:
            query = query.where(commodity_predictions.c.region == region.value)
        query = query.order_by(
            commodity_predictions.c.as_of.desc(), commodity_predictions.c.id
        ).limit(limit)

        try:
            async with self._db.transaction() as conn:
                rows = (await conn.execute(query)).all()
                ids = [row.id for row in rows]
                signal_rows = []
                if ids:
                    signal_rows = (await conn.execute(
                        select(prediction_signals)
                        .where(prediction_signals.c.prediction_id.in_(ids))
                        .order_by(prediction_signals.c.id)
                    )).all()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Failed to read predictions", error=str(e))
            raise PredictionStoreUnavailableError(f"Prediction store unavailable: {e}") from e

        signals: dict[str, list[PredictionSignal]] = {row.id: [] for row in rows}
        for signal in signal_rows:
            signals[signal.prediction_id].append(PredictionSignal(
                signal_type=SignalType(signal.signal_type),
                strength=signal.strength,
                description=signal.description,
            ))
        return [_row_to_prediction(row, signals[row.id]) for row in rows]
