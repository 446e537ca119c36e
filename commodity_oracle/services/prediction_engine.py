"""
Prediction Engine

Turns an oracle quote plus a horizon into a Prediction. Forecaster and
narrator outages never fail the request: the affected fields come back null.

Successful predictions are written to an optional prediction store together
with their signals. Storage is best-effort: a failed write is logged and the
prediction is still returned.
"""
import asyncio
from decimal import Decimal
from typing import Optional

import structlog

from commodity_oracle.config import Settings, get_settings
from commodity_oracle.exceptions import (
    OracleError,
    PredictionStoreUnavailableError,
    ValidationError,
)
from commodity_oracle.models import (
    CommoditySymbol,
    Forecast,
    Horizon,
    Prediction,
    PricePoint,
    Region,
    utcnow,
)
from commodity_oracle.services.forecasting import (
    Forecaster,
    NarrativeContext,
    Narrator,
    derive_signal,
    summarize_history,
)
from commodity_oracle.services.prediction_store import PredictionStore
from commodity_oracle.services.price_oracle import PriceOracleCache

logger = structlog.get_logger()

MAX_RECENT_PREDICTIONS = 100


class PredictionEngine:
    """Quote + horizon -> typed, null-filled Prediction."""

    def __init__(
        self,
        oracle: PriceOracleCache,
        forecaster: Forecaster,
        narrator: Optional[Narrator] = None,
        forecast_timeout_seconds: float = 20.0,
        narrative_timeout_seconds: float = 20.0,
        store: Optional[PredictionStore] = None,
        store_timeout_seconds: float = 5.0,
    ):
        self._oracle = oracle
        self._forecaster = forecaster
        self._narrator = narrator
        self._forecast_timeout = forecast_timeout_seconds
        self._narrative_timeout = narrative_timeout_seconds
        self._store = store
        self._store_timeout = store_timeout_seconds

    @classmethod
    def from_settings(
        cls,
        oracle: PriceOracleCache,
        forecaster: Forecaster,
        narrator: Optional[Narrator] = None,
        settings: Optional[Settings] = None,
        store: Optional[PredictionStore] = None,
    ) -> "PredictionEngine":
        settings = settings or get_settings()
        return cls(
            oracle,
            forecaster,
            narrator,
            forecast_timeout_seconds=settings.forecast_timeout_seconds,
            narrative_timeout_seconds=settings.narrative_timeout_seconds,
            store=store,
            store_timeout_seconds=settings.prediction_store_timeout_seconds,
        )

    @property
    def model_name(self) -> str:
        return getattr(self._forecaster, "MODEL", None) or getattr(
            self._forecaster, "model", type(self._forecaster).__name__
        )

    async def predict(
        self,
        symbol: "str | CommoditySymbol",
        region: "str | Region",
        horizon: "str | Horizon",
        include_narrative: bool = True,
        narrative_on_failure: bool = False,
    ) -> Prediction:
        """
        Generate a prediction.

        Args:
            include_narrative: when False the narrator is never called
            narrative_on_failure: still narrate when the forecast failed

        Raises:
            ValidationError subclasses for bad symbol/region/horizon
            PriceLookupError when no quote can be resolved at all
        """
        symbol = CommoditySymbol.parse(symbol)
        region = Region.parse(region)
        horizon = Horizon.parse(horizon)

        quote = await self._oracle.get_price(symbol, region)

        history = await self._oracle.get_history(symbol, region)
        if not history or history[-1].observed_at < quote.observed_at:
            history.append(PricePoint(observed_at=quote.observed_at, price=quote.price))

        log = logger.bind(symbol=symbol.value, region=region.value, horizon=horizon.value)
        forecast = await self._run_forecast(history, horizon, symbol, region, log)

        narrative = None
        if include_narrative and self._narrator is not None and (
            forecast is not None or narrative_on_failure
        ):
            context = NarrativeContext(
                symbol=symbol,
                region=region,
                horizon=horizon,
                current_price=quote.price,
                predicted_price=forecast.predicted_price if forecast else None,
                confidence=forecast.confidence if forecast else None,
                summary=summarize_history(history),
            )
            narrative = await self._run_narrative(context, log)

        signals = []
        if forecast is not None:
            signals = list(forecast.signals) or [
                derive_signal(quote.price, forecast.predicted_price, horizon)
            ]

        prediction = Prediction(
            symbol=symbol,
            region=region,
            horizon=horizon,
            predicted_price=forecast.predicted_price if forecast else None,
            confidence=forecast.confidence if forecast else None,
            narrative=narrative,
            as_of=utcnow(),
            model=forecast.model if forecast else self.model_name,
            current_price=quote.price,
            quote_stale=quote.stale,
            signals=signals,
        )
        if forecast is not None:
            await self._save(prediction, log)
        return prediction

    async def recent_predictions(
        self,
        symbol: "str | CommoditySymbol | None" = None,
        region: "str | Region | None" = None,
        limit: int = 10,
    ) -> list[Prediction]:
        """
        Stored predictions, newest first. ``limit`` is capped at 100.

        Raises:
            ValidationError subclasses for bad symbol/region/limit
            PredictionStoreUnavailableError when the store cannot be read
        """
        symbol = CommoditySymbol.parse(symbol) if symbol is not None else None
        region = Region.parse(region) if region is not None else None
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError(f"Limit must be a positive integer, got {limit!r}")
        limit = min(limit, MAX_RECENT_PREDICTIONS)
        if self._store is None:
            return []

        try:
            return await asyncio.wait_for(
                self._store.recent(symbol=symbol, region=region, limit=limit),
                timeout=self._store_timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Prediction store read timed out", timeout=self._store_timeout)
            raise PredictionStoreUnavailableError(
                f"Prediction store read timed out after {self._store_timeout}s"
            ) from None
        except OracleError:
            raise
        except Exception as e:
            logger.error("Prediction store read failed", error=str(e))
            raise PredictionStoreUnavailableError(f"Prediction store unavailable: {e}") from e

    async def _save(self, prediction: Prediction, log) -> None:
        if self._store is None:
            return
        try:
            await asyncio.wait_for(self._store.save(prediction), timeout=self._store_timeout)
        except asyncio.TimeoutError:
            log.warning("Storing prediction timed out", prediction_id=prediction.id, timeout=self._store_timeout)
        except Exception as e:
            log.warning("Failed to store prediction", prediction_id=prediction.id, error=str(e))

    async def _run_forecast(self, history, horizon, symbol, region, log) -> Optional[Forecast]:
        try:
            result = await asyncio.wait_for(
                self._forecaster.forecast(history, horizon, symbol, region),
                timeout=self._forecast_timeout,
            )
        except asyncio.TimeoutError:
            log.warning("Forecast timed out", timeout=self._forecast_timeout)
            return None
        except Exception as e:
            log.warning("Forecast failed", error=str(e))
            return None

        if not isinstance(result, Forecast):
            log.warning("Forecast result malformed", result_type=type(result).__name__)
            return None
        price = result.predicted_price
        if not isinstance(price, Decimal) or not price.is_finite() or price <= 0:
            log.warning("Forecast price out of range", predicted_price=str(price))
            return None
        return result

    async def _run_narrative(self, context: NarrativeContext, log) -> Optional[str]:
        try:
            narrative = await asyncio.wait_for(
                self._narrator.narrate(context),
                timeout=self._narrative_timeout,
            )
        except asyncio.TimeoutError:
            log.warning("Narrative timed out", timeout=self._narrative_timeout)
            return None
        except Exception as e:
            log.warning("Narrative failed", error=str(e))
            return None

        if not isinstance(narrative, str) or not narrative.strip():
            return None
        return narrative.strip()
