"""
Forecasting capabilities used by the prediction engine.

A forecaster turns a price history plus a horizon into a point estimate and
a confidence. A narrator turns the result into prose. Both are opaque to the
engine, which only relies on the protocols below.
"""
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, Sequence

from commodity_oracle.exceptions import ForecastError
from commodity_oracle.models import (
    CommoditySymbol,
    Forecast,
    Horizon,
    PredictionSignal,
    PricePoint,
    Region,
    SignalType,
)

# Relative change between first and last sample that counts as a trend
TREND_THRESHOLD = 0.05

# Predicted vs current change that makes a signal directional
SIGNAL_THRESHOLD = 0.01

# Change at which a signal reaches full strength
SIGNAL_FULL_STRENGTH = 0.10

# Projected change is capped in either direction
MAX_PROJECTED_CHANGE = 0.25

MIN_CONFIDENCE = 0.05
MAX_CONFIDENCE = 0.95


class Forecaster(Protocol):
    async def forecast(
        self,
        history: Sequence[PricePoint],
        horizon: Horizon,
        symbol: CommoditySymbol,
        region: Region,
    ) -> Forecast:
        ...


class Narrator(Protocol):
    async def narrate(self, context: "NarrativeContext") -> str:
        ...


@dataclass
class HistorySummary:
    """Descriptive statistics over a price history."""
    samples: int
    latest: float
    average: float
    volatility: float  # stddev / mean
    change: float      # (latest - first) / first
    span_days: float

    @property
    def trend(self) -> str:
        if self.change > TREND_THRESHOLD:
            return "rising"
        if self.change < -TREND_THRESHOLD:
            return "falling"
        return "stable"


@dataclass
class NarrativeContext:
    """Everything a narrator may talk about."""
    symbol: CommoditySymbol
    region: Region
    horizon: Horizon
    current_price: Decimal
    predicted_price: Optional[Decimal] = None
    confidence: Optional[float] = None
    summary: Optional[HistorySummary] = None


def summarize_history(history: Sequence[PricePoint]) -> HistorySummary:
    if not history:
        raise ForecastError("Price history is empty")

    ordered = sorted(history, key=lambda p: p.observed_at)
    prices = [float(p.price) for p in ordered]
    n = len(prices)
    average = sum(prices) / n
    variance = sum((p - average) ** 2 for p in prices) / n
    volatility = math.sqrt(variance) / average if average > 0 else 0.0
    first, latest = prices[0], prices[-1]
    change = (latest - first) / first if first > 0 else 0.0
    span_days = (ordered[-1].observed_at - ordered[0].observed_at).total_seconds() / 86400

    return HistorySummary(
        samples=n,
        latest=latest,
        average=average,
        volatility=volatility,
        change=change,
        span_days=span_days,
    )


class TrendForecaster:
    """
    Deterministic drift projection.

    The observed relative change is spread over the history's span (at
    least one day) and projected forward ``horizon.days`` days, clamped to
    +/-25%. Confidence shrinks with volatility and horizon length and grows
    with the number of samples.
    """

    MODEL = "trend-v1"

    async def forecast(
        self,
        history: Sequence[PricePoint],
        horizon: Horizon,
        symbol: CommoditySymbol,
        region: Region,
    ) -> Forecast:
        summary = summarize_history(history)
        if summary.latest <= 0:
            raise ForecastError("Latest price is not positive")

        drift_per_day = summary.change / max(summary.span_days, 1.0)
        projected = drift_per_day * horizon.days
        projected = max(-MAX_PROJECTED_CHANGE, min(MAX_PROJECTED_CHANGE, projected))
        predicted = Decimal(str(summary.latest * (1 + projected))).quantize(Decimal("0.01"))

        return Forecast(
            predicted_price=predicted,
            confidence=self._confidence(summary, horizon),
            model=self.MODEL,
        )

    @staticmethod
    def _confidence(summary: HistorySummary, horizon: Horizon) -> float:
        sample_factor = min(1.0, 0.5 + summary.samples / 20)
        volatility_factor = 1 / (1 + 5 * summary.volatility)
        horizon_factor = 1 / (1 + 0.05 * horizon.days)
        raw = MAX_CONFIDENCE * sample_factor * volatility_factor * horizon_factor
        return round(max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, raw)), 4)


def derive_signal(current: Decimal, predicted: Decimal, horizon: Horizon) -> PredictionSignal:
    """Directional signal from the forecast move relative to the current price."""
    change = float((predicted - current) / current) if current > 0 else 0.0
    if change >= SIGNAL_THRESHOLD:
        signal_type = SignalType.BULLISH
    elif change <= -SIGNAL_THRESHOLD:
        signal_type = SignalType.BEARISH
    else:
        signal_type = SignalType.NEUTRAL
    return PredictionSignal(
        signal_type=signal_type,
        strength=round(min(1.0, abs(change) / SIGNAL_FULL_STRENGTH), 4),
        description=(
            f"{horizon.value} forecast ${predicted:.2f} vs current ${current:.2f} "
            f"({change:+.2%})"
        ),
    )


class TemplateNarrator:
    """Plain-text narrative built from the numbers alone. Used when no LLM is configured."""

    async def narrate(self, context: NarrativeContext) -> str:
        parts = [
            f"{context.symbol.value} ({context.region.value}) trades at "
            f"${context.current_price:.2f} USD."
        ]
        if context.summary is not None and context.summary.samples > 1:
            parts.append(
                f"Recent prices are {context.summary.trend} with "
                f"{context.summary.volatility * 100:.1f}% volatility over "
                f"{context.summary.samples} observations."
            )
        if context.predicted_price is not None:
            confidence = (
                f" ({context.confidence:.0%} confidence)" if context.confidence is not None else ""
            )
            parts.append(
                f"The {context.horizon.value} outlook is ${context.predicted_price:.2f}{confidence}."
            )
        else:
            parts.append(f"No {context.horizon.value} price estimate is available right now.")
        return " ".join(parts)
