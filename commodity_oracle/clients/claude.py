"""
Claude-backed forecaster and narrator (Anthropic Messages API).
"""
import json
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence

import structlog
from anthropic import AsyncAnthropic

from commodity_oracle.config import Settings, get_settings
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
from commodity_oracle.services.forecasting import (
    HistorySummary,
    NarrativeContext,
    summarize_history,
)

logger = structlog.get_logger()


SYSTEM_PROMPT = """You are an agricultural commodities analyst covering African and Latin American markets.

You weigh:
- supply and demand balances
- weather and its effect on yields
- trade policy, logistics and currency moves
- recent price momentum and seasonality

You answer with structured, data-driven forecasts and honest confidence levels."""


HORIZON_GUIDANCE: dict[Horizon, str] = {
    Horizon.ONE_DAY: """Horizon is the next trading day:
- current inventories and auction results
- short-range weather in growing regions
- price momentum from the latest sessions""",

    Horizon.THREE_DAYS: """Horizon is the next few days:
- shipping and port disruptions
- short-range weather in growing regions
- price momentum and market sentiment""",

    Horizon.ONE_WEEK: """Horizon is the coming week:
- supply constraints and harvest timing
- weather forecasts for growing regions
- logistics, currency moves and recent momentum""",

    Horizon.TWO_WEEKS: """Horizon is the next two weeks:
- harvest schedules and expected yields
- export and import policy announcements
- currency strength of producer countries""",
}


COMMODITY_CONTEXT: dict[CommoditySymbol, str] = {
    CommoditySymbol.COFFEE: """Ethiopia and Kenya lead East African supply; Brazil and Colombia dominate Latin America.
Watch Arabica/Robusta spreads, frost in Brazil, drought in East Africa, specialty demand and BRL/COP/ETB moves.""",

    CommoditySymbol.TEA: """Kenya and Tanzania are major exporters selling through the Mombasa auction.
Watch monsoon rains, competition from India and Sri Lanka, auction averages and port logistics.""",

    CommoditySymbol.AVOCADO: """Kenya and South Africa are growing exporters to Europe and the Middle East.
Watch competition from Mexico and Peru, water scarcity, cold-chain reliability and export certification.""",

    CommoditySymbol.MACADAMIA: """Kenya, Malawi and South Africa produce premium nuts, mostly for China.
Watch Chinese demand, processing capacity, Australian competition and in-shell versus kernel premiums.""",

    CommoditySymbol.COCOA: """Cote d'Ivoire and Ghana produce most of the world's cocoa.
Watch El Nino/La Nina rainfall, swollen shoot disease, certification premiums and chocolate demand.""",

    CommoditySymbol.GOLD: """Gold trades as both commodity and financial asset; Ghana and South Africa are key African miners.
Watch USD strength, interest rates, safe-haven flows and central bank buying.""",
}


def _history_line(summary: Optional[HistorySummary]) -> str:
    if summary is None or summary.samples < 2:
        return "Limited historical data available"
    return (
        f"Historical context: Avg price ${summary.average:.2f}, "
        f"Volatility {summary.volatility * 100:.1f}%, Trend {summary.trend}"
    )


def build_forecast_prompt(
    symbol: CommoditySymbol,
    region: Region,
    horizon: Horizon,
    current_price: Decimal,
    summary: Optional[HistorySummary],
) -> str:
    return f"""## FORECAST REQUEST

Commodity: {symbol.value}
Region: {region.value}
Time Horizon: {horizon.value}
Current market price: ${current_price:.2f} USD
{_history_line(summary)}

{HORIZON_GUIDANCE[horizon]}

## COMMODITY FACTORS
{COMMODITY_CONTEXT[symbol]}

## OUTPUT
Reply with ONLY this JSON object:
{{"predictedPrice": <number, USD>, "confidence": <number between 0 and 1>,
  "signals": [{{"type": "BULLISH" | "BEARISH" | "NEUTRAL", "strength": <number between 0 and 1>, "reason": <short text>}}]}}"""


def build_narrative_prompt(context: NarrativeContext) -> str:
    if context.predicted_price is not None:
        outlook = f"Forecast price: ${context.predicted_price:.2f} USD"
        if context.confidence is not None:
            outlook += f" (confidence {context.confidence:.2f})"
    else:
        outlook = "No numeric forecast is available. Describe the drivers only."

    return f"""Commodity: {context.symbol.value}
Region: {context.region.value}
Time Horizon: {context.horizon.value}
Current market price: ${context.current_price:.2f} USD
{_history_line(context.summary)}
{outlook}

## COMMODITY FACTORS
{COMMODITY_CONTEXT[context.symbol]}

Write 2-3 sentences explaining the key drivers for this horizon. Cite specific
factors (weather, policy, demand). Plain text only."""


def _parse_signals(raw: Any) -> list[PredictionSignal]:
    """Well-formed entries of the optional ``signals`` array; the rest are dropped."""
    if not isinstance(raw, list):
        return []
    signals = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            signal_type = SignalType(str(item.get("type", "")).strip().upper())
            strength = float(item.get("strength", 0.5))
        except (TypeError, ValueError):
            continue
        if not 0.0 <= strength <= 1.0:
            continue
        signals.append(PredictionSignal(
            signal_type=signal_type,
            strength=strength,
            description=str(item.get("reason") or ""),
        ))
    return signals


def parse_forecast_reply(text: str, model: str) -> Forecast:
    """Parse ``{"predictedPrice": .., "confidence": .., "signals": [..]}`` out of a model reply."""
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if not match:
        raise ForecastError("No JSON object in forecast reply")
    try:
        data = json.loads(match.group(0))
        price = Decimal(str(data["predictedPrice"]))
        confidence = float(data["confidence"])
    except (json.JSONDecodeError, KeyError, TypeError, ValueError, InvalidOperation) as e:
        raise ForecastError(f"Malformed forecast reply: {e}") from None

    if not price.is_finite() or price <= 0:
        raise ForecastError(f"Forecast price out of range: {price}")
    if not 0.0 <= confidence <= 1.0:
        raise ForecastError(f"Forecast confidence out of range: {confidence}")

    return Forecast(
        predicted_price=price.quantize(Decimal("0.01")),
        confidence=confidence,
        model=model,
        signals=_parse_signals(data.get("signals")),
    )


class _ClaudeCapability:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[AsyncAnthropic] = None,
    ):
        self._settings = settings or get_settings()
        self.model = self._settings.claude_model
        self._max_tokens = self._settings.claude_max_tokens
        if client is not None:
            self.client = client
        elif self._settings.anthropic_api_key:
            self.client = AsyncAnthropic(api_key=self._settings.anthropic_api_key)
        else:
            self.client = None
            logger.warning("Anthropic API key not configured", capability=type(self).__name__)

    async def _complete(self, prompt: str, temperature: float) -> str:
        if self.client is None:
            raise ForecastError("Claude is not configured. Set ANTHROPIC_API_KEY.")

        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self._max_tokens,
            temperature=temperature,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )

        answer = ""
        for block in response.content:
            if hasattr(block, "text"):
                answer += block.text
        return answer


class ClaudeForecaster(_ClaudeCapability):
    """Numeric forecast from Claude."""

    async def forecast(
        self,
        history: Sequence[PricePoint],
        horizon: Horizon,
        symbol: CommoditySymbol,
        region: Region,
    ) -> Forecast:
        summary = summarize_history(history)
        current = max(history, key=lambda p: p.observed_at).price
        prompt = build_forecast_prompt(symbol, region, horizon, current, summary)
        reply = await self._complete(prompt, temperature=0.2)
        return parse_forecast_reply(reply, self.model)


class ClaudeNarrator(_ClaudeCapability):
    """Short market narrative from Claude."""

    async def narrate(self, context: NarrativeContext) -> str:
        reply = (await self._complete(build_narrative_prompt(context), temperature=0.5)).strip()
        if not reply:
            raise ForecastError("Empty narrative reply")
        return reply
