"""
Pydantic models for commodity oracle data.
Provides type-safe schemas for quotes, predictions, markets, stakes and allowances.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from commodity_oracle.exceptions import (
    InvalidStakeError,
    UnknownRegionError,
    UnknownSymbolError,
    UnsupportedHorizonError,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class CommoditySymbol(str, Enum):
    """Supported commodities."""
    COFFEE = "COFFEE"
    TEA = "TEA"
    AVOCADO = "AVOCADO"
    MACADAMIA = "MACADAMIA"
    COCOA = "COCOA"
    GOLD = "GOLD"

    @classmethod
    def parse(cls, value: "str | CommoditySymbol") -> "CommoditySymbol":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise UnknownSymbolError(value) from None


class Region(str, Enum):
    """Pricing regions."""
    AFRICA = "AFRICA"
    LATAM = "LATAM"
    GLOBAL = "GLOBAL"

    @classmethod
    def parse(cls, value: "str | Region") -> "Region":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise UnknownRegionError(value) from None


class Horizon(str, Enum):
    """Fixed set of prediction horizons."""
    ONE_DAY = "1d"
    THREE_DAYS = "3d"
    ONE_WEEK = "7d"
    TWO_WEEKS = "14d"

    @property
    def days(self) -> int:
        return int(self.value[:-1])

    @classmethod
    def parse(cls, value: "str | Horizon") -> "Horizon":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnsupportedHorizonError(value) from None


class StakeSide(str, Enum):
    """Binary outcome side."""
    YES = "YES"
    NO = "NO"

    @classmethod
    def parse(cls, value: "str | StakeSide") -> "StakeSide":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise InvalidStakeError(f"Unknown stake side: {value!r}") from None


class StakeKind(str, Enum):
    STAKE = "STAKE"
    REVERSAL = "REVERSAL"


class SignalType(str, Enum):
    """Direction a prediction signal points in."""
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


# =============================================================================
# PRICE MODELS
# =============================================================================

class PriceQuote(BaseModel):
    """A single observed price. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    symbol: CommoditySymbol
    region: Region
    price: Decimal
    currency: str = "USD"
    observed_at: datetime
    source: str
    stale: bool = False


class PricePoint(BaseModel):
    """A (time, price) sample used as forecaster input."""

    model_config = ConfigDict(frozen=True)

    observed_at: datetime
    price: Decimal


class PriceResult(BaseModel):
    """One positional element of a batch price lookup."""

    symbol: str
    region: Region
    quote: Optional[PriceQuote] = None
    error: Optional[Literal["unknown_symbol", "lookup_failed"]] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.quote is not None


# =============================================================================
# PREDICTION MODELS
# =============================================================================

class PredictionSignal(BaseModel):
    """One directional driver attached to a stored prediction."""

    model_config = ConfigDict(frozen=True)

    signal_type: SignalType
    strength: float = Field(ge=0.0, le=1.0)
    description: str = ""


class Forecast(BaseModel):
    """Raw output of a forecasting capability."""

    predicted_price: Decimal
    confidence: float = Field(ge=0.0, le=1.0)
    model: str
    signals: list[PredictionSignal] = Field(default_factory=list)


class Prediction(BaseModel):
    """Typed prediction record. Null fields mean unknown."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    symbol: CommoditySymbol
    region: Region
    horizon: Horizon
    predicted_price: Optional[Decimal] = None
    currency: str = "USD"
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    narrative: Optional[str] = None
    as_of: datetime
    model: str
    current_price: Optional[Decimal] = None
    quote_stale: bool = False
    signals: list[PredictionSignal] = Field(default_factory=list)


# =============================================================================
# MARKET / LEDGER MODELS
# =============================================================================

class Market(BaseModel):
    """Binary-outcome contract on a commodity threshold."""

    model_config = ConfigDict(frozen=True)

    id: str
    commodity: CommoditySymbol
    question: str
    yes_price: Decimal
    no_price: Decimal
    volume: Decimal = Decimal("0")
    participant_count: int = 0
    deadline: date
    description: str = ""
    status: str = "active"


class StakeEvent(BaseModel):
    """Append-only stake record. Corrections are REVERSAL events."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    market_id: str
    side: StakeSide
    amount: Decimal
    created_at: datetime
    kind: StakeKind = StakeKind.STAKE
    reverses: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=64)


class LedgerAggregate(BaseModel):
    """Derived staking figures."""

    total_value_locked: Decimal
    active_stakers: int
    average_apy: Decimal
    source: Literal["ledger", "fallback"] = "ledger"
    event_count: int = 0


# =============================================================================
# SETTLEMENT MODELS
# =============================================================================

class AllowanceStatus(BaseModel):
    """Result of an allowance check. Never cached."""

    owner_address: str
    token_address: str
    spender_address: str
    allowance: int
    minimum_required: int
    needs_approval: bool
    verified: bool = True
    error: Optional[str] = None
