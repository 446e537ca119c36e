"""
Commodity price oracle, prediction engine, staking ledger and settlement
gatekeeper for African commodity prediction markets.
"""

__version__ = "1.0.0"

from commodity_oracle.config import Settings, get_settings
from commodity_oracle.models import (
    AllowanceStatus,
    CommoditySymbol,
    Horizon,
    LedgerAggregate,
    Market,
    Prediction,
    PriceQuote,
    PriceResult,
    Region,
    StakeEvent,
    StakeSide,
)

__all__ = [
    "__version__",
    "Settings",
    "get_settings",
    "AllowanceStatus",
    "CommoditySymbol",
    "Horizon",
    "LedgerAggregate",
    "Market",
    "Prediction",
    "PriceQuote",
    "PriceResult",
    "Region",
    "StakeEvent",
    "StakeSide",
]
