# Core services
from .forecasting import TemplateNarrator, TrendForecaster
from .ledger_store import InMemoryLedgerStore, SqlLedgerStore
from .market_catalog import MarketCatalog
from .prediction_engine import PredictionEngine
from .price_oracle import PriceOracleCache
from .price_sources import ChainedPriceSource, StaticPriceSource, build_price_source
from .settlement_gatekeeper import SettlementGatekeeper
from .staking_ledger import FixedYieldPolicy, StakingLedger

__all__ = [
    "ChainedPriceSource",
    "FixedYieldPolicy",
    "InMemoryLedgerStore",
    "MarketCatalog",
    "PredictionEngine",
    "PriceOracleCache",
    "SettlementGatekeeper",
    "SqlLedgerStore",
    "StakingLedger",
    "StaticPriceSource",
    "TemplateNarrator",
    "TrendForecaster",
    "build_price_source",
]
