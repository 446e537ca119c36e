"""
Wiring of the service graph from settings. Shared by the API and the CLI.
"""
from dataclasses import dataclass
from typing import Optional

import structlog

from commodity_oracle.config import Settings, get_settings
from commodity_oracle.database import DatabaseManager
from commodity_oracle.services.forecasting import TemplateNarrator, TrendForecaster
from commodity_oracle.services.ledger_store import InMemoryLedgerStore, SqlLedgerStore
from commodity_oracle.services.market_catalog import MarketCatalog
from commodity_oracle.services.prediction_engine import PredictionEngine
from commodity_oracle.services.prediction_store import (
    InMemoryPredictionStore,
    SqlPredictionStore,
)
from commodity_oracle.services.price_oracle import PriceOracleCache
from commodity_oracle.services.price_sources import build_price_source
from commodity_oracle.services.settlement_gatekeeper import SettlementGatekeeper
from commodity_oracle.services.staking_ledger import StakingLedger

logger = structlog.get_logger()


@dataclass
class ServiceContainer:
    oracle: PriceOracleCache
    engine: PredictionEngine
    catalog: MarketCatalog
    ledger: StakingLedger
    gatekeeper: SettlementGatekeeper
    db: Optional[DatabaseManager] = None

    async def close(self) -> None:
        await self.oracle.close()
        if self.db is not None:
            await self.db.close()


def build_services(settings: Optional[Settings] = None) -> ServiceContainer:
    from commodity_oracle.clients.chain import Web3AllowanceReader
    from commodity_oracle.clients.claude import ClaudeForecaster, ClaudeNarrator

    settings = settings or get_settings()

    oracle = PriceOracleCache.from_settings(build_price_source(settings), settings)

    db = None
    if settings.ledger_backend == "sql":
        db = DatabaseManager(settings)
        store = SqlLedgerStore(db)
    else:
        store = InMemoryLedgerStore()

    prediction_store = None
    if settings.prediction_store_enabled:
        prediction_store = SqlPredictionStore(db) if db is not None else InMemoryPredictionStore()

    if settings.forecaster == "claude":
        forecaster = ClaudeForecaster(settings=settings)
    else:
        forecaster = TrendForecaster()

    narrator = None
    if settings.narrator_enabled:
        narrator = ClaudeNarrator(settings=settings) if settings.anthropic_api_key else TemplateNarrator()

    engine = PredictionEngine.from_settings(
        oracle, forecaster, narrator, settings, store=prediction_store
    )

    catalog = MarketCatalog()
    ledger = StakingLedger.from_settings(store, catalog=catalog, settings=settings)

    gatekeeper = SettlementGatekeeper.from_settings(Web3AllowanceReader(settings), settings)

    logger.info(
        "Built services",
        forecaster=type(forecaster).__name__,
        narrator=type(narrator).__name__ if narrator else None,
        ledger_backend=settings.ledger_backend,
        prediction_store=type(prediction_store).__name__ if prediction_store else None,
    )
    return ServiceContainer(
        oracle=oracle,
        engine=engine,
        catalog=catalog,
        ledger=ledger,
        gatekeeper=gatekeeper,
        db=db,
    )
