"""
FastAPI dependencies resolving services from application state.
"""
from fastapi import Request

from commodity_oracle.services.container import ServiceContainer
from commodity_oracle.services.market_catalog import MarketCatalog
from commodity_oracle.services.prediction_engine import PredictionEngine
from commodity_oracle.services.price_oracle import PriceOracleCache
from commodity_oracle.services.settlement_gatekeeper import SettlementGatekeeper
from commodity_oracle.services.staking_ledger import StakingLedger


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_oracle(request: Request) -> PriceOracleCache:
    return get_services(request).oracle


def get_engine(request: Request) -> PredictionEngine:
    return get_services(request).engine


def get_ledger(request: Request) -> StakingLedger:
    return get_services(request).ledger


def get_catalog(request: Request) -> MarketCatalog:
    return get_services(request).catalog


def get_gatekeeper(request: Request) -> SettlementGatekeeper:
    return get_services(request).gatekeeper
