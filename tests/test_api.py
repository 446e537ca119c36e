"""HTTP tests for the FastAPI application over fake services."""
import pytest
from fastapi.testclient import TestClient

from commodity_oracle.main import create_app
from commodity_oracle.services.container import ServiceContainer
from commodity_oracle.services.ledger_store import InMemoryLedgerStore
from commodity_oracle.services.market_catalog import MarketCatalog
from commodity_oracle.services.prediction_engine import PredictionEngine
from commodity_oracle.services.prediction_store import InMemoryPredictionStore
from commodity_oracle.services.settlement_gatekeeper import SettlementGatekeeper
from commodity_oracle.services.staking_ledger import StakingLedger
from tests.conftest import (
    OWNER,
    FailingLedgerStore,
    FakeAllowanceReader,
    FakeForecaster,
    FakeNarrator,
)


def build_container(oracle, settings, store=None, allowance: int = 0) -> ServiceContainer:
    catalog = MarketCatalog()
    return ServiceContainer(
        oracle=oracle,
        engine=PredictionEngine(oracle, FakeForecaster(), FakeNarrator(), store=InMemoryPredictionStore()),
        catalog=catalog,
        ledger=StakingLedger(store or InMemoryLedgerStore(), catalog=catalog),
        gatekeeper=SettlementGatekeeper(FakeAllowanceReader(value=allowance), settings=settings),
    )


@pytest.fixture
def client(oracle, settings):
    app = create_app(settings, services=build_container(oracle, settings))
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def broken_ledger_client(oracle, settings):
    app = create_app(settings, services=build_container(oracle, settings, store=FailingLedgerStore()))
    with TestClient(app) as test_client:
        yield test_client


class TestPriceEndpoint:

    def test_single_price(self, client):
        response = client.get("/price", params={"symbol": "coffee"})

        assert response.status_code == 200
        body = response.json()
        assert body["symbol"] == "COFFEE"
        assert body["region"] == "AFRICA"
        assert body["price"] == "250.00"
        assert body["stale"] is False

    def test_unknown_symbol_is_400(self, client):
        response = client.get("/price", params={"symbol": "BOGUS"})

        assert response.status_code == 400
        assert response.json()["error"] == "UnknownSymbolError"

    def test_unknown_region_is_400(self, client):
        response = client.get("/price", params={"symbol": "TEA", "region": "EUROPE"})

        assert response.status_code == 400

    def test_missing_symbol_is_400(self, client):
        assert client.get("/price").status_code == 400

    def test_lookup_failure_is_502(self, client):
        response = client.get("/price", params={"symbol": "COCOA"})

        assert response.status_code == 502
        assert response.json()["retryable"] is True

    def test_batch_keeps_order_and_reports_per_element(self, client):
        response = client.get("/price", params={"symbols": "TEA,BOGUS,COCOA,GOLD", "region": "latam"})

        assert response.status_code == 200
        body = response.json()
        assert body["region"] == "LATAM"
        results = body["results"]
        assert [r["symbol"] for r in results] == ["TEA", "BOGUS", "COCOA", "GOLD"]
        assert [r["error"] for r in results] == [None, "unknown_symbol", "lookup_failed", None]
        assert results[0]["quote"]["price"] == "3.50"

    def test_batch_size_is_limited(self, client):
        response = client.get("/price", params={"symbols": ",".join(["TEA"] * 21)})

        assert response.status_code == 400


class TestPredictionEndpoint:

    def test_prediction_without_narrative(self, client):
        response = client.get("/prediction", params={"symbol": "COFFEE", "narrative": "false"})

        assert response.status_code == 200
        body = response.json()
        assert body["horizon"] == "7d"
        assert body["predicted_price"] == "260.00"
        assert body["confidence"] == 0.7
        assert body["narrative"] is None
        assert body["current_price"] == "250.00"

    def test_prediction_with_narrative(self, client):
        response = client.get("/prediction", params={"symbol": "TEA", "horizon": "3d"})

        assert response.json()["narrative"] == "Prices firm on strong demand."

    def test_unsupported_horizon_is_400(self, client):
        response = client.get("/prediction", params={"symbol": "COFFEE", "horizon": "30d"})

        assert response.status_code == 400
        assert response.json()["error"] == "UnsupportedHorizonError"

    def test_missing_symbol_is_400(self, client):
        response = client.get("/prediction")

        assert response.status_code == 400
        assert response.json()["error"] == "RequestValidationError"

    def test_recent_predictions_include_signals(self, client):
        created = client.get("/prediction", params={"symbol": "COFFEE", "narrative": "false"}).json()
        client.get("/prediction", params={"symbol": "COFFEE", "region": "LATAM", "narrative": "false"})

        response = client.get("/predictions", params={"symbol": "coffee", "region": "africa"})

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["filters"] == {"symbol": "COFFEE", "region": "AFRICA", "limit": 10}
        [stored] = body["predictions"]
        assert stored["id"] == created["id"]
        assert stored["signals"][0]["signal_type"] == "BULLISH"

    def test_recent_predictions_newest_first(self, client):
        first = client.get("/prediction", params={"symbol": "TEA", "narrative": "false"}).json()
        second = client.get("/prediction", params={"symbol": "GOLD", "narrative": "false"}).json()

        body = client.get("/predictions").json()

        assert [p["id"] for p in body["predictions"]] == [second["id"], first["id"]]

    @pytest.mark.parametrize("limit", ["0", "101", "many"])
    def test_recent_predictions_bad_limit_is_400(self, client, limit):
        assert client.get("/predictions", params={"limit": limit}).status_code == 400

    def test_recent_predictions_unknown_symbol_is_400(self, client):
        assert client.get("/predictions", params={"symbol": "WHEAT"}).status_code == 400


class TestStakingEndpoints:

    def test_record_stake_and_aggregate(self, client):
        response = client.post("/staking/stake", json={
            "user_id": "alice", "market_id": "tea-1", "side": "yes", "amount": "25.5",
        })

        assert response.status_code == 201
        assert response.json()["side"] == "YES"

        aggregate = client.get("/staking/aggregate").json()
        assert aggregate["total_value_locked"] == "25.5"
        assert aggregate["active_stakers"] == 1
        assert aggregate["source"] == "ledger"

    @pytest.mark.parametrize("amount", [-1, 0, "abc"])
    def test_invalid_amount_is_400(self, client, amount):
        response = client.post("/staking/stake", json={
            "user_id": "alice", "market_id": "tea-1", "side": "YES", "amount": amount,
        })

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidStakeError"

    def test_unknown_market_is_400(self, client):
        response = client.post("/staking/stake", json={
            "user_id": "alice", "market_id": "wheat-1", "side": "YES", "amount": 5,
        })

        assert response.status_code == 400

    def test_reverse_and_list_events(self, client):
        event = client.post("/staking/stake", json={
            "user_id": "bob", "market_id": "coffee-1", "side": "NO", "amount": 10,
        }).json()

        response = client.post(f"/staking/stakes/{event['id']}/reverse", json={"reason": "typo"})

        assert response.status_code == 201
        assert response.json()["kind"] == "REVERSAL"
        events = client.get("/staking/events", params={"market_id": "coffee-1"}).json()
        assert events["count"] == 2
        assert client.get("/staking/aggregate").json()["total_value_locked"] == "0"

    def test_retry_with_idempotency_key_header_is_counted_once(self, client):
        stake = {"user_id": "alice", "market_id": "tea-1", "side": "YES", "amount": 100}

        first = client.post("/staking/stake", json=stake, headers={"Idempotency-Key": "order-7"})
        retry = client.post("/staking/stake", json=stake, headers={"Idempotency-Key": "order-7"})

        assert first.status_code == retry.status_code == 201
        assert retry.json()["id"] == first.json()["id"]
        aggregate = client.get("/staking/aggregate").json()
        assert aggregate["total_value_locked"] == "100"
        assert aggregate["event_count"] == 1

    def test_idempotency_key_reused_for_other_stake_is_400(self, client):
        stake = {"user_id": "alice", "market_id": "tea-1", "side": "YES", "amount": 100}
        client.post("/staking/stake", json={**stake, "idempotency_key": "order-8"})

        response = client.post("/staking/stake", json={**stake, "amount": 5, "idempotency_key": "order-8"})

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidStakeError"

    def test_unreachable_ledger_write_is_503(self, broken_ledger_client):
        response = broken_ledger_client.post("/staking/stake", json={
            "user_id": "alice", "market_id": "tea-1", "side": "YES", "amount": 5,
        })

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "5"
        assert response.json()["retryable"] is True

    def test_unreachable_ledger_read_falls_back(self, broken_ledger_client):
        response = broken_ledger_client.get("/staking/aggregate")

        assert response.status_code == 200
        body = response.json()
        assert body["source"] == "fallback"
        assert body["active_stakers"] == 1194


class TestAllowanceEndpoint:

    def test_invalid_address_is_400(self, client):
        response = client.get("/allowance", params={"address": "not-an-address"})

        assert response.status_code == 400

    def test_zero_allowance_needs_approval(self, client):
        response = client.get("/allowance", params={"address": OWNER})

        assert response.status_code == 200
        body = response.json()
        assert body["needs_approval"] is True
        assert body["verified"] is True
        assert body["minimum_required"] == 1000 * 10**6


class TestMarketsAndHealth:

    def test_list_markets(self, client):
        body = client.get("/markets").json()

        assert body["count"] == 6

    def test_filter_markets_by_commodity(self, client):
        body = client.get("/markets", params={"commodity": "tea"}).json()

        assert body["count"] == 2
        assert {m["commodity"] for m in body["markets"]} == {"TEA"}

    def test_unknown_market_is_404(self, client):
        assert client.get("/markets/wheat-1").status_code == 404

    def test_get_market(self, client):
        body = client.get("/markets/coffee-1").json()

        assert body["commodity"] == "COFFEE"

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "ok"}

    def test_health_reports_cache_stats(self, client):
        client.get("/price", params={"symbol": "TEA"})

        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["database"] is None
        assert body["price_cache"]["upstream_fetches"] == 1
        assert body["market_cache"]["size"] == 0

    def test_market_listing_fills_catalog_cache(self, client):
        client.get("/markets")
        client.get("/markets")

        assert client.get("/health").json()["market_cache"]["size"] == 1
