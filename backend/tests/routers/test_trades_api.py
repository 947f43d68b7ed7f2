# backend/tests/routers/test_trades_api.py
"""
API layer tests for trade storage endpoints.

Tests:
- POST /api/trades/store - Store a batch of trades
- GET /api/trades/fetch - Read trades back in analyzer format
- GET /api/trades/stats - Trade counts and portfolio totals

Storing runs against an in-memory database, including the analytics
recompute it triggers.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from tradeclarity.config import settings
from tradeclarity.database import get_db
from tradeclarity.dependencies import INTERNAL_SERVICE_KEY_HEADER, clear_service_caches
from tradeclarity.main import app
from tradeclarity.models import AnalyticsCacheEntry, Trade
from tests.conftest import auth_headers, create_connection, create_trade, create_user


@pytest.fixture(scope="function")
def client(db: Session) -> TestClient:
    """Create TestClient with database dependency override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    clear_service_caches()

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
    clear_service_caches()


def spot_record(trade_id: str, is_buyer: bool = True, price: str = "50000") -> dict:
    return {
        "symbol": "BTCUSDT",
        "id": trade_id,
        "orderId": f"o-{trade_id}",
        "price": price,
        "qty": "0.01",
        "quoteQty": "500",
        "commission": "0.5",
        "commissionAsset": "USDT",
        "time": 1704067200000,
        "isBuyer": is_buyer,
        "isMaker": False,
    }


# =============================================================================
# TEST: STORE
# =============================================================================

class TestStoreTrades:
    """Tests for POST /api/trades/store."""

    def test_store_and_recompute(self, client, db):
        response = client.post(
            "/api/trades/store",
            json={"exchange": "Binance", "spotTrades": [spot_record("1"), spot_record("2", is_buyer=False)]},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["tradesCount"] == 2
        assert body["analyticsComputationTriggered"] is True
        assert db.scalars(select(AnalyticsCacheEntry)).one().user_id == "user-1"

    def test_duplicates_are_counted(self, client):
        payload = {"exchange": "binance", "spotTrades": [spot_record("1")]}
        client.post("/api/trades/store", json=payload, headers=auth_headers())

        body = client.post("/api/trades/store", json=payload, headers=auth_headers()).json()

        assert body["tradesCount"] == 0
        assert body["alreadyExisted"] == 1
        assert body["analyticsComputationTriggered"] is False

    def test_internal_caller_stores_for_body_user(self, client, db):
        response = client.post(
            "/api/trades/store",
            json={"exchange": "binance", "spotTrades": [spot_record("1")], "userId": "worker-target"},
            headers={INTERNAL_SERVICE_KEY_HEADER: settings.internal_service_key},
        )

        assert response.status_code == 200
        assert db.scalars(select(Trade)).one().user_id == "worker-target"

    def test_body_user_without_internal_key(self, client):
        response = client.post(
            "/api/trades/store",
            json={"exchange": "binance", "spotTrades": [], "userId": "someone-else"},
            headers=auth_headers(),
        )

        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"

    def test_requires_auth(self, client):
        response = client.post("/api/trades/store", json={"exchange": "binance"})

        assert response.status_code == 401

    def test_blank_exchange(self, client):
        response = client.post("/api/trades/store", json={"exchange": "  "}, headers=auth_headers())

        assert response.status_code == 422


# =============================================================================
# TEST: FETCH AND STATS
# =============================================================================

class TestFetchTrades:
    """Tests for GET /api/trades/fetch and /api/trades/stats."""

    def test_fetch_by_connection(self, client, db):
        user = create_user(db)
        connection = create_connection(db, user)
        create_trade(db, user, trade_id="1", connection=connection)
        create_trade(db, user, trade_id="2")

        response = client.get(
            "/api/trades/fetch", params={"connectionId": connection.id}, headers=auth_headers()
        )

        assert response.status_code == 200
        assert [t["id"] for t in response.json()["spotTrades"]] == ["1"]

    def test_fetch_only_own_trades(self, client, db):
        other = create_user(db, user_id="user-2", email="other@example.com")
        create_trade(db, other, trade_id="theirs")

        body = client.get("/api/trades/fetch", headers=auth_headers()).json()

        assert body["spotTrades"] == []

    def test_stats(self, client, db):
        user = create_user(db)
        create_trade(db, user, trade_id="1")

        body = client.get("/api/trades/stats", headers=auth_headers()).json()

        assert body["success"] is True
        assert body["metadata"]["totalTrades"] == 1
