# backend/tests/routers/test_connections_api.py
"""
API layer tests for exchange connection endpoints.

Tests:
- GET /api/exchange/connections - List connections
- POST /api/exchange/delete-preview - Counts before deleting
- POST /api/exchange/delete - Delete a connection and its data
- POST /api/exchange/connect - Store encrypted API keys
- POST /api/exchange/update-keys - Replace API keys
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from tradeclarity.database import get_db
from tradeclarity.dependencies import clear_service_caches, get_connection_service
from tradeclarity.main import app
from tradeclarity.models import CsvUpload, ExchangeConnection, Trade
from tradeclarity.services.connections import ConnectionService
from tradeclarity.services.snaptrade import SecretBox
from tests.conftest import auth_headers, create_connection, create_trade, create_upload, create_user


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


@pytest.fixture
def connection_with_data(db):
    user = create_user(db)
    connection = create_connection(db, user, label="Main")
    create_trade(db, user, trade_id="api-1", connection=connection)
    upload = create_upload(db, user, connection=connection)
    create_trade(db, user, trade_id="csv-1", connection=connection, upload=upload)
    return connection


# =============================================================================
# TEST: LIST
# =============================================================================

class TestListConnections:
    """Tests for GET /api/exchange/connections."""

    def test_lists_active(self, client, db):
        user = create_user(db)
        create_connection(db, user, label="Main")
        create_connection(db, user, exchange="coindcx", is_active=False)

        active = client.get("/api/exchange/connections", headers=auth_headers()).json()
        everything = client.get(
            "/api/exchange/connections", params={"includeInactive": "true"}, headers=auth_headers()
        ).json()

        assert [c["label"] for c in active["connections"]] == ["Main"]
        assert len(everything["connections"]) == 2

    def test_requires_auth(self, client):
        assert client.get("/api/exchange/connections").status_code == 401


# =============================================================================
# TEST: DELETE
# =============================================================================

class TestDeleteConnection:
    """Tests for the preview and delete endpoints."""

    def test_preview(self, client, connection_with_data):
        response = client.post(
            "/api/exchange/delete-preview",
            json={"connectionId": connection_with_data.id},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["apiTradesCount"] == 1
        assert body["csvTradesCount"] == 1
        assert body["connection"]["label"] == "Main"

    def test_delete_keeps_csv_trades_by_default(self, client, db, connection_with_data):
        response = client.post(
            "/api/exchange/delete",
            json={"connectionId": connection_with_data.id},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["apiTradesDeleted"] == 1
        assert body["csvFilesUnlinked"] == 1
        assert body["totalTradesDeleted"] == 1
        assert [t.trade_id for t in db.scalars(select(Trade))] == ["csv-1"]
        assert db.scalars(select(ExchangeConnection)).all() == []

    def test_delete_with_linked_csvs(self, client, db, connection_with_data):
        response = client.post(
            "/api/exchange/delete",
            json={"connectionId": connection_with_data.id, "deleteLinkedCSVs": True},
            headers=auth_headers(),
        )

        assert response.json()["totalTradesDeleted"] == 2
        assert db.scalars(select(CsvUpload)).all() == []

    def test_unknown_connection(self, client):
        response = client.post(
            "/api/exchange/delete", json={"connectionId": "missing"}, headers=auth_headers()
        )

        assert response.status_code == 404
        assert response.json()["details"]["resource_type"] == "ExchangeConnection"

    def test_missing_connection_id(self, client):
        response = client.post("/api/exchange/delete", json={}, headers=auth_headers())

        assert response.status_code == 422


# =============================================================================
# TEST: API KEYS
# =============================================================================

class TestApiKeyEndpoints:
    """Tests for POST /api/exchange/connect and /api/exchange/update-keys."""

    @pytest.fixture
    def secrets(self) -> SecretBox:
        return SecretBox("test-passphrase")

    @pytest.fixture
    def keyed_client(self, client, secrets):
        app.dependency_overrides[get_connection_service] = lambda: ConnectionService(secrets=secrets)
        return client

    def test_connect_stores_encrypted_keys(self, keyed_client, db, secrets):
        create_user(db)

        response = keyed_client.post(
            "/api/exchange/connect",
            json={"exchange": "binance", "apiKey": "key-1", "apiSecret": "secret-1"},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["created"] is True
        assert body["connection"]["exchange"] == "binance"
        assert "key-1" not in response.text
        connection = db.scalars(select(ExchangeConnection)).one()
        assert secrets.decrypt(connection.api_key_encrypted) == "key-1"

    def test_connect_twice_keeps_one_connection(self, keyed_client, db):
        create_user(db)
        payload = {"exchange": "coindcx", "apiKey": "key", "apiSecret": "secret"}

        first = keyed_client.post("/api/exchange/connect", json=payload, headers=auth_headers()).json()
        second = keyed_client.post("/api/exchange/connect", json=payload, headers=auth_headers()).json()

        assert second["created"] is False
        assert second["connection"]["id"] == first["connection"]["id"]
        assert len(db.scalars(select(ExchangeConnection)).all()) == 1

    def test_connect_unsupported_exchange(self, keyed_client, db):
        create_user(db)

        response = keyed_client.post(
            "/api/exchange/connect",
            json={"exchange": "kraken", "apiKey": "key", "apiSecret": "secret"},
            headers=auth_headers(),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "UNSUPPORTED_EXCHANGE"

    def test_connect_missing_secret(self, keyed_client, db):
        create_user(db)

        response = keyed_client.post(
            "/api/exchange/connect",
            json={"exchange": "binance", "apiKey": "key"},
            headers=auth_headers(),
        )

        assert response.status_code == 422

    def test_connect_without_encryption_key(self, client, db):
        create_user(db)
        app.dependency_overrides[get_connection_service] = lambda: ConnectionService()

        response = client.post(
            "/api/exchange/connect",
            json={"exchange": "binance", "apiKey": "key", "apiSecret": "secret"},
            headers=auth_headers(),
        )

        assert response.status_code == 503
        assert response.json()["error"] == "ENCRYPTION_NOT_CONFIGURED"

    def test_update_keys(self, keyed_client, db, secrets):
        user = create_user(db)
        connection = create_connection(db, user, is_active=False)

        response = keyed_client.post(
            "/api/exchange/update-keys",
            json={"connectionId": connection.id, "apiKey": "new-key", "apiSecret": "new-secret"},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        assert response.json()["connection"]["isActive"] is True
        db.expire_all()
        assert secrets.decrypt(db.get(ExchangeConnection, connection.id).api_secret_encrypted) == "new-secret"

    def test_update_keys_unknown_connection(self, keyed_client, db):
        create_user(db)

        response = keyed_client.post(
            "/api/exchange/update-keys",
            json={"connectionId": "missing", "apiKey": "key", "apiSecret": "secret"},
            headers=auth_headers(),
        )

        assert response.status_code == 404

    def test_connect_requires_auth(self, client):
        response = client.post(
            "/api/exchange/connect",
            json={"exchange": "binance", "apiKey": "key", "apiSecret": "secret"},
        )

        assert response.status_code == 401
