# backend/tests/routers/test_csv_import_api.py
"""
API layer tests for CSV import endpoints.

Tests:
- POST /api/csv/parse - Parse an uploaded trade history file
- POST /api/csv/detect-columns - AI column detection
- POST/GET/PATCH/DELETE /api/csv/uploads - Upload records

These tests verify the HTTP layer using FastAPI's TestClient against an
in-memory database; the AI service is replaced with a mocked transport.
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from tradeclarity.database import get_db
from tradeclarity.dependencies import clear_service_caches, get_column_detection_service
from tradeclarity.main import app
from tradeclarity.models import CsvUpload, Trade
from tradeclarity.services.csv_import import ColumnDetectionService
from tests.conftest import auth_headers, create_connection, create_trade, create_upload, create_user


SPOT_CSV = b"""Date(UTC),Pair,Side,Price,Executed,Fee
2024-01-01 00:00:00,BTCUSDT,BUY,42000,0.01,0.1
2024-01-02 00:00:00,BTCUSDT,SELL,43000,0.01,0.1
2024-01-03 00:00:00,BTCUSDT,HOLD,43000,0.01,0.1
"""


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


def parse(client: TestClient, content: bytes, **form) -> httpx.Response:
    data = {"exchange": "binance", "accountType": "SPOT", **form}
    return client.post(
        "/api/csv/parse",
        data=data,
        files={"file": ("trades.csv", content, "text/csv")},
        headers=auth_headers(),
    )


# =============================================================================
# TEST: PARSE
# =============================================================================

class TestParseCsv:
    """Tests for POST /api/csv/parse."""

    def test_parse_with_exchange_layout(self, client):
        response = parse(client, SPOT_CSV)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert len(body["spotTrades"]) == 2
        assert body["skippedRows"] == 1
        assert body["mappingSource"] == "exchange"

    def test_parse_with_mapping(self, client):
        mapping = {"symbol": "Pair", "side": "Side", "timestamp": "Date(UTC)",
                   "price": "Price", "quantity": "Executed"}

        response = parse(client, SPOT_CSV, exchange="other", columnMapping=json.dumps(mapping))

        assert response.status_code == 200
        assert response.json()["mappingSource"] == "mapping"

    def test_unreadable_mapping_is_ignored(self, client):
        response = parse(client, SPOT_CSV, columnMapping="{not json")

        assert response.status_code == 200
        assert response.json()["mappingSource"] == "exchange"

    def test_byte_order_mark_is_stripped(self, client):
        response = parse(client, b"\xef\xbb\xbf" + SPOT_CSV)

        assert response.status_code == 200
        assert len(response.json()["spotTrades"]) == 2

    def test_empty_file(self, client):
        response = parse(client, b"")

        assert response.status_code == 400
        assert response.json()["error"] == "EMPTY_FILE"

    def test_unsupported_exchange(self, client):
        response = parse(client, SPOT_CSV, exchange="kraken")

        assert response.status_code == 400
        assert response.json()["error"] == "UNSUPPORTED_EXCHANGE"

    def test_not_utf8(self, client):
        response = parse(client, b"\xff\xfe\x00bad")

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_FORMAT"

    def test_invalid_account_type(self, client):
        response = parse(client, SPOT_CSV, accountType="MARGIN")

        assert response.status_code == 422

    def test_requires_auth(self, client):
        response = client.post(
            "/api/csv/parse",
            data={"exchange": "binance", "accountType": "SPOT"},
            files={"file": ("trades.csv", SPOT_CSV, "text/csv")},
        )

        assert response.status_code == 401


# =============================================================================
# TEST: COLUMN DETECTION
# =============================================================================

class TestDetectColumns:
    """Tests for POST /api/csv/detect-columns."""

    def test_not_configured(self, client):
        app.dependency_overrides[get_column_detection_service] = lambda: ColumnDetectionService(api_key=None)

        response = client.post("/api/csv/detect-columns", json={"headers": ["Pair"]}, headers=auth_headers())

        assert response.status_code == 503
        assert response.json()["error"] == "AI_NOT_CONFIGURED"

    def test_detects_mapping(self, client):
        completion = {"mapping": {"symbol": "Pair", "side": "Side"}, "confidence": 0.9,
                      "detectedExchange": "Binance", "detectedType": "spot"}

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"content": [{"text": json.dumps(completion)}]})

        service = ColumnDetectionService(
            api_key="key", http_client=httpx.Client(transport=httpx.MockTransport(handler))
        )
        app.dependency_overrides[get_column_detection_service] = lambda: service

        response = client.post(
            "/api/csv/detect-columns",
            json={"headers": ["Pair", "Side"], "sampleData": [["BTCUSDT", "BUY"]]},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["mapping"]["symbol"] == "Pair"
        assert body["cached"] is False

    def test_blank_headers_rejected(self, client):
        response = client.post("/api/csv/detect-columns", json={"headers": [" "]}, headers=auth_headers())

        assert response.status_code == 422


# =============================================================================
# TEST: UPLOAD RECORDS
# =============================================================================

class TestUploads:
    """Tests for the /api/csv/uploads endpoints."""

    def test_create_and_list(self, client, db):
        response = client.post(
            "/api/csv/uploads",
            json={"filename": "export.csv", "accountType": "FUTURES", "exchange": "Binance", "size": 10},
            headers=auth_headers(),
        )

        assert response.status_code == 201
        upload = response.json()["upload"]
        assert upload["exchange"] == "binance"
        assert upload["accountType"] == "FUTURES"

        listed = client.get("/api/csv/uploads", headers=auth_headers()).json()
        assert [f["id"] for f in listed["files"]] == [upload["id"]]

    def test_create_with_foreign_connection(self, client, db):
        other = create_user(db, user_id="user-2", email="other@example.com")
        connection = create_connection(db, other)

        response = client.post(
            "/api/csv/uploads",
            json={"filename": "export.csv", "exchangeConnectionId": connection.id},
            headers=auth_headers(),
        )

        assert response.status_code == 404

    def test_link(self, client, db):
        user = create_user(db)
        upload = create_upload(db, user)
        connection = create_connection(db, user)

        response = client.patch(
            f"/api/csv/uploads/{upload.id}",
            json={"exchangeConnectionId": connection.id},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        assert response.json()["upload"]["exchangeConnectionId"] == connection.id

    def test_delete_removes_trades(self, client, db):
        user = create_user(db)
        upload = create_upload(db, user)
        create_trade(db, user, trade_id="1", upload=upload)

        response = client.delete(f"/api/csv/uploads/{upload.id}", headers=auth_headers())

        assert response.status_code == 200
        assert response.json()["tradesDeleted"] == 1
        assert db.scalars(select(Trade)).all() == []
        assert db.scalars(select(CsvUpload)).all() == []

    def test_delete_unknown(self, client):
        response = client.delete("/api/csv/uploads/missing", headers=auth_headers())

        assert response.status_code == 404
        assert response.json()["details"]["resource_type"] == "CsvUpload"
