# backend/tests/routers/test_currency_api.py
"""
API layer tests for the currency rate endpoint.

Tests:
- GET /api/currency-rate - Rates with live, stored and static sources
"""

from datetime import date
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from tradeclarity.database import get_db
from tradeclarity.dependencies import clear_service_caches, get_currency_rate_service
from tradeclarity.main import app
from tradeclarity.models import CurrencyExchangeRate
from tradeclarity.services.currency import (
    CurrencyRateService,
    DatabaseRatesProvider,
    FreeApiRatesProvider,
)


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


def use_rates_service(status: int, body: dict | None = None) -> None:
    """Route the live provider to a mocked API."""
    transport = httpx.MockTransport(lambda request: httpx.Response(status, json=body or {}))
    service = CurrencyRateService(providers=[
        FreeApiRatesProvider("https://rates.test/latest/USD", http_client=httpx.Client(transport=transport)),
        DatabaseRatesProvider(today=lambda: date(2024, 5, 3)),
    ])
    app.dependency_overrides[get_currency_rate_service] = lambda: service


class TestCurrencyRate:
    """Tests for GET /api/currency-rate."""

    def test_live_rates(self, client):
        rates = {"INR": 88.7, "EUR": 0.93, "GBP": 0.8, "JPY": 150, "AUD": 1.5,
                 "CAD": 1.36, "CNY": 7.2, "SGD": 1.34, "CHF": 0.88, "BRL": 5.0}
        use_rates_service(200, {"rates": rates})

        first = client.get("/api/currency-rate")
        second = client.get("/api/currency-rate")

        assert first.status_code == 200
        body = first.json()
        assert body["source"] == "free-api"
        assert body["rates"]["USD"] == 1.0
        assert "BRL" not in body["rates"]
        assert body["cached"] is False
        assert second.json()["cached"] is True

    def test_falls_back_to_database(self, client, db):
        db.add(CurrencyExchangeRate(currency_code="INR", rate=Decimal("88.1"), rate_date=date(2024, 5, 1)))
        db.commit()
        use_rates_service(503)

        body = client.get("/api/currency-rate").json()

        assert body["source"] == "database"
        assert body["ageDays"] == 2
        assert body["rates"]["INR"] == pytest.approx(88.1)

    def test_falls_back_to_static(self, client):
        use_rates_service(503)

        body = client.get("/api/currency-rate").json()

        assert body["success"] is True
        assert body["source"] == "static"
        assert body["ageDays"] is None

    def test_no_auth_required(self, client):
        use_rates_service(503)

        assert client.get("/api/currency-rate").status_code == 200
