# backend/tests/services/currency/test_currency_rates.py
"""
Tests for currency rates.

This module tests:
- Provider behaviour (free API, database, static)
- The fallback chain and its cache
- The daily rate snapshot job
"""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest
from sqlalchemy import select

from tradeclarity.models import CurrencyExchangeRate
from tradeclarity.services.constants import REQUIRED_CURRENCIES, STATIC_FALLBACK_RATES
from tradeclarity.services.currency import (
    CurrencyRateService,
    DatabaseRatesProvider,
    FreeApiRatesProvider,
    RatesCache,
    RatesResult,
    StaticRatesProvider,
    filter_to_required,
    store_daily_rates,
)
from tradeclarity.services.exceptions import RateProviderError


API_URL = "https://rates.test/latest/USD"

LIVE_RATES = {
    "USD": 1, "INR": 88.73, "EUR": 0.93, "GBP": 0.8, "JPY": 150.1,
    "AUD": 1.52, "CAD": 1.36, "CNY": 7.2, "SGD": 1.34, "CHF": 0.88,
    "MXN": 17.1,
}


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def api_client(status: int = 200, body: dict | None = None, calls: list | None = None) -> httpx.Client:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status, json=body if body is not None else {"rates": LIVE_RATES})

    return httpx.Client(transport=httpx.MockTransport(handler))


def store_rate(db, code: str, rate: str, rate_date: date) -> None:
    db.add(CurrencyExchangeRate(currency_code=code, rate=Decimal(rate), rate_date=rate_date))
    db.commit()


class FailingProvider:
    name = "failing"

    def __init__(self) -> None:
        self.calls = 0

    def fetch(self, db):
        self.calls += 1
        raise RateProviderError(self.name, "down")


class FixedProvider:
    name = "fixed"

    def __init__(self, rates: dict[str, float]) -> None:
        self.rates = rates
        self.calls = 0

    def fetch(self, db):
        self.calls += 1
        return RatesResult(rates=self.rates, source=self.name, age_days=0)


# =============================================================================
# PROVIDER TESTS
# =============================================================================

class TestFilterToRequired:
    """Tests for filter_to_required()."""

    def test_drops_extra_currencies_and_pins_usd(self):
        rates = filter_to_required({"USD": 2, "INR": "88.5", "MXN": 17})

        assert rates == {"USD": 1.0, "INR": 88.5}

    @pytest.mark.parametrize("value", ["n/a", [88], True, "nan", 0, -1.5])
    def test_unusable_rate_raises_value_error(self, value):
        with pytest.raises(ValueError):
            filter_to_required({"INR": value})

    def test_none(self):
        assert filter_to_required(None) == {"USD": 1.0}


class TestFreeApiRatesProvider:
    """Tests for the live API provider."""

    def test_complete_response(self):
        result = FreeApiRatesProvider(API_URL, http_client=api_client()).fetch(MagicMock())

        assert result.source == "free-api"
        assert result.age_days == 0
        assert set(result.rates) == set(REQUIRED_CURRENCIES)
        assert result.rates["INR"] == 88.73

    def test_incomplete_response_is_rejected(self):
        body = {"rates": {"INR": 88.73, "EUR": 0.93}}

        with pytest.raises(RateProviderError) as exc_info:
            FreeApiRatesProvider(API_URL, http_client=api_client(body=body)).fetch(MagicMock())

        assert "Missing required currencies" in exc_info.value.message

    def test_http_error(self):
        with pytest.raises(RateProviderError):
            FreeApiRatesProvider(API_URL, http_client=api_client(status=503)).fetch(MagicMock())

    def test_non_numeric_rate_is_rejected(self):
        body = {"rates": {**LIVE_RATES, "INR": "n/a"}}

        with pytest.raises(RateProviderError) as exc_info:
            FreeApiRatesProvider(API_URL, http_client=api_client(body=body)).fetch(MagicMock())

        assert "INR" in exc_info.value.message

    def test_non_numeric_rate_falls_back_to_stored_rates(self, db):
        store_rate(db, "INR", "88", date(2024, 1, 10))
        body = {"rates": {**LIVE_RATES, "EUR": {"value": 0.93}}}
        service = CurrencyRateService([
            FreeApiRatesProvider(API_URL, http_client=api_client(body=body)),
            DatabaseRatesProvider(today=lambda: date(2024, 1, 12)),
        ])

        body = service.get_rates(db)

        assert body["source"] == "database"
        assert body["rates"] == {"INR": 88.0, "USD": 1.0}

    def test_body_without_rates(self):
        with pytest.raises(RateProviderError):
            FreeApiRatesProvider(API_URL, http_client=api_client(body={"result": "error"})).fetch(MagicMock())


class TestDatabaseRatesProvider:
    """Tests for the stored-rates provider."""

    def test_latest_row_per_currency(self, db):
        store_rate(db, "INR", "80", date(2024, 1, 1))
        store_rate(db, "INR", "88", date(2024, 1, 10))
        store_rate(db, "EUR", "0.9", date(2024, 1, 5))

        result = DatabaseRatesProvider(today=lambda: date(2024, 1, 12)).fetch(db)

        assert result.source == "database"
        assert result.rates == {"INR": 88.0, "EUR": 0.9, "USD": 1.0}
        # oldest rate actually used is EUR from the 5th
        assert result.age_days == 7

    def test_reads_only_latest_rows(self, db, monkeypatch):
        for day in range(1, 11):
            store_rate(db, "INR", str(80 + day), date(2024, 1, day))
            store_rate(db, "EUR", "0.9", date(2024, 1, day))
        loaded = []
        execute = db.execute

        def recording_execute(statement, *args, **kwargs):
            rows = execute(statement, *args, **kwargs).all()
            loaded.extend(rows)
            return MagicMock(all=MagicMock(return_value=rows))

        monkeypatch.setattr(db, "execute", recording_execute)

        result = DatabaseRatesProvider(today=lambda: date(2024, 1, 10)).fetch(db)

        assert len(loaded) == 2
        assert result.rates == {"INR": 90.0, "EUR": 0.9, "USD": 1.0}
        assert result.age_days == 0

    def test_unusable_stored_rate(self, db):
        store_rate(db, "INR", "0", date(2024, 1, 10))

        with pytest.raises(RateProviderError):
            DatabaseRatesProvider().fetch(db)

    def test_empty_table(self, db):
        with pytest.raises(RateProviderError):
            DatabaseRatesProvider().fetch(db)


class TestStaticRatesProvider:
    """Tests for the static table."""

    def test_never_fails(self):
        result = StaticRatesProvider().fetch(MagicMock())

        assert result.source == "static"
        assert result.age_days is None
        assert result.rates == STATIC_FALLBACK_RATES


# =============================================================================
# SERVICE TESTS
# =============================================================================

class TestCurrencyRateService:
    """Tests for the fallback chain and cache."""

    def test_first_successful_provider_wins(self, db):
        failing = FailingProvider()
        fixed = FixedProvider({"USD": 1.0, "INR": 90.0})

        body = CurrencyRateService([failing, fixed]).get_rates(db)

        assert body == {
            "success": True,
            "rates": {"USD": 1.0, "INR": 90.0},
            "source": "fixed",
            "ageDays": 0,
            "cached": False,
        }
        assert failing.calls == 1

    def test_static_is_last_resort(self, db):
        body = CurrencyRateService([FailingProvider()]).get_rates(db)

        assert body["source"] == "static"

    def test_empty_chain_gets_static(self, db):
        assert CurrencyRateService([]).get_rates(db)["source"] == "static"

    def test_result_is_cached(self, db):
        fixed = FixedProvider({"USD": 1.0})
        service = CurrencyRateService([fixed])

        service.get_rates(db)
        body = service.get_rates(db)

        assert body["cached"] is True
        assert fixed.calls == 1

    def test_cache_expires(self, db):
        clock = FakeClock()
        fixed = FixedProvider({"USD": 1.0})
        service = CurrencyRateService([fixed], cache=RatesCache(ttl_seconds=900, clock=clock))

        service.get_rates(db)
        clock.now += 900
        body = service.get_rates(db)

        assert body["cached"] is False
        assert fixed.calls == 2


# =============================================================================
# DAILY SNAPSHOT TESTS
# =============================================================================

class TestStoreDailyRates:
    """Tests for store_daily_rates()."""

    def test_stores_every_currency_for_today(self, db):
        written = store_daily_rates(db, API_URL, http_client=api_client(), today=lambda: date(2024, 5, 1))

        assert written == len(LIVE_RATES)
        stored = {r.currency_code: r for r in db.scalars(select(CurrencyExchangeRate))}
        assert stored["MXN"].rate_date == date(2024, 5, 1)
        assert float(stored["INR"].rate) == pytest.approx(88.73)

    def test_rerun_on_same_day_updates_rows(self, db):
        store_daily_rates(db, API_URL, http_client=api_client(), today=lambda: date(2024, 5, 1))
        changed = {"rates": {**LIVE_RATES, "INR": 89.5}}

        store_daily_rates(db, API_URL, http_client=api_client(body=changed), today=lambda: date(2024, 5, 1))

        db.expire_all()
        rows = db.scalars(select(CurrencyExchangeRate).where(CurrencyExchangeRate.currency_code == "INR")).all()
        assert len(rows) == 1
        assert float(rows[0].rate) == pytest.approx(89.5)

    def test_incomplete_set_stores_nothing(self, db):
        body = {"rates": {**LIVE_RATES, "JPY": 0}}

        with pytest.raises(RateProviderError):
            store_daily_rates(db, API_URL, http_client=api_client(body=body))

        assert db.scalars(select(CurrencyExchangeRate)).all() == []

    def test_api_failure(self, db):
        with pytest.raises(RateProviderError):
            store_daily_rates(db, API_URL, http_client=api_client(status=500))
