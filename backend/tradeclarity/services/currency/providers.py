# backend/tradeclarity/services/currency/providers.py
"""
Currency rate providers.

All rates are "units of currency per 1 USD" (USD = 1.0).

Providers are tried in order by CurrencyRateService:
    1. FreeApiRatesProvider   - live rates, accepted only when complete
    2. DatabaseRatesProvider  - latest stored row per currency, any age
    3. StaticRatesProvider    - hard-coded table, never fails
"""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

import httpx
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tradeclarity.models import CurrencyExchangeRate
from tradeclarity.services.constants import (
    FX_API_TIMEOUT_SECONDS,
    REQUIRED_CURRENCIES,
    STATIC_FALLBACK_RATES,
)
from tradeclarity.services.exceptions import RateProviderError

logger = logging.getLogger(__name__)

SOURCE_FREE_API = "free-api"
SOURCE_DATABASE = "database"
SOURCE_STATIC = "static"


@dataclass
class RatesResult:
    """A complete-enough rate set and where it came from."""

    rates: dict[str, float]
    source: str
    age_days: int | None = None


def filter_to_required(rates: dict[str, Any] | None) -> dict[str, float]:
    """
    Keep only the required currencies; USD is always 1.0.

    Raises:
        ValueError: When a required rate is not a positive finite number
    """
    filtered: dict[str, float] = {}
    for code in REQUIRED_CURRENCIES:
        value = (rates or {}).get(code)
        if value is None:
            continue
        if isinstance(value, bool):
            raise ValueError(f"Rate for {code} is not a number: {value!r}")
        try:
            rate = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"Rate for {code} is not a number: {value!r}")
        if not math.isfinite(rate) or rate <= 0:
            raise ValueError(f"Rate for {code} is out of range: {value!r}")
        filtered[code] = rate
    filtered["USD"] = 1.0
    return filtered


# =============================================================================
# FREE API
# =============================================================================

class FreeApiRatesProvider:
    """Live USD rates from the public exchange-rate API."""

    name = SOURCE_FREE_API

    def __init__(
            self,
            api_url: str,
            timeout: float = FX_API_TIMEOUT_SECONDS,
            http_client: httpx.Client | None = None,
    ) -> None:
        self._api_url = api_url
        self._timeout = timeout
        self._http_client = http_client

    def fetch(self, db: Session) -> RatesResult:
        client = self._http_client or httpx.Client(timeout=self._timeout)
        try:
            response = client.get(self._api_url, headers={"Content-Type": "application/json"})
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RateProviderError(self.name, f"Free rates API unavailable: {e}")
        finally:
            if self._http_client is None:
                client.close()

        raw = body.get("rates") if isinstance(body, dict) else None
        if not isinstance(raw, dict):
            raise RateProviderError(self.name, "Response has no rates object")

        try:
            rates = filter_to_required(raw)
        except ValueError as e:
            raise RateProviderError(self.name, f"Invalid rates in response: {e}")

        if len(rates) != len(REQUIRED_CURRENCIES):
            missing = sorted(set(REQUIRED_CURRENCIES) - set(rates))
            raise RateProviderError(self.name, f"Missing required currencies: {', '.join(missing)}")

        return RatesResult(rates=rates, source=self.name, age_days=0)


# =============================================================================
# DATABASE
# =============================================================================

class DatabaseRatesProvider:
    """
    Latest stored rate per currency.

    ageDays reports the oldest rate_date actually used, so a partially stale
    set is reported as stale.
    """

    name = SOURCE_DATABASE

    def __init__(self, today: Callable[[], date] | None = None) -> None:
        self._today = today or (lambda: datetime.now(timezone.utc).date())

    def fetch(self, db: Session) -> RatesResult:
        latest_dates = (
            select(
                CurrencyExchangeRate.currency_code,
                func.max(CurrencyExchangeRate.rate_date).label("rate_date"),
            )
            .where(CurrencyExchangeRate.currency_code.in_(REQUIRED_CURRENCIES))
            .group_by(CurrencyExchangeRate.currency_code)
            .subquery()
        )
        try:
            rows = db.execute(
                select(
                    CurrencyExchangeRate.currency_code,
                    CurrencyExchangeRate.rate,
                    CurrencyExchangeRate.rate_date,
                ).join(
                    latest_dates,
                    (CurrencyExchangeRate.currency_code == latest_dates.c.currency_code)
                    & (CurrencyExchangeRate.rate_date == latest_dates.c.rate_date),
                )
            ).all()
        except Exception as e:
            raise RateProviderError(self.name, f"Failed to read stored rates: {e}")

        latest: dict[str, tuple[Any, date]] = {}
        for code, rate, rate_date in rows:
            latest.setdefault(code, (rate, rate_date))

        if not latest:
            raise RateProviderError(self.name, "No rates stored")

        try:
            rates = filter_to_required({code: rate for code, (rate, _) in latest.items()})
        except ValueError as e:
            raise RateProviderError(self.name, f"Invalid stored rates: {e}")

        oldest = min(rate_date for _, rate_date in latest.values())
        age_days = (self._today() - oldest).days
        logger.debug(f"Loaded {len(latest)} stored currency rates (oldest {oldest}, {age_days} days)")

        return RatesResult(rates=rates, source=self.name, age_days=age_days)


# =============================================================================
# STATIC
# =============================================================================

class StaticRatesProvider:
    """Hard-coded last-resort table."""

    name = SOURCE_STATIC

    def fetch(self, db: Session) -> RatesResult:
        return RatesResult(rates=dict(STATIC_FALLBACK_RATES), source=self.name, age_days=None)
