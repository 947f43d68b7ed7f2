# backend/tradeclarity/services/currency/service.py
"""
Currency Rate Service.

Resolves USD-based rates through an ordered provider chain and caches the
winning set for 15 minutes:

    FreeApiRatesProvider ──fail──► DatabaseRatesProvider ──fail──► StaticRatesProvider

It also owns the daily snapshot job that keeps the database tier useful:
store_daily_rates() fetches the live set and upserts one row per currency
for the current UTC date.

Usage:
    service = CurrencyRateService(providers=[...], cache=RatesCache())
    body = service.get_rates(db)
    # {"success": True, "rates": {...}, "source": "free-api", "ageDays": 0, "cached": False}
"""

import logging
import math
from collections.abc import Callable, Sequence
from datetime import date, datetime, timezone
from typing import Any

import httpx
from sqlalchemy.orm import Session

from tradeclarity.database import upsert_statement
from tradeclarity.models import CurrencyExchangeRate
from tradeclarity.services.constants import FX_API_TIMEOUT_SECONDS, REQUIRED_CURRENCIES
from tradeclarity.services.currency.cache import RatesCache
from tradeclarity.services.currency.providers import RatesResult, StaticRatesProvider
from tradeclarity.services.exceptions import RateProviderError
from tradeclarity.services.protocols import RatesProviderProtocol

logger = logging.getLogger(__name__)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class CurrencyRateService:
    """
    Rate lookup with a fallback chain and an in-process cache.

    The chain always ends in a provider that cannot fail; if the caller
    passes a chain without one, StaticRatesProvider is appended.
    """

    def __init__(
            self,
            providers: Sequence[RatesProviderProtocol],
            cache: RatesCache | None = None,
    ) -> None:
        chain = list(providers)
        if not chain or not isinstance(chain[-1], StaticRatesProvider):
            chain.append(StaticRatesProvider())
        self._providers = chain
        self._cache = cache or RatesCache()

    @property
    def cache(self) -> RatesCache:
        return self._cache

    def resolve(self, db: Session) -> tuple[RatesResult, bool]:
        """
        Current rate set.

        Returns:
            (result, served_from_cache)
        """
        cached = self._cache.get()
        if cached is not None:
            logger.debug(f"Using cached currency rates ({cached.source})")
            return cached, True

        for provider in self._providers:
            try:
                result = provider.fetch(db)
            except RateProviderError as e:
                logger.warning(f"Currency rate provider '{provider.name}' failed: {e.message}")
                continue

            logger.info(
                f"Currency rates resolved from {result.source} "
                f"({len(result.rates)} currencies, age: {result.age_days} days)"
            )
            self._cache.set(result)
            return result, False

        # Unreachable while the chain ends in StaticRatesProvider
        raise RateProviderError("currency", "No currency rate provider succeeded")

    def get_rates(self, db: Session) -> dict[str, Any]:
        """Response body of the currency-rate endpoint."""
        result, cached = self.resolve(db)
        return {
            "success": True,
            "rates": result.rates,
            "source": result.source,
            "ageDays": result.age_days,
            "cached": cached,
        }


# =============================================================================
# DAILY SNAPSHOT JOB
# =============================================================================

def _is_valid_rate(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value) and value > 0


def store_daily_rates(
        db: Session,
        api_url: str,
        http_client: httpx.Client | None = None,
        today: Callable[[], date] = _utc_today,
) -> int:
    """
    Fetch the live rate set and upsert it for today's UTC date.

    Every currency the API returns is stored (readers filter to the
    required set). Nothing is stored unless all required currencies are
    present with finite positive rates.

    Returns:
        Number of rows written

    Raises:
        RateProviderError: The API failed or returned an incomplete set
    """
    client = http_client or httpx.Client(timeout=FX_API_TIMEOUT_SECONDS * 2)
    try:
        response = client.get(api_url)
        response.raise_for_status()
        body = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise RateProviderError("free-api", f"Free rates API unavailable: {e}")
    finally:
        if http_client is None:
            client.close()

    raw = body.get("rates") if isinstance(body, dict) else None
    if not isinstance(raw, dict):
        raise RateProviderError("free-api", "Response has no rates object")

    rates = {**raw, "USD": 1.0}
    missing = [code for code in REQUIRED_CURRENCIES if not _is_valid_rate(rates.get(code))]
    if missing:
        raise RateProviderError("free-api", f"Missing required currencies: {', '.join(missing)}")

    rate_date = today()
    now = datetime.now(timezone.utc)
    rows = [
        {"currency_code": code, "rate": value, "rate_date": rate_date, "created_at": now, "updated_at": now}
        for code, value in rates.items()
        if isinstance(code, str) and len(code) == 3 and _is_valid_rate(value)
    ]

    stmt = upsert_statement(db, CurrencyExchangeRate).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=["currency_code", "rate_date"],
        set_={"rate": stmt.excluded.rate, "updated_at": now},
    )

    try:
        db.execute(stmt)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to store currency rates for {rate_date}: {e}", exc_info=True)
        raise

    logger.info(f"Stored {len(rows)} currency rates for {rate_date}")
    return len(rows)
