# backend/tradeclarity/services/currency/__init__.py
"""
Currency rates (units per 1 USD) with a live → database → static fallback chain.

Usage:
    from tradeclarity.services.currency import CurrencyRateService, FreeApiRatesProvider

    service = CurrencyRateService(providers=[FreeApiRatesProvider(url), DatabaseRatesProvider()])
    body = service.get_rates(db)
"""

from tradeclarity.services.currency.cache import RatesCache
from tradeclarity.services.currency.providers import (
    DatabaseRatesProvider,
    FreeApiRatesProvider,
    RatesResult,
    StaticRatesProvider,
    filter_to_required,
)
from tradeclarity.services.currency.service import CurrencyRateService, store_daily_rates

__all__ = [
    "CurrencyRateService",
    "RatesCache",
    "RatesResult",
    "FreeApiRatesProvider",
    "DatabaseRatesProvider",
    "StaticRatesProvider",
    "filter_to_required",
    "store_daily_rates",
]
