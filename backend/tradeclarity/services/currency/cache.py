# backend/tradeclarity/services/currency/cache.py
"""In-process cache of the last resolved rate set."""

import threading
import time
from collections.abc import Callable

from tradeclarity.services.constants import RATES_CACHE_TTL_SECONDS
from tradeclarity.services.currency.providers import RatesResult


class RatesCache:
    """
    Single-slot TTL cache for RatesResult.

    Owned by the CurrencyRateService singleton rather than living at module
    level, so tests get a fresh cache with their own clock.
    """

    def __init__(
            self,
            ttl_seconds: int = RATES_CACHE_TTL_SECONDS,
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._value: RatesResult | None = None
        self._stored_at: float | None = None

    def get(self) -> RatesResult | None:
        with self._lock:
            if self._value is None or self._stored_at is None:
                return None
            if self._clock() - self._stored_at >= self._ttl:
                self._value = None
                self._stored_at = None
                return None
            return self._value

    def set(self, value: RatesResult) -> None:
        with self._lock:
            self._value = value
            self._stored_at = self._clock()

    def clear(self) -> None:
        with self._lock:
            self._value = None
            self._stored_at = None
