# backend/tradeclarity/services/protocols.py
"""
Protocol interfaces for service dependency injection.

Using typing.Protocol enables structural subtyping:
- Existing classes satisfy protocols without modification
- Test mocks work without explicit inheritance
- Clear documentation of required interfaces
"""

from __future__ import annotations

from typing import Any, Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from tradeclarity.services.currency.providers import RatesResult


class TradeAnalyzerProtocol(Protocol):
    """
    Interface required by AnalyticsCacheService.

    Takes the analyzer input built from a user's trades
    ({spotTrades, futuresIncome, futuresPositions, metadata}) and returns a
    JSON-serializable analytics document containing at least `allTrades`
    and `psychology`.
    """

    def analyze(self, data: dict[str, Any]) -> dict[str, Any]:
        ...


class RatesProviderProtocol(Protocol):
    """Interface of one link in the currency rate provider chain."""

    @property
    def name(self) -> str:
        ...

    def fetch(self, db: Session) -> RatesResult:
        """Return a usable rate set or raise RateProviderError."""
        ...
