# backend/tradeclarity/services/portfolio/__init__.py
"""Portfolio aggregation across exchange connections."""

from tradeclarity.services.portfolio.aggregator import (
    PortfolioAggregator,
    aggregate_snapshots,
    dedupe_holdings,
)

__all__ = [
    "PortfolioAggregator",
    "aggregate_snapshots",
    "dedupe_holdings",
]
