# backend/tests/services/portfolio/test_portfolio_aggregator.py
"""
Tests for portfolio aggregation.

This module tests:
- Latest snapshot per connection
- Holding deduplication (max usdValue wins, never summed)
- Conversion of non-USD snapshots
- Inactive connections and unconvertible snapshots are left out
"""

from datetime import datetime, timezone

import pytest

from tradeclarity.services.portfolio import PortfolioAggregator, aggregate_snapshots, dedupe_holdings
from tradeclarity.services.portfolio.aggregator import latest_per_connection, usd_rate_for
from tests.conftest import create_connection, create_snapshot, create_user


JAN = datetime(2024, 1, 1, tzinfo=timezone.utc)
FEB = datetime(2024, 2, 1, tzinfo=timezone.utc)


@pytest.fixture
def user(db):
    return create_user(db)


@pytest.fixture
def aggregator() -> PortfolioAggregator:
    return PortfolioAggregator()


# =============================================================================
# HELPER TESTS
# =============================================================================

class TestHelpers:
    """Tests for the pure aggregation helpers."""

    def test_dedupe_keeps_larger_value(self):
        holdings = [
            {"asset": "BTC", "exchange": "binance", "usdValue": 100},
            {"asset": "btc", "exchange": "Binance", "usdValue": 300},
            {"asset": "BTC", "exchange": "coindcx", "usdValue": 50},
        ]

        result = dedupe_holdings(holdings)

        assert sorted(h["usdValue"] for h in result) == [50, 300]

    def test_usd_rate(self):
        assert usd_rate_for(None) == 1
        assert usd_rate_for("inr") * 87 == pytest.approx(1)

    def test_unknown_currency_rate(self):
        with pytest.raises(ValueError):
            usd_rate_for("XYZ")

    def test_latest_per_connection(self, db, user):
        connection = create_connection(db, user)
        create_snapshot(db, user, connection, holdings=[], total="1", snapshot_time=JAN)
        newest = create_snapshot(db, user, connection, holdings=[], total="2", snapshot_time=FEB)
        old = create_snapshot(db, user, connection, holdings=[], total="3", snapshot_time=JAN)

        assert latest_per_connection([old, newest]) == [newest]

    def test_empty_input(self):
        assert aggregate_snapshots([]) is None


# =============================================================================
# AGGREGATOR TESTS
# =============================================================================

class TestPortfolioAggregator:
    """Tests for PortfolioAggregator.get_portfolio()."""

    def test_no_connections(self, db, aggregator, user):
        assert aggregator.get_portfolio(db, user.id) is None

    def test_later_snapshot_supersedes_earlier(self, db, aggregator, user):
        connection = create_connection(db, user)
        create_snapshot(db, user, connection,
                        holdings=[{"asset": "ETH", "quantity": 1, "usdValue": 2000}],
                        total="2000", snapshot_time=JAN)
        create_snapshot(db, user, connection,
                        holdings=[{"asset": "BTC", "quantity": 0.1, "usdValue": 5000}],
                        total="5000", snapshot_time=FEB)

        portfolio = aggregator.get_portfolio(db, user.id)

        assert [h["asset"] for h in portfolio["holdings"]] == ["BTC"]
        assert portfolio["totalPortfolioValue"] == 5000.0
        assert portfolio["snapshotCount"] == 1
        assert portfolio["snapshotTime"] == FEB.isoformat()

    def test_combines_connections(self, db, aggregator, user):
        binance = create_connection(db, user)
        coindcx = create_connection(db, user, exchange="coindcx")
        create_snapshot(db, user, binance,
                        holdings=[{"asset": "BTC", "quantity": 0.1, "usdValue": 5000}], total="5000")
        create_snapshot(db, user, coindcx, exchange="coindcx", primary_currency="INR",
                        holdings=[{"asset": "BTC", "quantity": 0.01, "price": 8700000, "usdValue": 87000}],
                        total="87000")

        portfolio = aggregator.get_portfolio(db, user.id)

        by_exchange = {h["exchange"]: h for h in portfolio["holdings"]}
        assert by_exchange["coindcx"]["usdValue"] == pytest.approx(1000)
        assert by_exchange["coindcx"]["originalCurrency"] == "INR"
        assert by_exchange["binance"]["originalCurrency"] == "USD"
        assert portfolio["totalPortfolioValue"] == pytest.approx(6000)
        assert portfolio["totalSpotValue"] == pytest.approx(6000)

    def test_inactive_connection_excluded(self, db, aggregator, user):
        active = create_connection(db, user)
        inactive = create_connection(db, user, exchange="coindcx", is_active=False)
        create_snapshot(db, user, active, holdings=[{"asset": "BTC", "usdValue": 10}], total="10")
        create_snapshot(db, user, inactive, holdings=[{"asset": "ETH", "usdValue": 99}], total="99")

        portfolio = aggregator.get_portfolio(db, user.id)

        assert portfolio["totalPortfolioValue"] == 10.0

    def test_unconvertible_snapshot_is_skipped(self, db, aggregator, user):
        good = create_connection(db, user)
        bad = create_connection(db, user, exchange="coindcx")
        create_snapshot(db, user, good, holdings=[{"asset": "BTC", "usdValue": 10}], total="10")
        create_snapshot(db, user, bad, primary_currency="XYZ",
                        holdings=[{"asset": "ETH", "usdValue": 99}], total="99")

        portfolio = aggregator.get_portfolio(db, user.id)

        assert portfolio["snapshotCount"] == 1
        assert portfolio["totalPortfolioValue"] == 10.0

    def test_total_falls_back_to_snapshot_totals(self, db, aggregator, user):
        connection = create_connection(db, user)
        create_snapshot(db, user, connection, holdings=[], total="750")

        portfolio = aggregator.get_portfolio(db, user.id)

        assert portfolio["holdings"] == []
        assert portfolio["totalPortfolioValue"] == 750.0
