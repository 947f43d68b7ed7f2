# backend/tests/services/trades/test_snaptrade_activities.py
"""
Tests for the SnapTrade payload transformers.

This module tests:
- BUY/SELL activities become aggregator-format trades
- Non-trade activities are dropped
- Quote quantity, fee and side rules
- Synthesized trade ids
- Holdings -> snapshot metadata
"""

import pytest

from tradeclarity.services.trades.snaptrade import (
    group_by_account,
    holdings_to_snapshot,
    transform_activities,
    transform_activity,
)


def activity(**fields) -> dict:
    base = {
        "id": "act-1",
        "type": "BUY",
        "symbol": {"symbol": "AAPL", "description": "Apple Inc."},
        "units": 10,
        "price": 150.25,
        "amount": -1502.5,
        "fee": -1.0,
        "currency": {"code": "USD"},
        "trade_date": "2024-03-01T14:30:00Z",
        "institution": "Robinhood",
        "account": {"id": "acc-1", "name": "Individual"},
    }
    base.update(fields)
    return base


# =============================================================================
# ACTIVITY TESTS
# =============================================================================

class TestTransformActivity:
    """Tests for transform_activity()."""

    def test_buy_activity(self):
        trade = transform_activity(activity())

        assert trade["symbol"] == "AAPL"
        assert trade["side"] == "BUY"
        assert trade["isBuyer"] is True
        assert trade["quantity"] == "10"
        assert trade["price"] == "150.25"
        assert trade["quote_quantity"] == "1502.5"
        assert trade["commission"] == "1"
        assert trade["commission_asset"] == "USD"
        assert trade["trade_id"] == "act-1"
        assert trade["timestamp"] == 1709303400000
        assert trade["brokerage"] == "Robinhood"
        assert trade["account_id"] == "acc-1"
        assert trade["exchange"] == "snaptrade"

    def test_sell_with_negative_units_uses_absolute_quantity(self):
        trade = transform_activity(activity(type="SELL", units=-5, amount=800))

        assert trade["side"] == "SELL"
        assert trade["isBuyer"] is False
        assert trade["quantity"] == "5"
        assert trade["units"] == "-5"

    def test_quote_quantity_falls_back_to_price_times_units(self):
        trade = transform_activity(activity(amount=None, units=2, price=10))

        assert trade["quote_quantity"] == "20"

    @pytest.mark.parametrize("activity_type", ["DIVIDEND", "CONTRIBUTION", "FEE", "", None])
    def test_non_trade_activities_are_dropped(self, activity_type):
        assert transform_activity(activity(type=activity_type)) is None

    def test_lowercase_type_is_accepted(self):
        assert transform_activity(activity(type="buy"))["side"] == "BUY"

    def test_zero_units_are_still_emitted(self):
        trade = transform_activity(activity(units=0, amount=0, price=0))

        assert trade is not None
        assert trade["quantity"] == "0"

    def test_missing_id_gets_synthesized_id(self):
        trade = transform_activity(activity(id=None))

        assert trade["trade_id"].startswith("snaptrade-")

    def test_string_symbol_and_missing_institution(self):
        trade = transform_activity(activity(
            symbol="MSFT",
            institution=None,
            account={"id": "acc-2", "institution_name": "Fidelity"},
        ))

        assert trade["symbol"] == "MSFT"
        assert trade["brokerage"] == "Fidelity"

    def test_settlement_date_used_when_trade_date_missing(self):
        trade = transform_activity(activity(trade_date=None, settlement_date="2024-03-04"))

        assert trade["trade_time"].startswith("2024-03-04")


class TestTransformActivities:
    """Tests for transform_activities() and group_by_account()."""

    def test_filters_non_trades(self):
        trades = transform_activities([activity(), activity(id="a2", type="DIVIDEND")])

        assert [t["trade_id"] for t in trades] == ["act-1"]

    def test_non_list_input(self):
        assert transform_activities(None) == []

    def test_group_by_account(self):
        trades = transform_activities([
            activity(id="a1"),
            activity(id="a2", account={"id": "acc-2"}),
            activity(id="a3", account=None),
        ])

        grouped = group_by_account(trades)

        assert {key: len(value) for key, value in grouped.items()} == {"acc-1": 1, "acc-2": 1, "unknown": 1}


# =============================================================================
# HOLDINGS TESTS
# =============================================================================

class TestHoldingsToSnapshot:
    """Tests for holdings_to_snapshot()."""

    def test_positions_and_cash(self):
        snapshot = holdings_to_snapshot({
            "account": {"id": "acc-1", "name": "Individual"},
            "positions": [
                {
                    "symbol": {"symbol": {"symbol": "AAPL", "description": "Apple Inc."}},
                    "units": 10,
                    "price": 150,
                    "average_purchase_price": 120,
                    "currency": {"code": "USD"},
                },
            ],
            "balances": [{"cash": 500, "currency": {"code": "USD"}}],
        })

        assert snapshot["totalSpotValue"] == 1500.0
        assert snapshot["totalPortfolioValue"] == 2000.0
        assert snapshot["cash"] == 500.0
        assert snapshot["primaryCurrency"] == "USD"
        holding = snapshot["spotHoldings"][0]
        assert holding["asset"] == "AAPL"
        assert holding["name"] == "Apple Inc."
        assert holding["usdValue"] == 1500.0
        assert holding["averageCost"] == 120.0

    def test_without_account_returns_none(self):
        assert holdings_to_snapshot({"positions": []}) is None
        assert holdings_to_snapshot(None) is None
