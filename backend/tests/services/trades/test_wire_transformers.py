# backend/tests/services/trades/test_wire_transformers.py
"""
Tests for the stored-trade -> analyzer wire format transformers.

This module tests:
- Spot and futures wire records
- Routing by account type
- Primary currency and account type descriptions
- Trade statistics
"""

from datetime import datetime, timezone
from decimal import Decimal

from tradeclarity.models import AccountType, Trade, TradeSide
from tradeclarity.services.trades.transformers import (
    build_analysis_input,
    compute_trade_stats,
    describe_account_type,
    primary_currency_for,
    split_wire_records,
    to_futures_wire,
    to_spot_wire,
)


JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
JAN_2 = datetime(2024, 1, 2, tzinfo=timezone.utc)


def make_trade(**fields) -> Trade:
    values = {
        "exchange": "binance",
        "symbol": "BTCUSDT",
        "side": TradeSide.BUY.value,
        "type": "LIMIT",
        "account_type": AccountType.SPOT.value,
        "quantity": Decimal("0.0100"),
        "price": Decimal("50000.00"),
        "quote_quantity": Decimal("500.00"),
        "commission": Decimal("0.1"),
        "commission_asset": "USDT",
        "trade_time": JAN_1,
        "trade_id": "123",
        "order_id": "456",
    }
    values.update(fields)
    return Trade(**values)


# =============================================================================
# WIRE RECORD TESTS
# =============================================================================

class TestSpotWire:
    """Tests for to_spot_wire()."""

    def test_amounts_are_plain_strings(self):
        record = to_spot_wire(make_trade())

        assert record["qty"] == "0.01"
        assert record["price"] == "50000"
        assert record["quoteQty"] == "500"
        assert record["commission"] == "0.1"

    def test_flags_and_ids(self):
        record = to_spot_wire(make_trade())

        assert record["isBuyer"] is True
        assert record["isMaker"] is True
        assert record["time"] == 1704067200000
        assert record["id"] == "123"
        assert record["orderId"] == "456"
        assert record["accountType"] == "SPOT"

    def test_sell_market_order(self):
        record = to_spot_wire(make_trade(side=TradeSide.SELL.value, type="MARKET"))

        assert record["isBuyer"] is False
        assert record["isMaker"] is False

    def test_naive_trade_time_is_utc(self):
        record = to_spot_wire(make_trade(trade_time=datetime(2024, 1, 1)))

        assert record["time"] == 1704067200000


class TestFuturesWire:
    """Tests for to_futures_wire()."""

    def test_income_from_quote_quantity(self):
        trade = make_trade(
            account_type=AccountType.FUTURES.value,
            side=TradeSide.INCOME.value,
            type="REALIZED_PNL",
            quantity=Decimal("0"),
            price=Decimal("0"),
            quote_quantity=Decimal("-12.50"),
            trade_id="789_REALIZED_PNL",
        )

        record = to_futures_wire(trade)

        assert record["income"] == "-12.5"
        assert record["incomeType"] == "REALIZED_PNL"
        assert record["tranId"] == "789_REALIZED_PNL"
        assert record["asset"] == "USDT"


class TestSplitWireRecords:
    """Tests for split_wire_records()."""

    def test_routes_by_account_type(self):
        spot = make_trade()
        futures = make_trade(account_type=AccountType.FUTURES.value, type="FUNDING_FEE")

        spot_records, futures_records = split_wire_records([spot, futures])

        assert len(spot_records) == 1
        assert len(futures_records) == 1
        assert futures_records[0]["incomeType"] == "FUNDING_FEE"


# =============================================================================
# METADATA TESTS
# =============================================================================

class TestMetadataHelpers:
    """Tests for currency and account type helpers."""

    def test_inr_when_any_inr_exchange_present(self):
        assert primary_currency_for(["binance", "coindcx"]) == "INR"
        assert primary_currency_for(["binance"]) == "USD"
        assert primary_currency_for([]) == "USD"

    def test_describe_account_type(self):
        assert describe_account_type(3, 2) == "MIXED"
        assert describe_account_type(3, 0) == "SPOT"
        assert describe_account_type(0, 2) == "FUTURES"

    def test_build_analysis_input(self):
        data = build_analysis_input([make_trade(), make_trade(exchange="coindcx", trade_id="2")])

        assert data["futuresPositions"] == []
        assert data["metadata"]["exchanges"] == ["binance", "coindcx"]
        assert data["metadata"]["primaryCurrency"] == "INR"
        assert "USD" in data["metadata"]["availableCurrencies"]


class TestComputeTradeStats:
    """Tests for compute_trade_stats()."""

    def test_counts_and_range(self):
        trades = [
            make_trade(trade_time=JAN_2),
            make_trade(trade_time=JAN_1, account_type=AccountType.FUTURES.value),
        ]

        stats = compute_trade_stats(trades)

        assert stats["totalTrades"] == 2
        assert stats["spotTrades"] == 1
        assert stats["futuresIncome"] == 1
        assert stats["oldestTrade"] == JAN_1.isoformat()
        assert stats["newestTrade"] == JAN_2.isoformat()

    def test_empty(self):
        stats = compute_trade_stats([])

        assert stats["totalTrades"] == 0
        assert stats["oldestTrade"] is None
