# backend/tests/services/analytics/test_trade_analyzer.py
"""
Tests for the default TradeAnalyzer and the AI context formatter.

This module tests:
- Average-cost spot P&L (commission share, oversell, external sells)
- Futures income aggregation (realized vs. commission and funding)
- Outcome statistics (win rate, profit factor, streaks)
- Normalized trade list used by the dashboard
- format_structured_context() sections
"""

import json
from datetime import datetime, timezone

import pytest

from tradeclarity.services.analytics import TradeAnalyzer, format_structured_context


JAN_1 = 1704067200000  # 2024-01-01T00:00:00Z (Monday)
HOUR = 3600 * 1000


def spot(symbol: str, is_buyer: bool, qty: str, price: str, time: int, commission: str = "0") -> dict:
    return {
        "symbol": symbol,
        "qty": qty,
        "price": price,
        "quoteQty": str(float(qty) * float(price)),
        "commission": commission,
        "commissionAsset": "USDT",
        "isBuyer": is_buyer,
        "isMaker": False,
        "time": time,
        "id": f"{symbol}-{time}",
        "exchange": "binance",
    }


def income(symbol: str, amount: str, income_type: str, time: int) -> dict:
    return {
        "symbol": symbol,
        "income": amount,
        "asset": "USDT",
        "incomeType": income_type,
        "time": time,
        "tranId": f"{symbol}-{time}",
        "exchange": "binance",
    }


def analyzer_input(spot_trades=None, futures_income=None) -> dict:
    return {
        "spotTrades": spot_trades or [],
        "futuresIncome": futures_income or [],
        "futuresPositions": [],
        "metadata": {"primaryCurrency": "USD", "exchanges": ["binance"]},
    }


@pytest.fixture
def analyzer() -> TradeAnalyzer:
    return TradeAnalyzer()


# =============================================================================
# SPOT TESTS
# =============================================================================

class TestSpotAnalysis:
    """Tests for average-cost spot P&L."""

    def test_round_trip_realizes_profit_minus_commission(self, analyzer):
        result = analyzer.analyze(analyzer_input([
            spot("BTCUSDT", True, "1", "100", JAN_1),
            spot("BTCUSDT", False, "1", "150", JAN_1 + HOUR, commission="1"),
        ]))

        assert result["spotPnL"] == pytest.approx(49.0)
        assert result["winningTrades"] == 1
        assert result["buyTrades"] == 1
        assert result["sellTrades"] == 1
        assert result["symbols"]["BTCUSDT"]["position"] == 0.0

    def test_average_cost_across_buys(self, analyzer):
        result = analyzer.analyze(analyzer_input([
            spot("ETHUSDT", True, "1", "100", JAN_1),
            spot("ETHUSDT", True, "1", "200", JAN_1 + 1),
            spot("ETHUSDT", False, "1", "120", JAN_1 + 2),
        ]))

        # avg cost 150, sold at 120
        assert result["spotPnL"] == pytest.approx(-30.0)
        assert result["spotOpenPositions"] == [
            {"symbol": "ETHUSDT", "quantity": 1.0, "avgEntryPrice": 150.0, "costBasis": 150.0}
        ]

    def test_oversell_only_realizes_covered_quantity(self, analyzer):
        result = analyzer.analyze(analyzer_input([
            spot("SOLUSDT", True, "1", "100", JAN_1),
            spot("SOLUSDT", False, "2", "200", JAN_1 + 1),
        ]))

        assert result["spotPnL"] == pytest.approx(100.0)

    def test_sell_without_position_is_external(self, analyzer):
        result = analyzer.analyze(analyzer_input([
            spot("ADAUSDT", False, "10", "1", JAN_1),
        ]))

        assert result["spotPnL"] == 0.0
        assert result["completedTrades"] == 0
        assert result["symbols"]["ADAUSDT"]["externalSells"] == 1

    def test_trades_are_replayed_in_time_order(self, analyzer):
        result = analyzer.analyze(analyzer_input([
            spot("BTCUSDT", False, "1", "150", JAN_1 + HOUR),
            spot("BTCUSDT", True, "1", "100", JAN_1),
        ]))

        assert result["spotPnL"] == pytest.approx(50.0)


# =============================================================================
# FUTURES TESTS
# =============================================================================

class TestFuturesAnalysis:
    """Tests for futures income aggregation."""

    def test_net_pnl_includes_commission_and_funding(self, analyzer):
        result = analyzer.analyze(analyzer_input(futures_income=[
            income("BTCUSDT", "-10", "REALIZED_PNL", JAN_1),
            income("BTCUSDT", "-2", "COMMISSION", JAN_1 + 1),
            income("BTCUSDT", "-1", "FUNDING_FEE", JAN_1 + 2),
        ]))

        assert result["futuresPnL"] == pytest.approx(-13.0)
        assert result["futuresRealizedPnL"] == pytest.approx(-10.0)
        assert result["futuresCommission"] == pytest.approx(2.0)
        assert result["futuresFundingFees"] == pytest.approx(-1.0)
        assert result["futuresTrades"] == 1
        assert result["futuresLosses"] == 1

    def test_unknown_income_type_goes_to_other(self, analyzer):
        result = analyzer.analyze(analyzer_input(futures_income=[
            income("BTCUSDT", "5", "INSURANCE_CLEAR", JAN_1),
        ]))

        assert result["futuresIncomeByType"]["OTHER"] == 5.0
        assert result["futuresTrades"] == 0


# =============================================================================
# COMBINED STATISTICS TESTS
# =============================================================================

class TestOutcomeStatistics:
    """Tests for cross-account statistics."""

    @pytest.fixture
    def result(self, analyzer) -> dict:
        return analyzer.analyze(analyzer_input(
            [
                spot("BTCUSDT", True, "1", "100", JAN_1),
                spot("BTCUSDT", False, "1", "150", JAN_1 + HOUR, commission="1"),
            ],
            [
                income("ETHUSDT", "-10", "REALIZED_PNL", JAN_1 + 2 * HOUR),
                income("ETHUSDT", "-2", "COMMISSION", JAN_1 + 2 * HOUR),
            ],
        ))

    def test_totals(self, result):
        assert result["totalPnL"] == pytest.approx(37.0)
        assert result["totalTrades"] == 3
        assert result["completedTrades"] == 2
        assert result["totalCommission"] == pytest.approx(3.0)

    def test_win_rate_and_profit_factor(self, result):
        assert result["winRate"] == pytest.approx(50.0)
        assert result["profitFactor"] == pytest.approx(4.9)
        assert result["largestWin"] == pytest.approx(49.0)
        assert result["largestLoss"] == pytest.approx(-10.0)

    def test_best_symbol(self, result):
        assert result["bestSymbol"] == "BTCUSDT"

    def test_day_performance_uses_utc_weekday(self, result):
        assert {day["day"] for day in result["dayPerformance"]} == {"Mon"}

    def test_all_trades_is_time_ordered(self, result):
        kinds = [(t["type"], t["side"]) for t in result["allTrades"]]

        assert kinds == [
            ("spot", "buy"),
            ("spot", "sell"),
            ("futures", "close"),
            ("futures", "commission"),
        ]

    def test_document_is_json_serializable(self, result):
        json.dumps(result)

    def test_empty_input(self, analyzer):
        result = analyzer.analyze(analyzer_input())

        assert result["totalPnL"] == 0.0
        assert result["winRate"] == 0.0
        assert result["allTrades"] == []
        assert result["psychology"]["disciplineScore"] == 40


# =============================================================================
# AI CONTEXT TESTS
# =============================================================================

class TestFormatStructuredContext:
    """Tests for format_structured_context()."""

    NOW = datetime(2024, 7, 1, tzinfo=timezone.utc)

    def test_summary_counts_and_duration(self):
        context = format_structured_context(
            trades_stats={
                "totalTrades": 10,
                "spotTrades": 7,
                "futuresIncome": 3,
                "oldestTrade": "2024-01-01T00:00:00+00:00",
            },
            analytics=None,
            all_trades=None,
            portfolio=None,
            now=self.NOW,
        )

        assert context["summary"] == {
            "totalTrades": 10,
            "spotTrades": 7,
            "futuresTrades": 3,
            "tradingDurationMonths": 6,
            "tradingSince": "2024-01-01",
        }
        assert context["performance"] == {"dataAvailable": False}
        assert context["portfolio"] == {"available": False}

    def test_symbols_rank_by_count_and_pnl(self):
        trades = (
            [{"symbol": "BTC", "realizedPnl": 1.0, "timestamp": "2024-01-01"}] * 3
            + [{"symbol": "ETH", "realizedPnl": 50.0, "timestamp": "2024-01-02"}]
        )

        context = format_structured_context({}, {"totalPnL": 53}, trades, None, now=self.NOW)

        assert context["symbols"]["mostTraded"][0]["symbol"] == "BTC"
        assert context["symbols"]["bestPerforming"][0]["symbol"] == "ETH"
        assert context["recentTrades"][0]["symbol"] == "ETH"

    def test_portfolio_top_holdings_sorted_by_value(self):
        portfolio = {
            "totalPortfolioValue": 1500,
            "holdings": [
                {"asset": "ETH", "quantity": 1, "usdValue": 500, "exchange": "binance"},
                {"asset": "BTC", "quantity": 0.1, "usdValue": 1000, "exchange": "binance"},
            ],
        }

        context = format_structured_context({}, None, [], portfolio, now=self.NOW)

        assert [h["asset"] for h in context["portfolio"]["topHoldings"]] == ["BTC", "ETH"]
        assert context["portfolio"]["totalHoldingsCount"] == 2
