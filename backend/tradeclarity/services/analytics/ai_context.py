# backend/tradeclarity/services/analytics/ai_context.py
"""
Structured trading context for the AI assistant.

A compact, JSON-serializable digest of the analytics document, cached next
to it so the chat assistant never has to re-run analysis:

    {summary, performance, timePatterns, symbols, behavioral,
     accountBreakdown, recentTrades, portfolio}
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from tradeclarity.utils.date_utils import parse_trade_timestamp

DAYS_PER_MONTH = 30
TOP_SYMBOLS = 5
TOP_HOLDINGS = 10
RECENT_TRADES = 30


def _trading_months(oldest: datetime | None, now: datetime) -> int:
    if oldest is None:
        return 1
    return max(1, (now - oldest).days // DAYS_PER_MONTH)


def _round(value: Any, digits: int) -> float | None:
    if value is None:
        return None
    return round(float(value or 0), digits)


def _summary(trades_stats: dict[str, Any], now: datetime) -> dict[str, Any]:
    oldest = parse_trade_timestamp(trades_stats.get("oldestTrade"))
    return {
        "totalTrades": trades_stats.get("totalTrades", 0),
        "spotTrades": trades_stats.get("spotTrades", 0),
        "futuresTrades": trades_stats.get("futuresIncome", 0),
        "tradingDurationMonths": _trading_months(oldest, now),
        "tradingSince": oldest.date().isoformat() if oldest else None,
    }


def _performance(analytics: dict[str, Any] | None) -> dict[str, Any]:
    if not analytics:
        return {"dataAvailable": False}
    return {
        "totalPnL": analytics.get("totalPnL", 0),
        "winRate": _round(analytics.get("winRate"), 1),
        "profitFactor": _round(analytics.get("profitFactor"), 2),
        "avgWin": analytics.get("avgWin", 0),
        "avgLoss": analytics.get("avgLoss", 0),
        "largestWin": analytics.get("largestWin", 0),
        "largestLoss": analytics.get("largestLoss", 0),
        "totalCommission": analytics.get("totalCommission", 0),
        "maxConsecutiveWins": analytics.get("maxConsecutiveWins", 0),
        "maxConsecutiveLosses": analytics.get("maxConsecutiveLosses", 0),
        "winningTrades": analytics.get("winningTrades", 0),
        "losingTrades": analytics.get("losingTrades", 0),
        "completedTrades": analytics.get("completedTrades", 0),
    }


def _time_patterns(analytics: dict[str, Any] | None) -> dict[str, Any]:
    if not analytics:
        return {}
    return {
        "bestDays": [
            {
                "day": day.get("day"),
                "pnl": day.get("pnl", 0),
                "winRate": _round(day.get("winRate"), 1),
                "count": day.get("count", 0),
            }
            for day in (analytics.get("dayPerformance") or [])[:3]
        ],
        "bestHours": [
            {"hour": hour.get("hour"), "pnl": hour.get("pnl", 0), "trades": hour.get("trades", 0)}
            for hour in (analytics.get("hourPerformance") or [])[:3]
        ],
        "monthlyTrend": [
            {"month": month.get("month"), "pnl": month.get("pnl", 0)}
            for month in (analytics.get("monthlyData") or [])[-12:]
        ],
    }


def _symbols(all_trades: list[dict[str, Any]]) -> dict[str, Any]:
    stats: dict[str, dict[str, Any]] = {}
    for trade in all_trades:
        symbol = trade.get("symbol")
        if not symbol:
            continue
        entry = stats.setdefault(symbol, {"count": 0, "totalPnL": 0.0, "wins": 0, "losses": 0})
        pnl = trade.get("realizedPnl") or 0
        entry["count"] += 1
        entry["totalPnL"] += pnl
        if pnl > 0:
            entry["wins"] += 1
        elif pnl < 0:
            entry["losses"] += 1

    def describe(symbol: str, entry: dict[str, Any]) -> dict[str, Any]:
        return {
            "symbol": symbol,
            "count": entry["count"],
            "totalPnL": entry["totalPnL"],
            "winRate": round(entry["wins"] / entry["count"] * 100, 1),
            "avgPnL": round(entry["totalPnL"] / entry["count"], 2),
        }

    def top(key: Callable[[tuple[str, dict[str, Any]]], Any]) -> list[dict[str, Any]]:
        ranked = sorted(stats.items(), key=key, reverse=True)[:TOP_SYMBOLS]
        return [describe(symbol, entry) for symbol, entry in ranked]

    return {
        "mostTraded": top(lambda item: item[1]["count"]),
        "bestPerforming": top(lambda item: item[1]["totalPnL"]),
    }


def _behavioral(analytics: dict[str, Any] | None) -> dict[str, Any]:
    if not analytics:
        return {}
    behavioral = {
        "maxConsecutiveWins": analytics.get("maxConsecutiveWins", 0),
        "maxConsecutiveLosses": analytics.get("maxConsecutiveLosses", 0),
    }
    if analytics.get("tradeSizes"):
        behavioral["positionSizing"] = dict(analytics["tradeSizes"])
    psychology = analytics.get("psychology") or {}
    if "disciplineScore" in psychology:
        behavioral["disciplineScore"] = psychology["disciplineScore"]
    return behavioral


def _account_breakdown(analytics: dict[str, Any] | None) -> dict[str, Any]:
    if not analytics:
        return {}
    breakdown = {}
    for prefix in ("spot", "futures"):
        if f"{prefix}WinRate" not in analytics:
            continue
        breakdown[prefix] = {
            "totalPnL": analytics.get(f"{prefix}PnL", 0),
            "winRate": _round(analytics.get(f"{prefix}WinRate"), 1),
            "completedTrades": analytics.get(f"{prefix}CompletedTrades", 0),
            "wins": analytics.get(f"{prefix}Wins", 0),
            "losses": analytics.get(f"{prefix}Losses", 0),
        }
    return breakdown


def _recent_trades(all_trades: list[dict[str, Any]]) -> list[dict[str, Any]]:
    ordered = sorted(all_trades, key=lambda t: t.get("timestamp") or "", reverse=True)
    return [
        {
            "timestamp": trade.get("timestamp"),
            "symbol": trade.get("symbol"),
            "realizedPnl": trade.get("realizedPnl") or 0,
            "type": trade.get("type"),
            "side": trade.get("side"),
            "exchange": trade.get("exchange"),
        }
        for trade in ordered[:RECENT_TRADES]
    ]


def _portfolio(portfolio: dict[str, Any] | None) -> dict[str, Any]:
    if not portfolio:
        return {"available": False}

    holdings = portfolio.get("holdings") or []
    top_holdings = sorted(holdings, key=lambda h: h.get("usdValue") or 0, reverse=True)[:TOP_HOLDINGS]
    return {
        "totalPortfolioValue": portfolio.get("totalPortfolioValue") or 0,
        "totalSpotValue": portfolio.get("totalSpotValue") or 0,
        "totalFuturesValue": portfolio.get("totalFuturesValue") or 0,
        "snapshotTime": portfolio.get("snapshotTime"),
        "topHoldings": [
            {
                "asset": h.get("asset") or h.get("currency") or "UNKNOWN",
                "quantity": h.get("quantity") or h.get("qty") or 0,
                "usdValue": h.get("usdValue") or 0,
                "exchange": h.get("exchange") or "unknown",
            }
            for h in top_holdings
        ],
        "totalHoldingsCount": len(holdings),
    }


def format_structured_context(
        trades_stats: dict[str, Any],
        analytics: dict[str, Any] | None,
        all_trades: list[dict[str, Any]] | None,
        portfolio: dict[str, Any] | None,
        now: datetime | None = None,
) -> dict[str, Any]:
    """
    Build the AI context document.

    Args:
        trades_stats: Output of compute_trade_stats()
        analytics: Analyzer output, or None when unavailable
        all_trades: analytics["allTrades"]
        portfolio: Aggregated portfolio, or None when it could not be built
        now: Reference time for the trading duration
    """
    now = now or datetime.now(timezone.utc)
    all_trades = all_trades or []

    return {
        "summary": _summary(trades_stats, now),
        "performance": _performance(analytics),
        "timePatterns": _time_patterns(analytics),
        "symbols": _symbols(all_trades),
        "behavioral": _behavioral(analytics),
        "accountBreakdown": _account_breakdown(analytics),
        "recentTrades": _recent_trades(all_trades),
        "portfolio": _portfolio(portfolio),
    }
