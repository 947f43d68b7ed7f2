# backend/tradeclarity/services/analytics/analyzer.py
"""
Default trade analyzer.

Consumes the analyzer input built from a user's stored trades:

    {spotTrades: [...], futuresIncome: [...], futuresPositions: [],
     metadata: {primaryCurrency, availableCurrencies, exchanges, ...}}

and produces the analytics document cached per user.

Spot P&L:
    Trades are replayed per symbol in time order with an average-cost
    position. A SELL realizes (price - avg_cost) * qty_sold minus the
    commission share of the sold quantity; selling more than the open
    position only realizes the covered part. A SELL with no open position
    (external deposit, missing history) realizes nothing.

Futures P&L:
    Every REALIZED_PNL income record is one closed trade. COMMISSION and
    FUNDING_FEE records count toward net P&L but not toward win/loss.

All arithmetic is Decimal; the returned document holds floats so it can be
stored as JSON.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from tradeclarity.utils.date_utils import from_epoch_ms, to_iso
from tradeclarity.utils.numbers import ZERO, to_decimal

logger = logging.getLogger(__name__)

WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
FUTURES_INCOME_TYPES = ("REALIZED_PNL", "COMMISSION", "FUNDING_FEE", "TRANSFER", "LIQUIDATION")

# Trade notional buckets (quote currency)
SMALL_TRADE_LIMIT = Decimal("100")
LARGE_TRADE_LIMIT = Decimal("1000")

# Five trades within 30 minutes, the first one a loss
REVENGE_WINDOW_TRADES = 5
REVENGE_WINDOW_MS = 30 * 60 * 1000

MONTHS_SHOWN = 12
HOURS_SHOWN = 3


@dataclass
class Outcome:
    """One closed trade with a win/loss result."""
    symbol: str
    time_ms: int
    pnl: Decimal
    account_type: str

    @property
    def when(self) -> datetime:
        return from_epoch_ms(self.time_ms)


def _f(value: Decimal) -> float:
    return float(value)


def _ratio(numerator: Decimal, denominator: Decimal) -> float:
    return float(numerator / denominator) if denominator else 0.0


def _pct(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0


# =============================================================================
# SPOT
# =============================================================================

@dataclass
class _SymbolPosition:
    quantity: Decimal = ZERO
    cost: Decimal = ZERO
    realized: Decimal = ZERO
    buys: int = 0
    sells: int = 0
    wins: int = 0
    losses: int = 0
    external_sells: int = 0


def _analyze_spot(spot_trades: list[dict[str, Any]]) -> tuple[dict[str, Any], list[Outcome]]:
    positions: dict[str, _SymbolPosition] = defaultdict(_SymbolPosition)
    outcomes: list[Outcome] = []
    total_commission = ZERO
    max_capital = ZERO

    for trade in sorted(spot_trades, key=lambda t: int(t.get("time") or 0)):
        symbol = trade.get("symbol") or "UNKNOWN"
        qty = to_decimal(trade.get("qty"))
        price = to_decimal(trade.get("price"))
        commission = to_decimal(trade.get("commission"))
        total_commission += commission
        position = positions[symbol]

        if trade.get("isBuyer"):
            position.quantity += qty
            position.cost += qty * price
            position.buys += 1
            max_capital = max(max_capital, position.cost)
            continue

        position.sells += 1
        if position.quantity <= 0 or qty <= 0:
            position.external_sells += 1
            continue

        avg_cost = position.cost / position.quantity
        sold = min(qty, position.quantity)
        pnl = (price - avg_cost) * sold - commission * (sold / qty)
        position.realized += pnl
        position.quantity -= sold
        position.cost = position.quantity * avg_cost if position.quantity > 0 else ZERO

        if pnl > 0:
            position.wins += 1
        elif pnl < 0:
            position.losses += 1
        outcomes.append(Outcome(symbol, int(trade.get("time") or 0), pnl, "SPOT"))

    symbols = {
        symbol: {
            "realized": _f(pos.realized),
            "position": _f(pos.quantity),
            "avgPrice": _ratio(pos.cost, pos.quantity),
            "trades": pos.buys + pos.sells,
            "buys": pos.buys,
            "sells": pos.sells,
            "wins": pos.wins,
            "losses": pos.losses,
            "winRate": _pct(pos.wins, pos.wins + pos.losses),
            "externalSells": pos.external_sells,
            "accountType": "SPOT",
        }
        for symbol, pos in positions.items()
    }
    open_positions = [
        {
            "symbol": symbol,
            "quantity": _f(pos.quantity),
            "avgEntryPrice": _ratio(pos.cost, pos.quantity),
            "costBasis": _f(pos.cost),
        }
        for symbol, pos in positions.items()
        if pos.quantity > 0
    ]

    total_pnl = sum((pos.realized for pos in positions.values()), ZERO)
    summary = {
        "totalPnL": total_pnl,
        "totalInvested": max_capital,
        "totalTrades": len(spot_trades),
        "totalCommission": total_commission,
        "symbols": symbols,
        "openPositions": open_positions,
    }
    return summary, outcomes


# =============================================================================
# FUTURES
# =============================================================================

def _analyze_futures(futures_income: list[dict[str, Any]]) -> tuple[dict[str, Any], list[Outcome]]:
    by_type: dict[str, Decimal] = {name: ZERO for name in FUTURES_INCOME_TYPES}
    by_type["OTHER"] = ZERO
    per_symbol: dict[str, dict[str, Any]] = {}
    funding_by_symbol: dict[str, Decimal] = defaultdict(lambda: ZERO)
    commission_by_symbol: dict[str, Decimal] = defaultdict(lambda: ZERO)
    outcomes: list[Outcome] = []

    for record in sorted(futures_income, key=lambda r: int(r.get("time") or 0)):
        symbol = record.get("symbol") or "UNKNOWN"
        amount = to_decimal(record.get("income"))
        income_type = record.get("incomeType") or "OTHER"
        by_type[income_type if income_type in by_type else "OTHER"] += amount

        stats = per_symbol.setdefault(
            symbol,
            {"realized": ZERO, "commission": ZERO, "funding": ZERO, "trades": 0, "wins": 0, "losses": 0},
        )
        if income_type == "REALIZED_PNL":
            stats["realized"] += amount
            stats["trades"] += 1
            if amount > 0:
                stats["wins"] += 1
            elif amount < 0:
                stats["losses"] += 1
            outcomes.append(Outcome(symbol, int(record.get("time") or 0), amount, "FUTURES"))
        elif income_type == "COMMISSION":
            stats["commission"] += amount
            commission_by_symbol[symbol] += abs(amount)
        elif income_type == "FUNDING_FEE":
            stats["funding"] += amount
            funding_by_symbol[symbol] += amount

    symbols = {
        symbol: {
            "realized": _f(stats["realized"]),
            "commission": _f(stats["commission"]),
            "funding": _f(stats["funding"]),
            "netPnL": _f(stats["realized"] + stats["commission"] + stats["funding"]),
            "trades": stats["trades"],
            "wins": stats["wins"],
            "losses": stats["losses"],
            "winRate": _pct(stats["wins"], stats["wins"] + stats["losses"]),
            "accountType": "FUTURES",
        }
        for symbol, stats in per_symbol.items()
    }

    net_pnl = by_type["REALIZED_PNL"] + by_type["COMMISSION"] + by_type["FUNDING_FEE"]
    summary = {
        "netPnL": net_pnl,
        "realizedPnL": by_type["REALIZED_PNL"],
        "totalCommission": abs(by_type["COMMISSION"]),
        "totalFundingFees": by_type["FUNDING_FEE"],
        "totalTrades": len(outcomes),
        "symbols": symbols,
        "incomeByType": {name: _f(value) for name, value in by_type.items()},
        "fundingBySymbol": {symbol: _f(value) for symbol, value in funding_by_symbol.items()},
        "commissionBySymbol": {symbol: _f(value) for symbol, value in commission_by_symbol.items()},
    }
    return summary, outcomes


# =============================================================================
# OUTCOME STATISTICS
# =============================================================================

def _outcome_stats(outcomes: list[Outcome]) -> dict[str, Any]:
    wins = [o.pnl for o in outcomes if o.pnl > 0]
    losses = [o.pnl for o in outcomes if o.pnl < 0]
    gross_profit = sum(wins, ZERO)
    gross_loss = abs(sum(losses, ZERO))

    max_wins = max_losses = streak_wins = streak_losses = 0
    for outcome in sorted(outcomes, key=lambda o: o.time_ms):
        if outcome.pnl > 0:
            streak_wins, streak_losses = streak_wins + 1, 0
        elif outcome.pnl < 0:
            streak_wins, streak_losses = 0, streak_losses + 1
        else:
            streak_wins = streak_losses = 0
        max_wins = max(max_wins, streak_wins)
        max_losses = max(max_losses, streak_losses)

    completed = len(wins) + len(losses)
    return {
        "completedTrades": completed,
        "winningTrades": len(wins),
        "losingTrades": len(losses),
        "winRate": _pct(len(wins), completed),
        "avgWin": _ratio(gross_profit, Decimal(len(wins))),
        "avgLoss": _ratio(gross_loss, Decimal(len(losses))),
        "profitFactor": _ratio(gross_profit, gross_loss),
        "largestWin": _f(max(wins, default=ZERO)),
        "largestLoss": _f(min(losses, default=ZERO)),
        "maxConsecutiveWins": max_wins,
        "maxConsecutiveLosses": max_losses,
    }


def _time_breakdown(outcomes: list[Outcome]) -> dict[str, Any]:
    days: dict[str, dict[str, Any]] = {}
    hours = [{"hour": hour, "trades": 0, "pnl": ZERO} for hour in range(24)]
    months: dict[str, Decimal] = {}

    for outcome in sorted(outcomes, key=lambda o: o.time_ms):
        when = outcome.when
        day = days.setdefault(WEEKDAYS[when.weekday()], {"wins": 0, "losses": 0, "pnl": ZERO, "count": 0})
        day["pnl"] += outcome.pnl
        if outcome.pnl != 0:
            day["count"] += 1
            day["wins" if outcome.pnl > 0 else "losses"] += 1

        hours[when.hour]["trades"] += 1
        hours[when.hour]["pnl"] += outcome.pnl

        month = when.strftime("%b %Y")
        months[month] = months.get(month, ZERO) + outcome.pnl

    day_performance = sorted(
        (
            {
                "day": name,
                "pnl": _f(data["pnl"]),
                "winRate": _pct(data["wins"], data["count"]),
                "count": data["count"],
            }
            for name, data in days.items()
        ),
        key=lambda d: d["pnl"],
        reverse=True,
    )
    hour_performance = sorted(
        ({"hour": h["hour"], "trades": h["trades"], "pnl": _f(h["pnl"])} for h in hours if h["trades"]),
        key=lambda h: h["pnl"],
        reverse=True,
    )[:HOURS_SHOWN]
    monthly_data = [{"month": month, "pnl": _f(pnl)} for month, pnl in months.items()][-MONTHS_SHOWN:]

    return {
        "dayPerformance": day_performance,
        "hourPerformance": hour_performance,
        "monthlyData": monthly_data,
    }


def _trade_sizes(spot_trades: list[dict[str, Any]]) -> dict[str, int]:
    sizes = {"small": 0, "medium": 0, "large": 0}
    for trade in spot_trades:
        notional = to_decimal(trade.get("qty")) * to_decimal(trade.get("price"))
        if notional < SMALL_TRADE_LIMIT:
            sizes["small"] += 1
        elif notional < LARGE_TRADE_LIMIT:
            sizes["medium"] += 1
        else:
            sizes["large"] += 1
    return sizes


# =============================================================================
# NORMALIZED TRADE LIST
# =============================================================================

def _normalized_trades(
        spot_trades: list[dict[str, Any]],
        futures_income: list[dict[str, Any]],
        default_exchange: str,
) -> list[dict[str, Any]]:
    """Unified, time-ordered trade list used by drill-down views and AI context."""
    normalized: list[tuple[int, dict[str, Any]]] = []

    for trade in spot_trades:
        time_ms = int(trade.get("time") or 0)
        qty = to_decimal(trade.get("qty"))
        price = to_decimal(trade.get("price"))
        quote_qty = to_decimal(trade.get("quoteQty"), default=qty * price)
        normalized.append((time_ms, {
            "timestamp": to_iso(from_epoch_ms(time_ms)),
            # Sells return quote currency; buys are capital deployed
            "realizedPnl": 0.0 if trade.get("isBuyer") else _f(quote_qty),
            "symbol": trade.get("symbol") or "UNKNOWN",
            "quantity": _f(qty),
            "price": _f(price),
            "type": "spot",
            "side": "buy" if trade.get("isBuyer") else "sell",
            "exchange": (trade.get("exchange") or default_exchange).lower(),
            "commission": _f(to_decimal(trade.get("commission"))),
        }))

    for record in futures_income:
        income_type = record.get("incomeType") or "UNKNOWN"
        if income_type not in ("REALIZED_PNL", "COMMISSION"):
            continue
        time_ms = int(record.get("time") or 0)
        normalized.append((time_ms, {
            "timestamp": to_iso(from_epoch_ms(time_ms)),
            "realizedPnl": _f(to_decimal(record.get("income"))),
            "symbol": record.get("symbol") or "UNKNOWN",
            "quantity": 0.0,
            "price": 0.0,
            "type": "futures",
            "side": "close" if income_type == "REALIZED_PNL" else income_type.lower(),
            "exchange": (record.get("exchange") or default_exchange).lower(),
            "incomeType": income_type,
        }))

    normalized.sort(key=lambda item: item[0])
    return [trade for _, trade in normalized]


# =============================================================================
# PSYCHOLOGY
# =============================================================================

def _discipline_score(stats: dict[str, Any]) -> int:
    score = 50

    win_rate = stats["winRate"]
    if win_rate >= 60:
        score += 20
    elif win_rate >= 50:
        score += 10
    elif win_rate < 40:
        score -= 10

    profit_factor = stats["profitFactor"]
    if profit_factor >= 2:
        score += 15
    elif profit_factor >= 1.5:
        score += 10
    elif profit_factor < 1:
        score -= 15

    max_losses = stats["maxConsecutiveLosses"]
    if max_losses <= 3:
        score += 15
    elif max_losses <= 5:
        score += 5
    else:
        score -= 10

    return max(0, min(100, score))


def _revenge_sessions(outcomes: list[Outcome]) -> list[dict[str, Any]]:
    ordered = sorted(outcomes, key=lambda o: o.time_ms)
    sessions = []
    for start in range(len(ordered) - REVENGE_WINDOW_TRADES + 1):
        window = ordered[start:start + REVENGE_WINDOW_TRADES]
        span = window[-1].time_ms - window[0].time_ms
        if span < REVENGE_WINDOW_MS and window[0].pnl < 0:
            sessions.append({
                "startTime": to_iso(window[0].when),
                "trades": len(window),
                "minutes": span // 60000,
            })
    return sessions


def _after_streak(outcomes: list[Outcome]) -> dict[str, Any]:
    """Win rate of the trade following a win vs. following a loss."""
    ordered = sorted(outcomes, key=lambda o: o.time_ms)
    after = {"afterWins": [0, 0], "afterLosses": [0, 0]}
    for previous, current in zip(ordered, ordered[1:]):
        if previous.pnl == 0 or current.pnl == 0:
            continue
        bucket = after["afterWins" if previous.pnl > 0 else "afterLosses"]
        bucket[1] += 1
        if current.pnl > 0:
            bucket[0] += 1
    return {
        name: {"count": total, "winRate": _pct(wins, total)}
        for name, (wins, total) in after.items()
    }


def _psychology(stats: dict[str, Any], outcomes: list[Outcome], symbols: dict[str, Any]) -> dict[str, Any]:
    strengths: list[dict[str, str]] = []
    weaknesses: list[dict[str, str]] = []
    recommendations: list[str] = []

    if stats["winRate"] >= 60:
        strengths.append({"type": "win_rate", "message": f"Strong win rate of {stats['winRate']:.1f}%"})
    elif stats["completedTrades"] and stats["winRate"] < 40:
        weaknesses.append({"type": "win_rate", "message": f"Low win rate of {stats['winRate']:.1f}%"})
        recommendations.append("Review entry criteria on losing trades before adding new positions.")

    if stats["profitFactor"] >= 2:
        strengths.append({"type": "profit_factor", "message": f"Excellent profit factor: {stats['profitFactor']:.2f}x"})
    elif stats["losingTrades"] and stats["profitFactor"] < 1:
        weaknesses.append({"type": "profit_factor", "message": "Losses outweigh gains (profit factor below 1)"})
        recommendations.append("Cut losing positions earlier; average loss exceeds average win.")

    if stats["maxConsecutiveLosses"] > 5:
        weaknesses.append({
            "type": "losing_streaks",
            "message": f"Losing streak of {stats['maxConsecutiveLosses']} trades",
        })
        recommendations.append("Pause after three consecutive losses.")

    for symbol, data in symbols.items():
        if data.get("trades", 0) >= 5 and data.get("winRate", 0) >= 60:
            strengths.append({
                "type": "symbol_mastery",
                "message": f"Strong on {symbol} ({data['winRate']:.0f}% WR, {data['trades']} trades)",
            })

    revenge = _revenge_sessions(outcomes)
    triggers = []
    if revenge:
        triggers.append({
            "type": "revenge_trading",
            "severity": "high",
            "message": f"{len(revenge)} revenge trading sessions detected",
        })
        recommendations.append("Avoid rapid re-entries right after a loss.")

    return {
        "disciplineScore": _discipline_score(stats),
        "strengths": strengths,
        "weaknesses": weaknesses,
        "recommendations": recommendations,
        "behavioralPatterns": _after_streak(outcomes),
        "emotionalTriggers": triggers,
        "revengeSessions": revenge,
    }


# =============================================================================
# ANALYZER
# =============================================================================

class TradeAnalyzer:
    """
    Computes the cached analytics document from analyzer input.

    Stateless; safe to share across requests.
    """

    def analyze(self, data: dict[str, Any]) -> dict[str, Any]:
        spot_trades = data.get("spotTrades") or []
        futures_income = data.get("futuresIncome") or []
        metadata = data.get("metadata") or {}
        exchanges = metadata.get("exchanges") or []

        spot, spot_outcomes = _analyze_spot(spot_trades)
        futures, futures_outcomes = _analyze_futures(futures_income)
        outcomes = spot_outcomes + futures_outcomes

        stats = _outcome_stats(outcomes)
        spot_stats = _outcome_stats(spot_outcomes)
        futures_stats = _outcome_stats(futures_outcomes)

        symbols = {**spot["symbols"], **futures["symbols"]}
        best_symbol = max(
            symbols,
            key=lambda s: symbols[s].get("realized", symbols[s].get("netPnL", 0)),
            default=None,
        )

        total_pnl = spot["totalPnL"] + futures["netPnL"]
        total_invested = spot["totalInvested"]

        logger.debug(
            f"Analyzed {len(spot_trades)} spot trades and {len(futures_income)} futures records "
            f"({stats['completedTrades']} completed)"
        )

        return {
            "currency": metadata.get("primaryCurrency") or "USD",
            "metadata": metadata,
            "allTrades": _normalized_trades(spot_trades, futures_income, exchanges[0] if exchanges else "unknown"),

            "totalPnL": _f(total_pnl),
            "totalInvested": _f(total_invested),
            "roi": _ratio(total_pnl, total_invested) * 100,
            "totalTrades": spot["totalTrades"] + futures["totalTrades"],
            "buyTrades": sum(1 for t in spot_trades if t.get("isBuyer")),
            "sellTrades": sum(1 for t in spot_trades if not t.get("isBuyer")),
            **stats,
            "totalCommission": _f(spot["totalCommission"] + futures["totalCommission"]),

            "symbols": symbols,
            "bestSymbol": best_symbol,
            **_time_breakdown(outcomes),
            "tradeSizes": _trade_sizes(spot_trades),

            "spotPnL": _f(spot["totalPnL"]),
            "spotTrades": spot["totalTrades"],
            "spotCompletedTrades": spot_stats["completedTrades"],
            "spotWins": spot_stats["winningTrades"],
            "spotLosses": spot_stats["losingTrades"],
            "spotWinRate": spot_stats["winRate"],
            "spotInvested": _f(spot["totalInvested"]),
            "spotOpenPositions": spot["openPositions"],

            "futuresPnL": _f(futures["netPnL"]),
            "futuresRealizedPnL": _f(futures["realizedPnL"]),
            "futuresTrades": futures["totalTrades"],
            "futuresCompletedTrades": futures_stats["completedTrades"],
            "futuresWins": futures_stats["winningTrades"],
            "futuresLosses": futures_stats["losingTrades"],
            "futuresWinRate": futures_stats["winRate"],
            "futuresCommission": _f(futures["totalCommission"]),
            "futuresFundingFees": _f(futures["totalFundingFees"]),
            "futuresIncomeByType": futures["incomeByType"],
            "futuresFundingBySymbol": futures["fundingBySymbol"],
            "futuresCommissionBySymbol": futures["commissionBySymbol"],

            "psychology": _psychology(stats, outcomes, symbols),
        }
