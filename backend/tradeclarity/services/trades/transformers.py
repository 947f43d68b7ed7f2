# backend/tradeclarity/services/trades/transformers.py
"""
Stored trade rows -> analyzer wire format.

The analyzer (and the dashboard) consume exchange-style records with
string-typed amounts and epoch-millisecond times:

    spot:    {symbol, qty, price, quoteQty, commission, commissionAsset,
              isBuyer, isMaker, time, orderId, id, accountType, exchange}
    futures: {symbol, income, asset, incomeType, time, tranId, id, exchange}

A stored row is routed by its account_type: SPOT rows become spot records,
FUTURES rows become futures income records.
"""

from collections.abc import Sequence
from typing import Any

from tradeclarity.models import AccountType, Trade, TradeSide
from tradeclarity.services.constants import INR_EXCHANGES, REQUIRED_CURRENCIES
from tradeclarity.utils.date_utils import ensure_utc, to_epoch_ms, to_iso
from tradeclarity.utils.numbers import format_decimal


def to_spot_wire(trade: Trade) -> dict[str, Any]:
    return {
        "symbol": trade.symbol,
        "qty": format_decimal(trade.quantity),
        "price": format_decimal(trade.price),
        "quoteQty": format_decimal(trade.quote_quantity),
        "commission": format_decimal(trade.commission),
        "commissionAsset": trade.commission_asset,
        "isBuyer": trade.side == TradeSide.BUY.value,
        "isMaker": trade.type == "LIMIT",
        "time": to_epoch_ms(trade.trade_time),
        "orderId": trade.order_id,
        "id": trade.trade_id,
        "accountType": AccountType.SPOT.value,
        "exchange": trade.exchange,
    }


def to_futures_wire(trade: Trade) -> dict[str, Any]:
    return {
        "symbol": trade.symbol,
        "income": format_decimal(trade.quote_quantity),
        "asset": trade.commission_asset,
        "incomeType": trade.type,
        "time": to_epoch_ms(trade.trade_time),
        "tranId": trade.trade_id,
        "id": trade.trade_id,
        "exchange": trade.exchange,
    }


def split_wire_records(
        trades: Sequence[Trade],
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Partition stored trades into (spot records, futures income records)."""
    spot_trades: list[dict[str, Any]] = []
    futures_income: list[dict[str, Any]] = []

    for trade in trades:
        if trade.account_type == AccountType.SPOT.value:
            spot_trades.append(to_spot_wire(trade))
        elif trade.account_type == AccountType.FUTURES.value:
            futures_income.append(to_futures_wire(trade))

    return spot_trades, futures_income


def unique_exchanges(trades: Sequence[Trade]) -> list[str]:
    """Exchanges in first-seen order."""
    return list(dict.fromkeys(trade.exchange for trade in trades))


def primary_currency_for(exchanges: Sequence[str]) -> str:
    """INR as soon as any INR-quoted exchange is present, else USD."""
    return "INR" if any(exchange in INR_EXCHANGES for exchange in exchanges) else "USD"


def describe_account_type(spot_count: int, futures_count: int) -> str:
    """MIXED, SPOT or FUTURES, as shown on the dashboard."""
    if spot_count > 0 and futures_count > 0:
        return "MIXED"
    if spot_count > 0:
        return "SPOT"
    return "FUTURES"


def build_analysis_input(trades: Sequence[Trade]) -> dict[str, Any]:
    """
    Analyzer input for a user's full trade set.

    Futures positions are not stored as trades and are always empty here.
    """
    spot_trades, futures_income = split_wire_records(trades)
    exchanges = unique_exchanges(trades)

    return {
        "spotTrades": spot_trades,
        "futuresIncome": futures_income,
        "futuresPositions": [],
        "metadata": {
            "primaryCurrency": primary_currency_for(exchanges),
            "availableCurrencies": list(REQUIRED_CURRENCIES),
            "supportsCurrencySwitch": True,
            "exchanges": exchanges,
        },
    }


def compute_trade_stats(trades: Sequence[Trade]) -> dict[str, Any]:
    """Lightweight counts and time range of a trade set."""
    ordered = sorted(trades, key=lambda trade: ensure_utc(trade.trade_time))
    spot_count = sum(1 for trade in trades if trade.account_type == AccountType.SPOT.value)
    futures_count = sum(1 for trade in trades if trade.account_type == AccountType.FUTURES.value)

    return {
        "totalTrades": len(trades),
        "spotTrades": spot_count,
        "futuresIncome": futures_count,
        "futuresPositions": 0,
        "oldestTrade": to_iso(ordered[0].trade_time) if ordered else None,
        "newestTrade": to_iso(ordered[-1].trade_time) if ordered else None,
    }
