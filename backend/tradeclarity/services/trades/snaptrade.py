# backend/tradeclarity/services/trades/snaptrade.py
"""
Brokerage aggregator (SnapTrade) payloads -> TradeClarity shapes.

Activities:
    Only BUY and SELL activities are trades; dividends, deposits, fees and
    the like map to None and are dropped. Output is the "aggregator format"
    trade dict understood by TradeStore (it carries trade_id / trade_time).

Holdings:
    An account's positions and balances become portfolio snapshot metadata
    in the shape accepted by TradeStore.store(metadata=...).
"""

import logging
import secrets
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from tradeclarity.models import AccountType
from tradeclarity.services.constants import DEFAULT_BROKERAGE_COMMISSION_ASSET
from tradeclarity.utils.date_utils import parse_trade_timestamp, to_epoch_ms
from tradeclarity.utils.numbers import format_decimal, to_decimal

logger = logging.getLogger(__name__)

SNAPTRADE_EXCHANGE = "snaptrade"
TRADE_ACTIVITY_TYPES = frozenset({"BUY", "SELL"})


# =============================================================================
# ACTIVITIES
# =============================================================================

def _symbol_of(activity: dict[str, Any]) -> str:
    symbol = activity.get("symbol")
    if isinstance(symbol, dict):
        return symbol.get("symbol") or symbol.get("raw_symbol") or "UNKNOWN"
    if isinstance(symbol, str) and symbol:
        return symbol
    return "UNKNOWN"


def _brokerage_of(activity: dict[str, Any]) -> str:
    account = activity.get("account") or {}
    return activity.get("institution") or account.get("institution_name") or "Unknown"


def _currency_of(activity: dict[str, Any]) -> str:
    currency = activity.get("currency")
    if isinstance(currency, dict) and currency.get("code"):
        return currency["code"]
    return DEFAULT_BROKERAGE_COMMISSION_ASSET


def synthesize_trade_id(now: datetime | None = None) -> str:
    """Trade id for an activity the aggregator sent without one."""
    now = now or datetime.now(timezone.utc)
    return f"snaptrade-{to_epoch_ms(now)}-{secrets.token_hex(6)}"


def transform_activity(activity: dict[str, Any]) -> dict[str, Any] | None:
    """
    Map one aggregator activity to an aggregator-format trade.

    Returns None for any activity that is not a BUY or SELL. Activities with
    zero units or zero price are still returned.
    """
    activity_type = str(activity.get("type") or "").strip().upper()
    if activity_type not in TRADE_ACTIVITY_TYPES:
        return None

    symbol = _symbol_of(activity)
    account = activity.get("account") or {}

    units = to_decimal(activity.get("units"), default=to_decimal(activity.get("quantity")))
    quantity = abs(units)
    price = to_decimal(activity.get("price"))
    amount = to_decimal(activity.get("amount"))
    quote_quantity = abs(amount) if amount != 0 else price * quantity
    fee = abs(to_decimal(activity.get("fee")))

    # Type decides; the sign of units only matters when the type does not
    is_buyer = activity_type == "BUY" or (activity_type != "SELL" and units > 0)

    raw_date = activity.get("trade_date") or activity.get("settlement_date")
    trade_time = parse_trade_timestamp(raw_date) or datetime.now(timezone.utc)

    trade_id = str(activity.get("id") or synthesize_trade_id())
    currency = _currency_of(activity)

    return {
        "symbol": symbol,
        "side": "BUY" if is_buyer else "SELL",
        "isBuyer": is_buyer,
        "type": "MARKET",
        "quantity": format_decimal(quantity),
        "units": format_decimal(units),
        "price": format_decimal(price),
        "quote_quantity": format_decimal(quote_quantity),
        "commission": format_decimal(fee),
        "commission_asset": currency,
        "timestamp": to_epoch_ms(trade_time),
        "trade_time": trade_time.isoformat(),
        "trade_date": activity.get("trade_date"),
        "settlement_date": activity.get("settlement_date") or activity.get("trade_date"),
        "trade_id": trade_id,
        "order_id": str(activity.get("id") or activity.get("external_reference_id") or trade_id),
        "account_id": account.get("id"),
        "account_name": account.get("name") or "Unknown Account",
        "brokerage": _brokerage_of(activity),
        "account_type": AccountType.SPOT.value,
        "exchange": SNAPTRADE_EXCHANGE,
        "is_futures": False,
        "description": activity.get("description") or f"{activity_type} {format_decimal(quantity)} {symbol}",
        "currency": currency,
        "raw_data": activity,
    }


def transform_activities(activities: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Transform a batch of activities, dropping non-trades."""
    if not isinstance(activities, list):
        return []

    trades = [trade for trade in map(transform_activity, activities) if trade is not None]
    logger.debug(f"Transformed {len(activities)} activities into {len(trades)} trades")
    return trades


def group_by_account(trades: list[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    """Group aggregator-format trades by account id ('unknown' when absent)."""
    grouped: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for trade in trades:
        grouped[trade.get("account_id") or "unknown"].append(trade)
    return dict(grouped)


# =============================================================================
# HOLDINGS
# =============================================================================

def _position_symbol(position: dict[str, Any]) -> tuple[str, str]:
    """(ticker, description) of a position, tolerating both nesting depths."""
    symbol_obj = position.get("symbol")
    if isinstance(symbol_obj, dict) and isinstance(symbol_obj.get("symbol"), dict):
        symbol_obj = symbol_obj["symbol"]

    if isinstance(symbol_obj, dict):
        ticker = symbol_obj.get("symbol") or "UNKNOWN"
        return ticker, symbol_obj.get("description") or ticker
    if isinstance(symbol_obj, str) and symbol_obj:
        return symbol_obj, symbol_obj
    return "UNKNOWN", "UNKNOWN"


def _balance_cash(balance: dict[str, Any]) -> Decimal:
    total = balance.get("total")
    for candidate in (
            balance.get("cash"),
            balance.get("amount"),
            total.get("amount") if isinstance(total, dict) else None,
    ):
        if candidate is not None:
            return to_decimal(candidate)
    return Decimal("0")


def holdings_to_snapshot(holdings: dict[str, Any] | None) -> dict[str, Any] | None:
    """
    Turn one account's holdings payload into snapshot metadata.

    Returns None when the payload carries no account.
    """
    if not holdings or not holdings.get("account"):
        return None

    account = holdings["account"]
    positions = holdings.get("positions") or []
    balances = holdings.get("balances") or []

    spot_holdings: list[dict[str, Any]] = []
    total_position_value = Decimal("0")

    for position in positions:
        ticker, description = _position_symbol(position)
        price = to_decimal(position.get("price"))
        units = to_decimal(position.get("units"))
        value = price * units
        total_position_value += value

        currency = position.get("currency") or {}
        spot_holdings.append({
            "asset": ticker,
            "symbol": ticker,
            "name": description,
            "quantity": float(units),
            "price": float(price),
            "usdValue": float(value),
            "averageCost": float(to_decimal(position.get("average_purchase_price"))),
            "openPnl": float(to_decimal(position.get("open_pnl"))),
            "currency": (currency.get("code") if isinstance(currency, dict) else None) or DEFAULT_BROKERAGE_COMMISSION_ASSET,
            "isCashEquivalent": bool(position.get("cash_equivalent")),
            "exchange": SNAPTRADE_EXCHANGE,
        })

    total_cash = sum((_balance_cash(balance) for balance in balances), Decimal("0"))
    first_currency = (balances[0].get("currency") or {}) if balances else {}

    return {
        "accountId": account.get("id"),
        "accountName": account.get("name") or "Unknown",
        "totalPortfolioValue": float(total_position_value + total_cash),
        "totalSpotValue": float(total_position_value),
        "totalFuturesValue": 0.0,
        "spotHoldings": spot_holdings,
        "cash": float(total_cash),
        "primaryCurrency": first_currency.get("code") or DEFAULT_BROKERAGE_COMMISSION_ASSET,
        "accountType": AccountType.SPOT.value,
    }
