# backend/tradeclarity/services/portfolio/aggregator.py
"""
Combined portfolio view across a user's connections.

Algorithm:
    1. Keep the latest snapshot per connection (later snapshots fully
       supersede earlier ones, no partial merge).
    2. Convert non-USD snapshots with the fixed SNAPSHOT_USD_CONVERSION_RATES
       table: totals and every holding's usdValue.
    3. Tag holdings with their exchange and original currency.
    4. Deduplicate by "<asset>-<exchange>" (uppercased): the larger usdValue
       wins, values are never summed.
    5. totalPortfolioValue is the sum of the deduplicated holdings, falling
       back to the sum of snapshot totals when that is zero.

A snapshot that cannot be converted is logged and left out; aggregation
never fails as a whole.

Note:
    Conversion uses a fixed table, not the live rate chain of
    CurrencyRateService. Values are approximate for non-USD snapshots.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from tradeclarity.models import ExchangeConnection, PortfolioSnapshot
from tradeclarity.services.constants import SNAPSHOT_USD_CONVERSION_RATES, ZERO
from tradeclarity.utils.date_utils import ensure_utc, to_iso
from tradeclarity.utils.numbers import to_decimal

logger = logging.getLogger(__name__)


@dataclass
class ConvertedSnapshot:
    """A snapshot with every value expressed in USD."""

    connection_id: str | None
    exchange: str
    snapshot_time: datetime
    total_portfolio_value: Decimal
    total_spot_value: Decimal
    total_futures_value: Decimal
    holdings: list[dict[str, Any]] = field(default_factory=list)


# =============================================================================
# PURE HELPERS
# =============================================================================

def latest_per_connection(snapshots: Iterable[PortfolioSnapshot]) -> list[PortfolioSnapshot]:
    """Most recent snapshot of each connection, newest first."""
    latest: dict[str | None, PortfolioSnapshot] = {}
    for snapshot in snapshots:
        current = latest.get(snapshot.connection_id)
        if current is None or ensure_utc(snapshot.snapshot_time) > ensure_utc(current.snapshot_time):
            latest[snapshot.connection_id] = snapshot
    return sorted(latest.values(), key=lambda s: ensure_utc(s.snapshot_time), reverse=True)


def usd_rate_for(currency: str | None) -> Decimal:
    """
    Multiplier turning a native amount into USD.

    Raises:
        ValueError: Currency not in the fixed conversion table
    """
    code = (currency or "USD").upper()
    if code == "USD":
        return Decimal("1")
    if code not in SNAPSHOT_USD_CONVERSION_RATES:
        raise ValueError(f"No conversion rate for currency {code}")
    return SNAPSHOT_USD_CONVERSION_RATES[code]


def convert_snapshot(snapshot: PortfolioSnapshot) -> ConvertedSnapshot:
    """Normalize one snapshot to USD and tag its holdings."""
    currency = (snapshot.primary_currency or "USD").upper()
    rate = usd_rate_for(currency)

    holdings = []
    for holding in snapshot.holdings or []:
        asset = holding.get("asset") or holding.get("currency") or "UNKNOWN"
        quantity = to_decimal(holding.get("quantity", holding.get("qty")))
        price = to_decimal(holding.get("price"))
        usd_value = to_decimal(holding.get("usdValue")) * rate
        holdings.append({
            "asset": asset,
            "quantity": float(quantity),
            "price": float(price * rate),
            "usdValue": float(usd_value),
            "exchange": snapshot.exchange,
            "originalCurrency": currency,
        })

    return ConvertedSnapshot(
        connection_id=snapshot.connection_id,
        exchange=snapshot.exchange,
        snapshot_time=ensure_utc(snapshot.snapshot_time),
        total_portfolio_value=to_decimal(snapshot.total_portfolio_value) * rate,
        total_spot_value=to_decimal(snapshot.total_spot_value) * rate,
        total_futures_value=to_decimal(snapshot.total_futures_value) * rate,
        holdings=holdings,
    )


def holding_key(holding: dict[str, Any]) -> str:
    return f"{holding.get('asset')}-{holding.get('exchange')}".upper()


def dedupe_holdings(holdings: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """One holding per asset+exchange; the larger usdValue wins."""
    kept: dict[str, dict[str, Any]] = {}
    for holding in holdings:
        key = holding_key(holding)
        existing = kept.get(key)
        if existing is None or (holding.get("usdValue") or 0) > (existing.get("usdValue") or 0):
            kept[key] = holding
    return list(kept.values())


def aggregate_snapshots(snapshots: Iterable[PortfolioSnapshot]) -> dict[str, Any] | None:
    """
    Combine snapshots into one portfolio view.

    Returns:
        {totalPortfolioValue, totalSpotValue, totalFuturesValue, holdings,
         snapshotTime, snapshotCount}, or None when nothing converts
    """
    converted: list[ConvertedSnapshot] = []
    for snapshot in latest_per_connection(snapshots):
        try:
            converted.append(convert_snapshot(snapshot))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(
                f"Skipping portfolio snapshot {snapshot.id} of connection {snapshot.connection_id}: {e}"
            )

    if not converted:
        return None

    holdings = dedupe_holdings(h for snap in converted for h in snap.holdings)
    recalculated = sum((Decimal(str(h["usdValue"])) for h in holdings), ZERO)
    snapshot_total = sum((snap.total_portfolio_value for snap in converted), ZERO)

    return {
        "totalPortfolioValue": float(recalculated or snapshot_total),
        "totalSpotValue": float(sum((snap.total_spot_value for snap in converted), ZERO)),
        "totalFuturesValue": float(sum((snap.total_futures_value for snap in converted), ZERO)),
        "holdings": holdings,
        "snapshotTime": to_iso(max(snap.snapshot_time for snap in converted)),
        "snapshotCount": len(converted),
    }


# =============================================================================
# SERVICE
# =============================================================================

class PortfolioAggregator:
    """
    Loads a user's latest snapshots and aggregates them.

    Only snapshots of the user's active connections take part.
    """

    def get_portfolio(self, db: Session, user_id: str) -> dict[str, Any] | None:
        """Aggregated portfolio, or None when the user has no usable snapshot."""
        active_ids = list(
            db.scalars(
                select(ExchangeConnection.id).where(
                    ExchangeConnection.user_id == user_id,
                    ExchangeConnection.is_active.is_(True),
                )
            )
        )
        if not active_ids:
            return None

        snapshots = db.scalars(
            select(PortfolioSnapshot)
            .where(
                PortfolioSnapshot.user_id == user_id,
                PortfolioSnapshot.connection_id.in_(active_ids),
            )
            .order_by(PortfolioSnapshot.snapshot_time.desc())
        )
        portfolio = aggregate_snapshots(snapshots)
        if portfolio is not None:
            logger.debug(
                f"Aggregated {portfolio['snapshotCount']} snapshots for user {user_id} "
                f"({len(portfolio['holdings'])} holdings)"
            )
        return portfolio
