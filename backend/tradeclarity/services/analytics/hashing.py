# backend/tradeclarity/services/analytics/hashing.py
"""
Trade-set fingerprint used to decide whether cached analytics are stale.

Each trade contributes "<identifier>-<timestamp>":
    identifier: primary key, else "<trade_id>-<trade_time>"
    timestamp:  updated_at, else created_at, else trade_time, else ""

The per-trade strings are sorted and joined with "|" before hashing, so the
digest ignores ordering but changes with any insert, delete or timestamp bump.

Economic fields (price, quantity, commission) are not part of the digest:
editing them in place without bumping updated_at leaves the hash unchanged.
"""

import hashlib
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from tradeclarity.utils.date_utils import ensure_utc


def _field(trade: Any, name: str) -> Any:
    if isinstance(trade, dict):
        return trade.get(name)
    return getattr(trade, name, None)


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    return str(value)


def trade_fingerprint(trade: Any) -> str:
    """Identity and last-modified marker of one trade (ORM row or dict)."""
    primary_key = _field(trade, "id")
    if primary_key is not None and primary_key != "":
        identifier = str(primary_key)
    else:
        identifier = f"{_render(_field(trade, 'trade_id'))}-{_render(_field(trade, 'trade_time'))}"

    timestamp = (
        _field(trade, "updated_at")
        or _field(trade, "created_at")
        or _field(trade, "trade_time")
    )
    return f"{identifier}-{_render(timestamp)}"


def compute_trades_hash(trades: Iterable[Any]) -> str:
    """SHA-256 hex digest of a trade set, independent of its order."""
    joined = "|".join(sorted(trade_fingerprint(trade) for trade in trades))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()
