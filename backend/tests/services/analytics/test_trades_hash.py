# backend/tests/services/analytics/test_trades_hash.py
"""
Tests for the trade-set fingerprint.

This module tests:
- Order independence of the digest
- Sensitivity to inserts, deletes and timestamp bumps
- Identifier and timestamp fallbacks for rows without a primary key
"""

import hashlib
from datetime import datetime, timezone

from tradeclarity.services.analytics.hashing import compute_trades_hash, trade_fingerprint


T1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
T2 = datetime(2024, 1, 2, tzinfo=timezone.utc)


def _trade(**fields) -> dict:
    base = {"id": 1, "trade_id": "100", "trade_time": T1, "created_at": T1, "updated_at": T1}
    base.update(fields)
    return base


# =============================================================================
# FINGERPRINT TESTS
# =============================================================================

class TestTradeFingerprint:
    """Tests for trade_fingerprint()."""

    def test_uses_primary_key_and_updated_at(self):
        assert trade_fingerprint(_trade()) == f"1-{T1.isoformat()}"

    def test_falls_back_to_trade_id_and_time_without_primary_key(self):
        fingerprint = trade_fingerprint(_trade(id=None, updated_at=None, created_at=None))

        assert fingerprint == f"100-{T1.isoformat()}-{T1.isoformat()}"

    def test_prefers_updated_at_over_created_at(self):
        fingerprint = trade_fingerprint(_trade(created_at=T1, updated_at=T2))

        assert fingerprint.endswith(T2.isoformat())

    def test_naive_timestamps_render_as_utc(self):
        naive = datetime(2024, 1, 1)

        assert trade_fingerprint(_trade(updated_at=naive)) == trade_fingerprint(_trade(updated_at=T1))

    def test_accepts_objects_with_attributes(self):
        class Row:
            id = 7
            trade_id = "x"
            trade_time = T1
            created_at = T1
            updated_at = None

        assert trade_fingerprint(Row()) == f"7-{T1.isoformat()}"


# =============================================================================
# DIGEST TESTS
# =============================================================================

class TestComputeTradesHash:
    """Tests for compute_trades_hash()."""

    def test_is_sha256_hex(self):
        digest = compute_trades_hash([_trade()])

        assert len(digest) == 64
        int(digest, 16)

    def test_ignores_order(self):
        a = _trade(id=1)
        b = _trade(id=2, updated_at=T2)

        assert compute_trades_hash([a, b]) == compute_trades_hash([b, a])

    def test_changes_when_trade_added(self):
        base = [_trade(id=1)]

        assert compute_trades_hash(base) != compute_trades_hash(base + [_trade(id=2)])

    def test_changes_when_updated_at_bumped(self):
        assert compute_trades_hash([_trade()]) != compute_trades_hash([_trade(updated_at=T2)])

    def test_ignores_economic_fields(self):
        cheap = _trade(price="1", quantity="1")
        expensive = _trade(price="99999", quantity="5")

        assert compute_trades_hash([cheap]) == compute_trades_hash([expensive])

    def test_empty_set_hashes_empty_string(self):
        assert compute_trades_hash([]) == hashlib.sha256(b"").hexdigest()
