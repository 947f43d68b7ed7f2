# backend/tradeclarity/services/analytics/service.py
"""
Analytics cache orchestrator.

One compute request walks a linear state machine:

    FETCH_TRADES ──(none)──► DELETE_CACHE                  -> NO_TRADES
        │
        ▼
    COMPUTE_HASH ─► LOOKUP_CACHE ──(hash match, unexpired)──► REFRESH_EXPIRY
        │
        ▼
    FETCH_PORTFOLIO (best effort) ─► RUN_ANALYZER ─► FORMAT_AI_CONTEXT
        │
        ▼
    UPSERT_CACHE

Failure handling:
    - trade fetch failure      -> TradeFetchError (500 FAILED_TO_FETCH_TRADES)
    - portfolio failure        -> logged, analytics computed without it
    - cache upsert failure     -> CacheSaveError (500 FAILED_TO_SAVE_CACHE)

Architecture:
    AnalyticsCacheService
        ├── uses → TradeAnalyzerProtocol (analytics document)
        ├── uses → PortfolioAggregator (holdings across connections)
        └── uses → compute_trades_hash (cache validity)

Usage:
    from tradeclarity.services.analytics import AnalyticsCacheService

    service = AnalyticsCacheService(analyzer=TradeAnalyzer(), portfolio=PortfolioAggregator())
    service.compute(db, user_id, trigger="trades_stored")
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from tradeclarity.models import AnalyticsCacheEntry, Trade
from tradeclarity.services.analytics.ai_context import format_structured_context
from tradeclarity.services.analytics.hashing import compute_trades_hash
from tradeclarity.services.constants import ANALYTICS_CACHE_TTL_SECONDS
from tradeclarity.services.exceptions import CacheSaveError, TradeFetchError
from tradeclarity.services.portfolio.aggregator import PortfolioAggregator
from tradeclarity.services.protocols import TradeAnalyzerProtocol
from tradeclarity.services.trades.transformers import build_analysis_input, compute_trade_stats
from tradeclarity.database import upsert_statement
from tradeclarity.utils.date_utils import ensure_utc, to_iso

logger = logging.getLogger(__name__)

NO_TRADES = "NO_TRADES"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalyticsCacheService:
    """
    Maintains the per-user analytics cache.

    Attributes:
        _analyzer: Produces the analytics document
        _portfolio: Aggregates holdings snapshots
        _clock: Source of "now" (injectable for tests)
        _ttl: Sliding expiry window of a cache row
    """

    def __init__(
            self,
            analyzer: TradeAnalyzerProtocol,
            portfolio: PortfolioAggregator,
            clock: Callable[[], datetime] = _utcnow,
            ttl_seconds: int = ANALYTICS_CACHE_TTL_SECONDS,
    ) -> None:
        self._analyzer = analyzer
        self._portfolio = portfolio
        self._clock = clock
        self._ttl = timedelta(seconds=ttl_seconds)

    # =========================================================================
    # COMPUTE
    # =========================================================================

    def compute(self, db: Session, user_id: str, trigger: str | None = None) -> dict[str, Any]:
        """
        Bring a user's analytics cache up to date.

        Returns:
            Response body: NO_TRADES, cache refreshed, or recomputed

        Raises:
            TradeFetchError: Trades could not be loaded
            CacheSaveError: The recomputed cache row could not be written
        """
        trades = self._fetch_trades(db, user_id)

        if not trades:
            self.invalidate(db, user_id)
            return {"success": False, "error": NO_TRADES, "message": "No trades found for user"}

        trades_hash = compute_trades_hash(trades)
        now = self._clock()

        cached = db.get(AnalyticsCacheEntry, user_id)
        if cached is not None and cached.trades_hash == trades_hash and ensure_utc(cached.expires_at) > now:
            self._refresh_expiry(db, user_id, now)
            logger.info(f"Analytics cache refreshed (hash match) for user {user_id}")
            return {
                "success": True,
                "cached": True,
                "refreshed": True,
                "totalTrades": len(trades),
            }

        logger.info(
            f"Computing analytics for user {user_id} "
            f"({len(trades)} trades, trigger: {trigger or 'unknown'})"
        )

        portfolio = self._fetch_portfolio(db, user_id)
        analytics = self._analyzer.analyze(build_analysis_input(trades))
        ai_context = format_structured_context(
            trades_stats=compute_trade_stats(trades),
            analytics=analytics,
            all_trades=analytics.get("allTrades") or [],
            portfolio=portfolio,
            now=now,
        )

        self._upsert(db, user_id, {
            "analytics_data": analytics,
            "ai_context": ai_context,
            "total_trades": len(trades),
            "last_trade_timestamp": trades[-1].trade_time,
            "trades_hash": trades_hash,
            "expires_at": now + self._ttl,
            "computed_at": now,
            "updated_at": now,
        })

        logger.info(f"Analytics computed and cached for user {user_id} ({len(trades)} trades)")
        return {
            "success": True,
            "cached": False,
            "computed": True,
            "totalTrades": len(trades),
            "computedAt": to_iso(now),
        }

    def refresh(self, db: Session, user_id: str) -> dict[str, Any]:
        """Drop the cache row and recompute from scratch."""
        self.invalidate(db, user_id)
        return self.compute(db, user_id, trigger="manual_refresh")

    # =========================================================================
    # READ
    # =========================================================================

    def get_cache(self, db: Session, user_id: str) -> dict[str, Any]:
        """
        Cached analytics payload, or a not-cached body telling the caller
        to trigger a compute.

        A row that claims trades while the user has none is deleted.
        """
        cached = db.get(AnalyticsCacheEntry, user_id)

        if cached is not None and ensure_utc(cached.expires_at) > self._clock():
            trade_count = db.scalar(select(func.count(Trade.id)).where(Trade.user_id == user_id)) or 0
            if trade_count == 0 and cached.total_trades > 0:
                logger.warning(
                    f"Analytics cache of user {user_id} lists {cached.total_trades} trades "
                    f"but none exist; invalidating"
                )
                self.invalidate(db, user_id)
                return self._not_cached("Analytics not cached. No trades found.")

            analytics = cached.analytics_data or {}
            return {
                "success": True,
                "analytics": analytics,
                "aiContext": cached.ai_context,
                "allTrades": analytics.get("allTrades") or [],
                "psychology": analytics.get("psychology"),
                "cached": True,
                "computedAt": to_iso(cached.computed_at),
                "expiresAt": to_iso(cached.expires_at),
            }

        return self._not_cached("Analytics not cached. Computation required.")

    def invalidate(self, db: Session, user_id: str) -> None:
        """Delete a user's cache row; a failure is logged."""
        try:
            db.execute(delete(AnalyticsCacheEntry).where(AnalyticsCacheEntry.user_id == user_id))
            db.commit()
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to delete analytics cache of user {user_id}: {e}")

    # =========================================================================
    # PRIVATE
    # =========================================================================

    @staticmethod
    def _not_cached(message: str) -> dict[str, Any]:
        return {
            "success": False,
            "cached": False,
            "analytics": None,
            "aiContext": None,
            "allTrades": None,
            "psychology": None,
            "message": message,
        }

    def _fetch_trades(self, db: Session, user_id: str) -> list[Trade]:
        try:
            return list(
                db.scalars(
                    select(Trade)
                    .where(Trade.user_id == user_id)
                    .order_by(Trade.trade_time.asc(), Trade.id.asc())
                )
            )
        except Exception as e:
            logger.error(f"Failed to fetch trades for user {user_id}: {e}", exc_info=True)
            raise TradeFetchError("Failed to fetch trades", db_error=str(e))

    def _fetch_portfolio(self, db: Session, user_id: str) -> dict[str, Any] | None:
        try:
            return self._portfolio.get_portfolio(db, user_id)
        except Exception as e:
            logger.warning(f"Portfolio aggregation failed for user {user_id}, continuing without it: {e}")
            return None

    def _refresh_expiry(self, db: Session, user_id: str, now: datetime) -> None:
        try:
            db.execute(
                update(AnalyticsCacheEntry)
                .where(AnalyticsCacheEntry.user_id == user_id)
                .values(expires_at=now + self._ttl, updated_at=now)
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to refresh analytics cache expiry for user {user_id}: {e}", exc_info=True)
            raise CacheSaveError("Failed to save analytics cache", db_error=str(e))

    def _upsert(self, db: Session, user_id: str, values: dict[str, Any]) -> None:
        stmt = upsert_statement(db, AnalyticsCacheEntry).values(
            user_id=user_id,
            created_at=values["computed_at"],
            **values,
        )
        stmt = stmt.on_conflict_do_update(index_elements=["user_id"], set_=values)

        try:
            db.execute(stmt)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to save analytics cache for user {user_id}: {e}", exc_info=True)
            raise CacheSaveError("Failed to save analytics cache", db_error=str(e))
