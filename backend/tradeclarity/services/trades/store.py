# backend/tradeclarity/services/trades/store.py
"""
Trade persistence: store, fetch and summarize a user's canonical trades.

Store flow for one batch:

    normalize exchange ─► resolve SnapTrade brokerage connections
        │
        ▼
    build rows (aggregator format or exchange wire format)
        │
        ▼
    drop rows whose (user, exchange, trade_id) already exists,
    or which repeat earlier in the same batch
        │
        ▼
    INSERT in batches, conflicting keys skipped    ── failure: fatal
        │
        ├─► portfolio snapshot from metadata       ── failure: logged
        ├─► csv_uploads.trades_count               ── failure: logged
        └─► analytics recompute (only if inserted) ── failure: logged

Two record shapes are accepted for spot trades:
    - aggregator format: carries `trade_id` / `trade_time`
      (SnapTrade transformer output)
    - exchange wire format: `id`, `time`, `isBuyer`, `qty`, ...
      (exchange API payloads and CSV parser output)

Futures income always arrives in wire format and is stored with side
INCOME, zero quantity and price, and the signed income in quote_quantity.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from tradeclarity.database import upsert_statement
from tradeclarity.models import (
    AccountType,
    CsvUpload,
    ExchangeConnection,
    PortfolioSnapshot,
    Trade,
    TradeSide,
)
from tradeclarity.services.constants import (
    DEFAULT_BROKERAGE_COMMISSION_ASSET,
    DEFAULT_CRYPTO_COMMISSION_ASSET,
    FUTURES_INCOME_ORDER_ID,
    REQUIRED_CURRENCIES,
    TRADE_INSERT_BATCH_SIZE,
)
from tradeclarity.services.exceptions import TradeFetchError, TradePersistenceError
from tradeclarity.services.trades.snaptrade import SNAPTRADE_EXCHANGE
from tradeclarity.services.trades.transformers import (
    compute_trade_stats,
    describe_account_type,
    primary_currency_for,
    split_wire_records,
    unique_exchanges,
)
from tradeclarity.utils.date_utils import (
    parse_trade_timestamp,
    to_epoch_ms,
    to_iso,
)
from tradeclarity.utils.numbers import to_decimal

logger = logging.getLogger(__name__)

# Called with (db, user_id) after new trades were inserted
RecomputeCallback = Callable[[Session, str], Any]

# Columns of uq_trade_user_exchange_trade_id
TRADE_UNIQUE_KEY = ["user_id", "exchange", "trade_id"]


# =============================================================================
# RESULT DATA CLASSES
# =============================================================================

@dataclass
class StoreResult:
    """Outcome of storing one batch of trades."""

    inserted: int = 0
    total_processed: int = 0
    already_existed: int = 0
    snapshot_stored: bool = False
    analytics_triggered: bool = False

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "tradesCount": self.inserted,
            "totalProcessed": self.total_processed,
            "alreadyExisted": self.already_existed,
            "portfolioSnapshotStored": self.snapshot_stored,
            "analyticsComputationTriggered": self.analytics_triggered,
        }


# =============================================================================
# ROW BUILDERS
# =============================================================================

def is_aggregator_format(record: dict[str, Any]) -> bool:
    """Aggregator-format records carry trade_id / trade_time."""
    return "trade_id" in record or "trade_time" in record


def _resolve_time(record: dict[str, Any], *keys: str) -> datetime:
    for key in keys:
        parsed = parse_trade_timestamp(record.get(key))
        if parsed is not None:
            return parsed
    return datetime.now(timezone.utc)


def build_aggregator_row(record: dict[str, Any]) -> dict[str, Any]:
    """Column values for a record produced by the SnapTrade transformer."""
    trade_time = _resolve_time(record, "trade_time", "timestamp")
    quantity = abs(to_decimal(record.get("quantity")))
    price = to_decimal(record.get("price"))
    quote_quantity = record.get("quote_quantity")
    trade_id = str(record.get("trade_id") or "")

    return {
        "symbol": record.get("symbol") or "UNKNOWN",
        "side": str(record.get("side") or TradeSide.BUY.value).upper(),
        "type": record.get("type") or "MARKET",
        "account_type": AccountType.SPOT.value,
        "is_futures": False,
        "quantity": quantity,
        "price": price,
        "quote_quantity": to_decimal(quote_quantity) if quote_quantity is not None else price * quantity,
        "commission": abs(to_decimal(record.get("commission"))),
        "commission_asset": record.get("commission_asset") or DEFAULT_BROKERAGE_COMMISSION_ASSET,
        "timestamp": int(to_decimal(record.get("timestamp"))) or to_epoch_ms(trade_time),
        "trade_time": trade_time,
        "trade_id": trade_id,
        "order_id": str(record.get("order_id") or trade_id),
        "raw_data": record.get("raw_data") or record,
    }


def build_spot_row(record: dict[str, Any]) -> dict[str, Any]:
    """Column values for an exchange wire-format spot trade."""
    trade_time = _resolve_time(record, "time")
    quantity = abs(to_decimal(record.get("qty")))
    price = to_decimal(record.get("price"))
    quote_quantity = record.get("quoteQty")
    trade_id = str(record.get("id") or "")

    return {
        "symbol": record.get("symbol") or "UNKNOWN",
        "side": TradeSide.BUY.value if record.get("isBuyer") else TradeSide.SELL.value,
        "type": "LIMIT" if record.get("isMaker") else "MARKET",
        "account_type": AccountType.SPOT.value,
        "is_futures": False,
        "quantity": quantity,
        "price": price,
        "quote_quantity": to_decimal(quote_quantity) if quote_quantity is not None else price * quantity,
        "commission": abs(to_decimal(record.get("commission"))),
        "commission_asset": record.get("commissionAsset") or DEFAULT_CRYPTO_COMMISSION_ASSET,
        "timestamp": to_epoch_ms(trade_time),
        "trade_time": trade_time,
        "trade_id": trade_id,
        "order_id": str(record.get("orderId") or trade_id),
        "raw_data": record,
    }


def build_futures_row(record: dict[str, Any]) -> dict[str, Any]:
    """Column values for a futures income record."""
    trade_time = _resolve_time(record, "time")
    income_type = record.get("incomeType") or "UNKNOWN"
    source_id = record.get("tranId") or record.get("id")

    return {
        "symbol": record.get("symbol") or "UNKNOWN",
        "side": TradeSide.INCOME.value,
        "type": record.get("incomeType") or "REALIZED_PNL",
        "account_type": AccountType.FUTURES.value,
        "is_futures": True,
        "quantity": to_decimal(0),
        "price": to_decimal(0),
        "quote_quantity": to_decimal(record.get("income")),
        "commission": to_decimal(0),
        "commission_asset": record.get("asset") or DEFAULT_CRYPTO_COMMISSION_ASSET,
        "timestamp": to_epoch_ms(trade_time),
        "trade_time": trade_time,
        "trade_id": f"{source_id}_{income_type}",
        "order_id": FUTURES_INCOME_ORDER_ID,
        "raw_data": record,
    }


def brokerage_display_name(connection: ExchangeConnection) -> str:
    """metadata.brokerage_name, else the title-cased slug of 'snaptrade-<slug>'."""
    metadata = connection.connection_metadata or {}
    if metadata.get("brokerage_name"):
        return metadata["brokerage_name"]
    slug = connection.exchange.split("-", 1)[1] if "-" in connection.exchange else connection.exchange
    return slug.replace("-", " ").replace("_", " ").title()


# =============================================================================
# TRADE STORE
# =============================================================================

class TradeStore:
    """
    Stores and reads a user's canonical trades.

    Args:
        on_trades_inserted: Called with (db, user_id) after a batch inserted
            new trades. Its failures are logged, never raised.

    Example:
        store = TradeStore(on_trades_inserted=analytics.compute)
        result = store.store(db, user_id, "binance", spot_trades=records)
        result.to_response()
    """

    def __init__(self, on_trades_inserted: RecomputeCallback | None = None) -> None:
        self._on_trades_inserted = on_trades_inserted

    # =========================================================================
    # STORE
    # =========================================================================

    def store(
            self,
            db: Session,
            user_id: str,
            exchange: str,
            spot_trades: list[dict[str, Any]] | None = None,
            futures_income: list[dict[str, Any]] | None = None,
            connection_id: str | None = None,
            csv_upload_id: str | None = None,
            metadata: dict[str, Any] | None = None,
    ) -> StoreResult:
        """
        Persist one batch of trades for a user.

        Raises:
            TradePersistenceError: An insert batch failed
        """
        exchange = exchange.strip().lower()
        spot_trades = spot_trades or []
        futures_income = futures_income or []

        brokerage_connections: dict[str, str] = {}
        if exchange == SNAPTRADE_EXCHANGE:
            brokerage_connections = self._brokerage_connections(db, user_id)

        rows: list[dict[str, Any]] = []
        for record in spot_trades:
            row = build_aggregator_row(record) if is_aggregator_format(record) else build_spot_row(record)
            row_connection = connection_id
            brokerage = record.get("brokerage")
            if brokerage and brokerage.lower() in brokerage_connections:
                row_connection = brokerage_connections[brokerage.lower()]
            rows.append(self._with_provenance(row, user_id, exchange, row_connection, csv_upload_id))

        for record in futures_income:
            row = build_futures_row(record)
            rows.append(self._with_provenance(row, user_id, exchange, connection_id, csv_upload_id))

        result = StoreResult(total_processed=len(rows))

        new_rows = self._drop_existing(db, user_id, exchange, rows)
        if new_rows:
            result.inserted = self._insert_batches(db, new_rows)
        result.already_existed = len(rows) - result.inserted

        logger.info(
            f"Stored {result.inserted} {exchange} trades for user {user_id} "
            f"({result.already_existed} already existed)"
        )

        if metadata and metadata.get("spotHoldings") is not None and metadata.get("totalPortfolioValue") is not None:
            result.snapshot_stored = self._store_snapshot(db, user_id, exchange, connection_id, metadata)

        if csv_upload_id is not None:
            self._update_upload_count(db, user_id, csv_upload_id)

        if result.inserted > 0 and self._on_trades_inserted is not None:
            try:
                self._on_trades_inserted(db, user_id)
                result.analytics_triggered = True
            except Exception as e:
                logger.warning(f"Analytics recompute after storing trades failed for user {user_id}: {e}")

        return result

    @staticmethod
    def _with_provenance(
            row: dict[str, Any],
            user_id: str,
            exchange: str,
            connection_id: str | None,
            csv_upload_id: str | None,
    ) -> dict[str, Any]:
        row.update(
            user_id=user_id,
            exchange=exchange,
            exchange_connection_id=connection_id,
            csv_upload_id=csv_upload_id,
        )
        return row

    def _brokerage_connections(self, db: Session, user_id: str) -> dict[str, str]:
        """Lowercased brokerage display name -> active snaptrade-* connection id."""
        connections = db.scalars(
            select(ExchangeConnection).where(
                ExchangeConnection.user_id == user_id,
                ExchangeConnection.is_active.is_(True),
                ExchangeConnection.exchange.startswith(SNAPTRADE_EXCHANGE),
            )
        )
        return {brokerage_display_name(conn).lower(): conn.id for conn in connections}

    def _drop_existing(
            self,
            db: Session,
            user_id: str,
            exchange: str,
            rows: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        """Rows whose trade_id is neither stored yet nor repeated earlier in the batch."""
        if not rows:
            return []

        existing: set[str] = set()
        trade_ids = [row["trade_id"] for row in rows]
        for start in range(0, len(trade_ids), TRADE_INSERT_BATCH_SIZE):
            chunk = trade_ids[start:start + TRADE_INSERT_BATCH_SIZE]
            existing.update(
                db.scalars(
                    select(Trade.trade_id).where(
                        Trade.user_id == user_id,
                        Trade.exchange == exchange,
                        Trade.trade_id.in_(chunk),
                    )
                )
            )

        new_rows: list[dict[str, Any]] = []
        for row in rows:
            if row["trade_id"] in existing:
                continue
            existing.add(row["trade_id"])
            new_rows.append(row)
        return new_rows

    def _insert_batches(self, db: Session, rows: list[dict[str, Any]]) -> int:
        """
        Insert rows in batches, skipping any whose unique key is taken by now.

        A concurrent store for the same user can commit the same trade between
        the existence check and this insert; those rows are left alone.

        Returns:
            Number of rows actually inserted
        """
        now = datetime.now(timezone.utc)
        inserted = 0
        for start in range(0, len(rows), TRADE_INSERT_BATCH_SIZE):
            batch = [
                {**row, "created_at": now, "updated_at": now}
                for row in rows[start:start + TRADE_INSERT_BATCH_SIZE]
            ]
            try:
                stmt = (
                    upsert_statement(db, Trade)
                    .on_conflict_do_nothing(index_elements=TRADE_UNIQUE_KEY)
                    .returning(Trade.id)
                )
                inserted += len(db.execute(stmt, batch).all())
                db.commit()
            except Exception as e:
                db.rollback()
                logger.error(
                    f"Failed to insert trade batch at offset {start} ({len(batch)} rows): {e}",
                    exc_info=True,
                )
                raise TradePersistenceError("Failed to store trades", db_error=str(e))
        return inserted

    def _store_snapshot(
            self,
            db: Session,
            user_id: str,
            exchange: str,
            connection_id: str | None,
            metadata: dict[str, Any],
    ) -> bool:
        snapshot = PortfolioSnapshot(
            user_id=user_id,
            connection_id=connection_id,
            exchange=exchange,
            holdings=metadata.get("spotHoldings") or [],
            total_portfolio_value=to_decimal(metadata.get("totalPortfolioValue")),
            total_spot_value=to_decimal(metadata.get("totalSpotValue")),
            total_futures_value=to_decimal(metadata.get("totalFuturesValue")),
            primary_currency=metadata.get("primaryCurrency") or "USD",
            account_type=metadata.get("accountType"),
            snapshot_time=datetime.now(timezone.utc),
        )
        try:
            db.add(snapshot)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to store portfolio snapshot for user {user_id} ({exchange}): {e}")
            return False

        logger.info(f"Stored portfolio snapshot for user {user_id} ({exchange})")
        return True

    def _update_upload_count(self, db: Session, user_id: str, csv_upload_id: str) -> None:
        """Set trades_count to the number of trades stored for the upload."""
        try:
            count = db.scalar(
                select(func.count(Trade.id)).where(
                    Trade.user_id == user_id,
                    Trade.csv_upload_id == csv_upload_id,
                )
            ) or 0
            db.execute(
                update(CsvUpload)
                .where(CsvUpload.id == csv_upload_id, CsvUpload.user_id == user_id)
                .values(trades_count=count)
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to update trade count of CSV upload {csv_upload_id}: {e}")

    # =========================================================================
    # READ
    # =========================================================================

    def list_trades(
            self,
            db: Session,
            user_id: str,
            connection_id: str | None = None,
            exchange: str | None = None,
    ) -> list[Trade]:
        """
        A user's trades, oldest first.

        Raises:
            TradeFetchError: The query failed
        """
        query = select(Trade).where(Trade.user_id == user_id)
        if connection_id:
            query = query.where(Trade.exchange_connection_id == connection_id)
        elif exchange:
            query = query.where(Trade.exchange == exchange.strip().lower())

        try:
            return list(db.scalars(query.order_by(Trade.trade_time.asc(), Trade.id.asc())))
        except Exception as e:
            logger.error(f"Failed to fetch trades for user {user_id}: {e}", exc_info=True)
            raise TradeFetchError("Failed to fetch trades", db_error=str(e))

    def fetch(
            self,
            db: Session,
            user_id: str,
            connection_id: str | None = None,
            exchange: str | None = None,
    ) -> dict[str, Any]:
        """Wire-format spot and futures lists plus summary metadata."""
        trades = self.list_trades(db, user_id, connection_id=connection_id, exchange=exchange)
        spot_trades, futures_income = split_wire_records(trades)
        exchanges = unique_exchanges(trades)
        stats = compute_trade_stats(trades)

        return {
            "success": True,
            "spotTrades": spot_trades,
            "futuresIncome": futures_income,
            "metadata": {
                "primaryCurrency": primary_currency_for(exchanges),
                "availableCurrencies": ["USD", "INR"],
                "supportsCurrencySwitch": False,
                "exchanges": exchanges,
                "totalTrades": stats["totalTrades"],
                "spotTrades": stats["spotTrades"],
                "futuresIncome": stats["futuresIncome"],
                "oldestTrade": stats["oldestTrade"],
                "newestTrade": stats["newestTrade"],
                "accountType": describe_account_type(len(spot_trades), len(futures_income)),
                "hasSpot": len(spot_trades) > 0,
                "hasFutures": len(futures_income) > 0,
            },
        }

    def stats(self, db: Session, user_id: str) -> dict[str, Any]:
        """Counts, time range and latest snapshot totals of a user's trades."""
        trades = self.list_trades(db, user_id)
        exchanges = unique_exchanges(trades)
        stats = compute_trade_stats(trades)

        metadata: dict[str, Any] = {
            "primaryCurrency": primary_currency_for(exchanges),
            "availableCurrencies": list(REQUIRED_CURRENCIES),
            "supportsCurrencySwitch": True,
            "exchanges": exchanges,
            "totalTrades": stats["totalTrades"],
            "spotTrades": stats["spotTrades"],
            "futuresIncome": stats["futuresIncome"],
            "oldestTrade": stats["oldestTrade"],
            "newestTrade": stats["newestTrade"],
            "accountType": describe_account_type(stats["spotTrades"], stats["futuresIncome"]),
            "hasSpot": stats["spotTrades"] > 0,
            "hasFutures": stats["futuresIncome"] > 0,
        }

        snapshot = db.scalars(
            select(PortfolioSnapshot)
            .where(PortfolioSnapshot.user_id == user_id)
            .order_by(PortfolioSnapshot.snapshot_time.desc())
            .limit(1)
        ).first()
        if snapshot is not None:
            metadata.update(
                totalPortfolioValue=float(snapshot.total_portfolio_value or 0),
                totalSpotValue=float(snapshot.total_spot_value or 0),
                totalFuturesValue=float(snapshot.total_futures_value or 0),
                snapshotTime=to_iso(snapshot.snapshot_time),
            )

        return {"success": True, "metadata": metadata}
