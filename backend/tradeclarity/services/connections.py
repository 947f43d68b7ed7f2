# backend/tradeclarity/services/connections.py
"""
Exchange connection management.

Deleting a connection removes, for that user only:
    1. API-imported trades of the connection (trades without a CSV upload)
    2. Its portfolio snapshots (failure is logged, deletion continues)
    3. Linked CSV uploads and their trades, or just the link
    4. The connection itself
and finally re-runs analytics when any trade was removed.

API-key exchanges (binance, coindcx) keep one connection per user and
exchange. Their key and secret are stored encrypted with a SecretBox and
are never returned by the API.

SnapTrade brokerages are mirrored as one connection each
("snaptrade-<slug>", display name in metadata.brokerage_name) by
sync_brokerages().
"""

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TYPE_CHECKING

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from tradeclarity.models import CsvUpload, ExchangeConnection, PortfolioSnapshot, Trade
from tradeclarity.services.constants import API_KEY_EXCHANGES
from tradeclarity.services.exceptions import (
    ConnectionNotFoundError,
    EncryptionNotConfiguredError,
    PersistenceError,
    ValidationError,
)
from tradeclarity.services.trades.snaptrade import SNAPTRADE_EXCHANGE
from tradeclarity.services.trades.store import brokerage_display_name
from tradeclarity.utils.date_utils import to_iso

if TYPE_CHECKING:
    from tradeclarity.services.snaptrade.secrets import SecretBox

logger = logging.getLogger(__name__)

TradesChangedCallback = Callable[[Session, str], Any]


def brokerage_slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")


def connection_to_response(connection: ExchangeConnection) -> dict[str, Any]:
    metadata = connection.connection_metadata or {}
    return {
        "id": connection.id,
        "exchange": connection.exchange,
        "label": connection.label,
        "brokerageName": metadata.get("brokerage_name"),
        "isActive": connection.is_active,
        "createdAt": to_iso(connection.created_at),
        "updatedAt": to_iso(connection.updated_at),
    }


@dataclass
class DeletionResult:
    api_trades_deleted: int = 0
    snapshots_deleted: int = 0
    csv_files_deleted: int = 0
    csv_files_unlinked: int = 0
    csv_trades_deleted: int = 0
    analytics_recomputed: bool = False

    @property
    def total_trades_deleted(self) -> int:
        return self.api_trades_deleted + self.csv_trades_deleted

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "message": "Exchange connection deleted successfully",
            "apiTradesDeleted": self.api_trades_deleted,
            "snapshotsDeleted": self.snapshots_deleted,
            "csvFilesDeleted": self.csv_files_deleted,
            "csvFilesUnlinked": self.csv_files_unlinked,
            "csvTradesDeleted": self.csv_trades_deleted,
            "totalTradesDeleted": self.total_trades_deleted,
        }


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    deactivated: int = 0

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "connectionsCreated": self.created,
            "connectionsUpdated": self.updated,
            "connectionsDeactivated": self.deactivated,
            "message": f"Synced {self.created + self.updated} SnapTrade connection(s)",
        }


class ConnectionService:
    """
    Manages a user's exchange connections.

    Args:
        on_trades_changed: Called with (db, user_id) after a deletion removed
            trades. Its failures are logged, never raised.
        secrets: Encrypts API keys; without it connect_exchange() and
            update_keys() raise EncryptionNotConfiguredError
    """

    def __init__(
            self,
            on_trades_changed: TradesChangedCallback | None = None,
            secrets: "SecretBox | None" = None,
    ) -> None:
        self._on_trades_changed = on_trades_changed
        self._secrets = secrets

    def list_connections(self, db: Session, user_id: str, active_only: bool = True) -> list[ExchangeConnection]:
        """Connections of a user, newest first."""
        query = select(ExchangeConnection).where(ExchangeConnection.user_id == user_id)
        if active_only:
            query = query.where(ExchangeConnection.is_active.is_(True))
        return list(db.scalars(query.order_by(ExchangeConnection.created_at.desc())))

    def get_connection(self, db: Session, user_id: str, connection_id: str) -> ExchangeConnection:
        """
        Raises:
            ConnectionNotFoundError: No such connection for this user
        """
        connection = db.scalar(
            select(ExchangeConnection).where(
                ExchangeConnection.id == connection_id,
                ExchangeConnection.user_id == user_id,
            )
        )
        if connection is None:
            raise ConnectionNotFoundError(connection_id)
        return connection

    # =========================================================================
    # API KEYS
    # =========================================================================

    def _encrypt_credentials(self, api_key: str, api_secret: str) -> tuple[str, str]:
        if self._secrets is None:
            raise EncryptionNotConfiguredError()

        api_key, api_secret = (api_key or "").strip(), (api_secret or "").strip()
        if not api_key or not api_secret:
            raise ValidationError("API key and API secret are required", code="MISSING_CREDENTIALS")
        return self._secrets.encrypt(api_key), self._secrets.encrypt(api_secret)

    def connect_exchange(
            self,
            db: Session,
            user_id: str,
            exchange: str,
            api_key: str,
            api_secret: str,
    ) -> tuple[ExchangeConnection, bool]:
        """
        Create or refresh the user's connection to an API-key exchange.

        An existing connection for the same exchange gets the new keys and is
        reactivated; otherwise a new one is created.

        Returns:
            (connection, created)

        Raises:
            ValidationError: Unsupported exchange or blank credentials
            EncryptionNotConfiguredError: No SecretBox configured
            PersistenceError: The connection could not be saved
        """
        exchange = (exchange or "").strip().lower()
        if exchange not in API_KEY_EXCHANGES:
            raise ValidationError(
                f"Invalid exchange. Supported: {', '.join(API_KEY_EXCHANGES)}",
                field="exchange",
                code="UNSUPPORTED_EXCHANGE",
            )
        key_encrypted, secret_encrypted = self._encrypt_credentials(api_key, api_secret)

        connection = db.scalar(
            select(ExchangeConnection)
            .where(ExchangeConnection.user_id == user_id, ExchangeConnection.exchange == exchange)
            .order_by(ExchangeConnection.created_at)
            .limit(1)
        )
        created = connection is None

        try:
            if created:
                connection = ExchangeConnection(user_id=user_id, exchange=exchange, is_active=True)
                db.add(connection)
            else:
                connection.is_active = True
                connection.updated_at = datetime.now(timezone.utc)
            connection.api_key_encrypted = key_encrypted
            connection.api_secret_encrypted = secret_encrypted
            db.commit()
            db.refresh(connection)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to save {exchange} connection for user {user_id}: {e}", exc_info=True)
            raise PersistenceError("Failed to save exchange connection", db_error=str(e))

        logger.info(f"{'Created' if created else 'Updated'} {exchange} connection {connection.id} for user {user_id}")
        return connection, created

    def update_keys(
            self,
            db: Session,
            user_id: str,
            connection_id: str,
            api_key: str,
            api_secret: str,
    ) -> ExchangeConnection:
        """
        Replace the API key and secret of a connection and reactivate it.

        Raises:
            ConnectionNotFoundError: No such connection for this user
            ValidationError: Blank credentials
            EncryptionNotConfiguredError: No SecretBox configured
            PersistenceError: The keys could not be saved
        """
        connection = self.get_connection(db, user_id, connection_id)
        key_encrypted, secret_encrypted = self._encrypt_credentials(api_key, api_secret)

        try:
            connection.api_key_encrypted = key_encrypted
            connection.api_secret_encrypted = secret_encrypted
            connection.is_active = True
            connection.updated_at = datetime.now(timezone.utc)
            db.commit()
            db.refresh(connection)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to update API keys of connection {connection_id}: {e}", exc_info=True)
            raise PersistenceError("Failed to update API keys", db_error=str(e))

        logger.info(f"Updated API keys of connection {connection_id} for user {user_id}")
        return connection

    # =========================================================================
    # DELETE
    # =========================================================================

    def preview_delete(self, db: Session, user_id: str, connection_id: str) -> dict[str, Any]:
        """Counts of what delete_connection() would remove."""
        connection = self.get_connection(db, user_id, connection_id)

        api_trades = db.scalar(
            select(func.count(Trade.id)).where(
                Trade.user_id == user_id,
                Trade.exchange_connection_id == connection_id,
                Trade.csv_upload_id.is_(None),
            )
        ) or 0
        linked = list(
            db.scalars(
                select(CsvUpload).where(
                    CsvUpload.user_id == user_id,
                    CsvUpload.exchange_connection_id == connection_id,
                )
            )
        )
        csv_trades = 0
        if linked:
            csv_trades = db.scalar(
                select(func.count(Trade.id)).where(
                    Trade.user_id == user_id,
                    Trade.csv_upload_id.in_([upload.id for upload in linked]),
                )
            ) or 0

        return {
            "success": True,
            "connection": connection_to_response(connection),
            "apiTradesCount": api_trades,
            "linkedCsvFiles": [
                {"id": upload.id, "filename": upload.filename, "tradesCount": upload.trades_count}
                for upload in linked
            ],
            "csvTradesCount": csv_trades,
        }

    def delete_connection(
            self,
            db: Session,
            user_id: str,
            connection_id: str,
            delete_linked_csvs: bool = False,
    ) -> DeletionResult:
        """
        Delete a connection and its data.

        Raises:
            ConnectionNotFoundError: No such connection for this user
            PersistenceError: Trades, uploads or the connection could not be removed
        """
        connection = self.get_connection(db, user_id, connection_id)
        result = DeletionResult()

        logger.info(
            f"Deleting connection {connection_id} ({connection.exchange}) for user {user_id}, "
            f"delete linked CSVs: {delete_linked_csvs}"
        )

        try:
            result.api_trades_deleted = db.execute(
                delete(Trade).where(
                    Trade.user_id == user_id,
                    Trade.exchange_connection_id == connection_id,
                    Trade.csv_upload_id.is_(None),
                )
            ).rowcount
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to delete API trades of connection {connection_id}: {e}", exc_info=True)
            raise PersistenceError("Failed to delete API-imported trades", db_error=str(e))

        try:
            result.snapshots_deleted = db.execute(
                delete(PortfolioSnapshot).where(
                    PortfolioSnapshot.user_id == user_id,
                    PortfolioSnapshot.connection_id == connection_id,
                )
            ).rowcount
            db.commit()
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to delete snapshots of connection {connection_id}, continuing: {e}")

        upload_ids = list(
            db.scalars(
                select(CsvUpload.id).where(
                    CsvUpload.user_id == user_id,
                    CsvUpload.exchange_connection_id == connection_id,
                )
            )
        )

        try:
            if upload_ids and delete_linked_csvs:
                result.csv_trades_deleted = db.execute(
                    delete(Trade).where(Trade.user_id == user_id, Trade.csv_upload_id.in_(upload_ids))
                ).rowcount
                result.csv_files_deleted = db.execute(
                    delete(CsvUpload).where(CsvUpload.user_id == user_id, CsvUpload.id.in_(upload_ids))
                ).rowcount
            elif upload_ids:
                # CSV trades keep their rows but must not follow the connection's cascade
                db.execute(
                    update(Trade)
                    .where(Trade.user_id == user_id, Trade.csv_upload_id.in_(upload_ids))
                    .values(exchange_connection_id=None)
                )
                result.csv_files_unlinked = db.execute(
                    update(CsvUpload)
                    .where(CsvUpload.user_id == user_id, CsvUpload.id.in_(upload_ids))
                    .values(exchange_connection_id=None)
                ).rowcount

            db.execute(
                delete(ExchangeConnection).where(
                    ExchangeConnection.id == connection_id,
                    ExchangeConnection.user_id == user_id,
                )
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to delete connection {connection_id}: {e}", exc_info=True)
            raise PersistenceError("Failed to delete exchange connection", db_error=str(e))

        logger.info(
            f"Deleted connection {connection_id}: {result.api_trades_deleted} API trades, "
            f"{result.csv_files_deleted} CSV files ({result.csv_trades_deleted} trades), "
            f"{result.csv_files_unlinked} CSV files unlinked"
        )

        if result.total_trades_deleted > 0 and self._on_trades_changed is not None:
            try:
                self._on_trades_changed(db, user_id)
                result.analytics_recomputed = True
            except Exception as e:
                logger.warning(f"Analytics recompute after deleting connection failed for user {user_id}: {e}")

        return result

    # =========================================================================
    # SNAPTRADE BROKERAGES
    # =========================================================================

    def sync_brokerages(self, db: Session, user_id: str, brokerage_names: Iterable[str]) -> SyncResult:
        """
        Mirror the aggregator's brokerages as connections.

        Each brokerage gets one active "snaptrade-<slug>" connection; existing
        snaptrade connections whose brokerage is gone are deactivated.
        """
        wanted = {name.strip(): None for name in brokerage_names if name and name.strip()}
        existing = list(
            db.scalars(
                select(ExchangeConnection).where(
                    ExchangeConnection.user_id == user_id,
                    ExchangeConnection.exchange.startswith(SNAPTRADE_EXCHANGE),
                )
            )
        )
        by_name = {brokerage_display_name(conn).lower(): conn for conn in existing}
        now = datetime.now(timezone.utc)
        result = SyncResult()

        try:
            for name in wanted:
                connection = by_name.get(name.lower())
                if connection is None:
                    db.add(ExchangeConnection(
                        user_id=user_id,
                        exchange=f"{SNAPTRADE_EXCHANGE}-{brokerage_slug(name)}",
                        label=name,
                        is_active=True,
                        connection_metadata={"brokerage_name": name},
                    ))
                    result.created += 1
                else:
                    connection.is_active = True
                    connection.connection_metadata = {**(connection.connection_metadata or {}), "brokerage_name": name}
                    connection.updated_at = now
                    result.updated += 1

            wanted_lower = {name.lower() for name in wanted}
            for key, connection in by_name.items():
                if key not in wanted_lower and connection.is_active:
                    connection.is_active = False
                    connection.updated_at = now
                    result.deactivated += 1

            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to sync SnapTrade connections for user {user_id}: {e}", exc_info=True)
            raise PersistenceError("Failed to sync SnapTrade connections", db_error=str(e))

        logger.info(
            f"SnapTrade connections synced for user {user_id}: {result.created} created, "
            f"{result.updated} updated, {result.deactivated} deactivated"
        )
        return result
