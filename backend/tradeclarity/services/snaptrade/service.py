# backend/tradeclarity/services/snaptrade/service.py
"""
SnapTrade user lifecycle and data import.

Registration is an atomic insert-or-fetch:

    existing row? ──yes──► {alreadyExists: true}
        │ no
        ▼
    aggregator registerUser ─► encrypt secret
        ▼
    INSERT ... ON CONFLICT (user_id) DO NOTHING ─► SELECT row

Two concurrent registrations of the same user both end up returning the
single stored row; neither fails on the unique constraint.

Import:
    fetch_and_store() pulls activities (and optionally one account's
    holdings), normalizes them and hands them to TradeStore under the
    'snaptrade' exchange. Trades are routed to the per-brokerage connection
    maintained by sync_connections().
"""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from tradeclarity.database import upsert_statement
from tradeclarity.models import SnaptradeUser
from tradeclarity.services.connections import ConnectionService
from tradeclarity.services.exceptions import PersistenceError, SnaptradeUserNotFoundError
from tradeclarity.services.snaptrade.client import SnaptradeClient
from tradeclarity.services.snaptrade.secrets import SecretBox
from tradeclarity.services.trades.snaptrade import (
    SNAPTRADE_EXCHANGE,
    group_by_account,
    holdings_to_snapshot,
    transform_activities,
)
from tradeclarity.services.trades.store import TradeStore, brokerage_display_name

logger = logging.getLogger(__name__)


class SnaptradeService:
    """
    Args:
        client: Signed aggregator client
        secrets: Encrypts user secrets at rest
        connections: Maintains the per-brokerage connections
        trade_store: Persists normalized trades
    """

    def __init__(
            self,
            client: SnaptradeClient,
            secrets: SecretBox,
            connections: ConnectionService,
            trade_store: TradeStore,
    ) -> None:
        self._client = client
        self._secrets = secrets
        self._connections = connections
        self._trade_store = trade_store

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def get_registration(self, db: Session, user_id: str) -> SnaptradeUser | None:
        return db.scalar(select(SnaptradeUser).where(SnaptradeUser.user_id == user_id))

    def check_registration(self, db: Session, user_id: str) -> dict[str, Any]:
        registration = self.get_registration(db, user_id)
        return {
            "success": True,
            "isRegistered": registration is not None,
            "userId": registration.snaptrade_user_id if registration else None,
        }

    def register(self, db: Session, user_id: str) -> dict[str, Any]:
        """
        Register the user with the aggregator once.

        Raises:
            SnaptradeUserExistsError: Aggregator knows the user but no row is stored (409)
            SnaptradeError: Aggregator failure
            PersistenceError: The row could not be written
        """
        existing = self.get_registration(db, user_id)
        if existing is not None:
            logger.info(f"User {user_id} already registered with SnapTrade")
            return {
                "success": True,
                "message": "User already registered with SnapTrade",
                "userId": existing.snaptrade_user_id,
                "alreadyExists": True,
            }

        registered = self._client.register_user(user_id)
        encrypted_secret = self._secrets.encrypt(registered["userSecret"])
        now = datetime.now(timezone.utc)

        stmt = upsert_statement(db, SnaptradeUser).values(
            user_id=user_id,
            snaptrade_user_id=registered["userId"],
            user_secret_encrypted=encrypted_secret,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=["user_id"])

        try:
            db.execute(stmt)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to store SnapTrade registration for user {user_id}: {e}", exc_info=True)
            raise PersistenceError("Failed to store SnapTrade user data", db_error=str(e))

        stored = self.get_registration(db, user_id)
        if stored is None:
            raise PersistenceError("SnapTrade registration row missing after insert")

        won = stored.snaptrade_user_id == registered["userId"] and stored.user_secret_encrypted == encrypted_secret
        if not won:
            logger.warning(f"Concurrent SnapTrade registration for user {user_id}; returning stored row")

        logger.info(f"User {user_id} registered with SnapTrade as {stored.snaptrade_user_id}")
        return {
            "success": True,
            "message": "Successfully registered with SnapTrade",
            "userId": stored.snaptrade_user_id,
            "alreadyExists": not won,
        }

    def _credentials(self, db: Session, user_id: str) -> tuple[str, str]:
        registration = self.get_registration(db, user_id)
        if registration is None:
            raise SnaptradeUserNotFoundError(user_id)
        return registration.snaptrade_user_id, self._secrets.decrypt(registration.user_secret_encrypted)

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def sync_connections(self, db: Session, user_id: str) -> dict[str, Any]:
        """Create or reactivate one connection per brokerage the user has linked."""
        snaptrade_user_id, user_secret = self._credentials(db, user_id)
        accounts = self._client.list_accounts(snaptrade_user_id, user_secret)

        brokerages = [account.get("institution_name") for account in accounts if account.get("institution_name")]
        result = self._connections.sync_brokerages(db, user_id, brokerages)

        response = result.to_response()
        response["accountsFound"] = len(accounts)
        return response

    # =========================================================================
    # IMPORT
    # =========================================================================

    def fetch_and_store(
            self,
            db: Session,
            user_id: str,
            start_date: str | None = None,
            end_date: str | None = None,
            account_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Import the user's brokerage activities.

        Raises:
            SnaptradeUserNotFoundError: User never registered (404)
            SnaptradeError: Aggregator failure
            TradePersistenceError: Trades could not be stored
        """
        snaptrade_user_id, user_secret = self._credentials(db, user_id)

        activities = self._client.get_activities(
            snaptrade_user_id,
            user_secret,
            start_date=start_date,
            end_date=end_date,
            accounts=account_id,
        )
        trades = transform_activities(activities)
        accounts = group_by_account(trades)

        logger.info(
            f"Fetched {len(activities)} SnapTrade activities for user {user_id}, "
            f"transformed to {len(trades)} trades across {len(accounts)} accounts"
        )

        metadata: dict[str, Any] = {"primaryCurrency": "USD", "accountType": "SPOT", "source": SNAPTRADE_EXCHANGE}
        snapshot_connection_id: str | None = None
        if account_id:
            holdings = self._client.get_holdings(snaptrade_user_id, user_secret, account_id)
            snapshot = holdings_to_snapshot(holdings)
            if snapshot is not None:
                metadata.update(snapshot)
                institution = (holdings.get("account") or {}).get("institution_name")
                snapshot_connection_id = self._connection_for_brokerage(db, user_id, institution)

        result = self._trade_store.store(
            db,
            user_id,
            SNAPTRADE_EXCHANGE,
            spot_trades=trades,
            futures_income=[],
            connection_id=snapshot_connection_id,
            metadata=metadata,
        )

        return {
            "success": True,
            "activitiesFetched": len(activities),
            "tradesTransformed": len(trades),
            "tradesStored": result.inserted,
            "accounts": {account: len(items) for account, items in accounts.items()},
            "storeResult": result.to_response(),
        }

    def _connection_for_brokerage(self, db: Session, user_id: str, brokerage: str | None) -> str | None:
        if not brokerage:
            return None
        for connection in self._connections.list_connections(db, user_id):
            if (
                    connection.exchange.startswith(SNAPTRADE_EXCHANGE)
                    and brokerage_display_name(connection).lower() == brokerage.lower()
            ):
                return connection.id
        return None
