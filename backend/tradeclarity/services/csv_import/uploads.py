# backend/tradeclarity/services/csv_import/uploads.py
"""
CSV upload records.

A CsvUpload row is saved after a file is parsed and before its trades are
stored, so that the trades can point at it (csv_upload_id). Deleting the
upload deletes every trade imported from it.
"""

import logging

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from tradeclarity.models import AccountType, CsvUpload, ExchangeConnection, Trade
from tradeclarity.services.exceptions import (
    ConnectionNotFoundError,
    CsvUploadNotFoundError,
    PersistenceError,
)
from tradeclarity.utils.date_utils import to_iso

logger = logging.getLogger(__name__)


class CsvUploadService:
    """Create, list and delete a user's CSV uploads."""

    def create_upload(
            self,
            db: Session,
            user_id: str,
            filename: str,
            account_type: AccountType,
            label: str | None = None,
            exchange: str | None = None,
            exchange_connection_id: str | None = None,
            size: int = 0,
            trades_count: int = 0,
    ) -> CsvUpload:
        """
        Save metadata for an uploaded file.

        Raises:
            ConnectionNotFoundError: exchange_connection_id is not the user's
            PersistenceError: The row could not be written
        """
        if exchange_connection_id is not None:
            owned = db.scalar(
                select(ExchangeConnection.id).where(
                    ExchangeConnection.id == exchange_connection_id,
                    ExchangeConnection.user_id == user_id,
                )
            )
            if owned is None:
                raise ConnectionNotFoundError(exchange_connection_id)

        upload = CsvUpload(
            user_id=user_id,
            filename=filename,
            label=label,
            account_type=account_type.value,
            exchange=exchange.strip().lower() if exchange else None,
            exchange_connection_id=exchange_connection_id,
            size=size,
            trades_count=trades_count,
        )

        try:
            db.add(upload)
            db.commit()
            db.refresh(upload)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to save CSV metadata for {filename}: {e}", exc_info=True)
            raise PersistenceError("Failed to save CSV metadata", db_error=str(e))

        logger.info(f"Saved CSV upload {upload.id} ({filename}, {account_type.value})")
        return upload

    def list_uploads(self, db: Session, user_id: str) -> list[CsvUpload]:
        """Uploads of a user, newest first."""
        return list(
            db.scalars(
                select(CsvUpload)
                .where(CsvUpload.user_id == user_id)
                .order_by(CsvUpload.uploaded_at.desc())
            )
        )

    def delete_upload(self, db: Session, user_id: str, upload_id: str) -> int:
        """
        Delete an upload and all trades imported from it.

        Returns:
            Number of trades deleted

        Raises:
            CsvUploadNotFoundError: No such upload for this user
        """
        upload = db.scalar(
            select(CsvUpload).where(CsvUpload.id == upload_id, CsvUpload.user_id == user_id)
        )
        if upload is None:
            raise CsvUploadNotFoundError(upload_id)

        try:
            trades_deleted = db.execute(
                delete(Trade).where(Trade.csv_upload_id == upload_id, Trade.user_id == user_id)
            ).rowcount
            db.delete(upload)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to delete CSV upload {upload_id}: {e}", exc_info=True)
            raise PersistenceError("Failed to delete CSV upload", db_error=str(e))

        logger.info(f"Deleted CSV upload {upload_id} and {trades_deleted} trades")
        return trades_deleted

    def link_upload(
            self,
            db: Session,
            user_id: str,
            upload_id: str,
            exchange_connection_id: str | None,
    ) -> CsvUpload:
        """
        Attach an upload (and its trades) to a connection, or detach it with None.

        Raises:
            CsvUploadNotFoundError: No such upload for this user
            ConnectionNotFoundError: The connection is not the user's
        """
        upload = db.scalar(
            select(CsvUpload).where(CsvUpload.id == upload_id, CsvUpload.user_id == user_id)
        )
        if upload is None:
            raise CsvUploadNotFoundError(upload_id)

        if exchange_connection_id is not None:
            owned = db.scalar(
                select(ExchangeConnection.id).where(
                    ExchangeConnection.id == exchange_connection_id,
                    ExchangeConnection.user_id == user_id,
                )
            )
            if owned is None:
                raise ConnectionNotFoundError(exchange_connection_id)

        try:
            upload.exchange_connection_id = exchange_connection_id
            db.execute(
                update(Trade)
                .where(Trade.csv_upload_id == upload_id, Trade.user_id == user_id)
                .values(exchange_connection_id=exchange_connection_id)
            )
            db.commit()
            db.refresh(upload)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to link CSV upload {upload_id}: {e}", exc_info=True)
            raise PersistenceError("Failed to link CSV upload", db_error=str(e))

        logger.info(f"Linked CSV upload {upload_id} to connection {exchange_connection_id}")
        return upload


def upload_to_response(upload: CsvUpload) -> dict:
    return {
        "id": upload.id,
        "filename": upload.filename,
        "label": upload.label,
        "accountType": upload.account_type,
        "exchange": upload.exchange,
        "exchangeConnectionId": upload.exchange_connection_id,
        "size": upload.size,
        "tradesCount": upload.trades_count,
        "uploadedAt": to_iso(upload.uploaded_at),
    }
