# backend/tests/services/csv_import/test_csv_uploads.py
"""
Tests for CsvUploadService.

This module tests:
- Creating uploads (exchange normalization, connection ownership)
- Listing uploads newest first
- Deleting uploads together with their trades
- Linking uploads (and their trades) to connections
- Response formatting
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from tradeclarity.models import AccountType, CsvUpload, Trade
from tradeclarity.services.csv_import.uploads import CsvUploadService, upload_to_response
from tradeclarity.services.exceptions import ConnectionNotFoundError, CsvUploadNotFoundError
from tests.conftest import create_connection, create_trade, create_upload, create_user


@pytest.fixture
def service() -> CsvUploadService:
    return CsvUploadService()


@pytest.fixture
def user(db):
    return create_user(db)


@pytest.fixture
def other_user(db):
    return create_user(db, user_id="user-2", email="other@example.com")


# =============================================================================
# CREATE TESTS
# =============================================================================

class TestCreateUpload:
    """Tests for CsvUploadService.create_upload()."""

    def test_creates_upload(self, db, service, user):
        upload = service.create_upload(
            db, user.id, "export.csv", AccountType.FUTURES,
            label="My futures", exchange=" Binance ", size=2048, trades_count=5,
        )

        assert upload.id is not None
        assert upload.exchange == "binance"
        assert upload.account_type == "FUTURES"
        assert upload.label == "My futures"
        assert upload.trades_count == 5

    def test_exchange_is_optional(self, db, service, user):
        upload = service.create_upload(db, user.id, "other.csv", AccountType.SPOT)

        assert upload.exchange is None
        assert upload.exchange_connection_id is None

    def test_links_to_own_connection(self, db, service, user):
        connection = create_connection(db, user)

        upload = service.create_upload(
            db, user.id, "export.csv", AccountType.SPOT, exchange_connection_id=connection.id
        )

        assert upload.exchange_connection_id == connection.id

    def test_rejects_foreign_connection(self, db, service, user, other_user):
        foreign = create_connection(db, other_user)

        with pytest.raises(ConnectionNotFoundError):
            service.create_upload(
                db, user.id, "export.csv", AccountType.SPOT, exchange_connection_id=foreign.id
            )

        assert db.scalars(select(CsvUpload)).all() == []


# =============================================================================
# LIST TESTS
# =============================================================================

class TestListUploads:
    """Tests for CsvUploadService.list_uploads()."""

    def test_newest_first_and_scoped_to_user(self, db, service, user, other_user):
        older = create_upload(db, user, filename="old.csv")
        newer = create_upload(db, user, filename="new.csv")
        create_upload(db, other_user, filename="theirs.csv")
        older.uploaded_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        newer.uploaded_at = datetime(2024, 2, 1, tzinfo=timezone.utc)
        db.commit()

        uploads = service.list_uploads(db, user.id)

        assert [u.filename for u in uploads] == ["new.csv", "old.csv"]

    def test_empty(self, db, service, user):
        assert service.list_uploads(db, user.id) == []


# =============================================================================
# DELETE TESTS
# =============================================================================

class TestDeleteUpload:
    """Tests for CsvUploadService.delete_upload()."""

    def test_deletes_upload_and_its_trades(self, db, service, user):
        upload = create_upload(db, user)
        upload_id = upload.id
        create_trade(db, user, trade_id="1", upload=upload)
        create_trade(db, user, trade_id="2", upload=upload)
        create_trade(db, user, trade_id="3")

        deleted = service.delete_upload(db, user.id, upload_id)

        assert deleted == 2
        assert db.scalar(select(CsvUpload).where(CsvUpload.id == upload_id)) is None
        assert [t.trade_id for t in db.scalars(select(Trade))] == ["3"]

    def test_unknown_upload(self, db, service, user):
        with pytest.raises(CsvUploadNotFoundError) as exc_info:
            service.delete_upload(db, user.id, "missing")

        assert exc_info.value.upload_id == "missing"

    def test_cannot_delete_another_users_upload(self, db, service, user, other_user):
        upload = create_upload(db, other_user)

        with pytest.raises(CsvUploadNotFoundError):
            service.delete_upload(db, user.id, upload.id)

        assert db.get(CsvUpload, upload.id) is not None


# =============================================================================
# LINK TESTS
# =============================================================================

class TestLinkUpload:
    """Tests for CsvUploadService.link_upload()."""

    def test_link_moves_trades_to_connection(self, db, service, user):
        upload = create_upload(db, user)
        trade = create_trade(db, user, trade_id="1", upload=upload)
        connection = create_connection(db, user)

        linked = service.link_upload(db, user.id, upload.id, connection.id)

        assert linked.exchange_connection_id == connection.id
        db.refresh(trade)
        assert trade.exchange_connection_id == connection.id

    def test_unlink(self, db, service, user):
        connection = create_connection(db, user)
        upload = create_upload(db, user, connection=connection)
        trade = create_trade(db, user, trade_id="1", upload=upload, connection=connection)

        service.link_upload(db, user.id, upload.id, None)

        db.refresh(trade)
        assert trade.exchange_connection_id is None

    def test_foreign_connection(self, db, service, user, other_user):
        upload = create_upload(db, user)
        foreign = create_connection(db, other_user)

        with pytest.raises(ConnectionNotFoundError):
            service.link_upload(db, user.id, upload.id, foreign.id)

    def test_unknown_upload(self, db, service, user):
        with pytest.raises(CsvUploadNotFoundError):
            service.link_upload(db, user.id, "missing", None)


# =============================================================================
# RESPONSE TESTS
# =============================================================================

class TestUploadToResponse:
    """Tests for upload_to_response()."""

    def test_camel_case_fields(self, db, user):
        upload = create_upload(db, user, filename="x.csv")
        upload.uploaded_at = datetime(2024, 3, 1, tzinfo=timezone.utc)

        response = upload_to_response(upload)

        assert response["filename"] == "x.csv"
        assert response["accountType"] == "SPOT"
        assert response["exchange"] == "binance"
        assert response["exchangeConnectionId"] is None
        assert response["size"] == 1024
        assert response["tradesCount"] == 0
        assert response["uploadedAt"] == "2024-03-01T00:00:00+00:00"
