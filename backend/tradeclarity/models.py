# backend/tradeclarity/models.py
import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import String, Date, DateTime, ForeignKey, Numeric, UniqueConstraint, Boolean, JSON, BigInteger, Integer, Index, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class AccountType(str, enum.Enum):
    SPOT = "SPOT"
    FUTURES = "FUTURES"

    # Only valid as an upload hint, never stored on a trade
    BOTH = "BOTH"


class TradeSide(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"
    INCOME = "INCOME"  # Futures income rows (realized PnL, funding, commission)


class User(Base):
    """
    Local mirror of an auth-service user.

    The id is the token subject issued by the managed auth service; rows are
    created lazily on first authenticated request.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str | None] = mapped_column(String, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    connections: Mapped[list["ExchangeConnection"]] = relationship(
        back_populates="owner",
        cascade="all, delete-orphan",
    )


class ExchangeConnection(Base):
    """
    A user's link to one exchange or brokerage account.

    SnapTrade brokerages use exchange names of the form "snaptrade-<slug>",
    with the display name kept in metadata["brokerage_name"].
    """
    __tablename__ = "exchange_connections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    exchange: Mapped[str] = mapped_column(String, index=True)
    label: Mapped[str | None] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    connection_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, default=dict)
    # SecretBox ciphertext; only API-key exchanges carry credentials
    api_key_encrypted: Mapped[str | None] = mapped_column(Text)
    api_secret_encrypted: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    owner: Mapped["User"] = relationship(back_populates="connections")


class CsvUpload(Base):
    """Metadata about an uploaded CSV file. Its trades are deleted with it."""
    __tablename__ = "csv_uploads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    filename: Mapped[str] = mapped_column(String)
    label: Mapped[str | None] = mapped_column(String)
    account_type: Mapped[str] = mapped_column(String(16))
    # NULL for "Other" exchanges or after the connection was removed
    exchange_connection_id: Mapped[str | None] = mapped_column(
        ForeignKey("exchange_connections.id", ondelete="SET NULL"), index=True
    )
    exchange: Mapped[str | None] = mapped_column(String)
    size: Mapped[int] = mapped_column(BigInteger, default=0)
    trades_count: Mapped[int] = mapped_column(Integer, default=0)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)


class Trade(Base):
    """
    Canonical trade record, one row per (user, exchange, trade_id).

    Spot trades carry side BUY/SELL. Futures income rows carry side INCOME,
    zero quantity and price, and the signed income in quote_quantity.
    """
    __tablename__ = "trades"
    __table_args__ = (
        UniqueConstraint("user_id", "exchange", "trade_id", name="uq_trade_user_exchange_trade_id"),
        Index("ix_trades_user_trade_time", "user_id", "trade_time"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    exchange: Mapped[str] = mapped_column(String, index=True)
    exchange_connection_id: Mapped[str | None] = mapped_column(
        ForeignKey("exchange_connections.id", ondelete="CASCADE"), index=True
    )
    csv_upload_id: Mapped[str | None] = mapped_column(
        ForeignKey("csv_uploads.id", ondelete="CASCADE"), index=True
    )

    symbol: Mapped[str] = mapped_column(String)
    side: Mapped[str] = mapped_column(String(8))
    type: Mapped[str | None] = mapped_column(String(32))
    account_type: Mapped[str] = mapped_column(String(16), default=AccountType.SPOT.value)
    is_futures: Mapped[bool] = mapped_column(Boolean, default=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(28, 10), default=Decimal("0"))
    price: Mapped[Decimal] = mapped_column(Numeric(28, 10), default=Decimal("0"))
    quote_quantity: Mapped[Decimal] = mapped_column(Numeric(28, 10), default=Decimal("0"))
    commission: Mapped[Decimal] = mapped_column(Numeric(28, 10), default=Decimal("0"))
    commission_asset: Mapped[str | None] = mapped_column(String(16))

    timestamp: Mapped[int | None] = mapped_column(BigInteger)  # Epoch ms as sent by the source
    trade_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    trade_id: Mapped[str] = mapped_column(String)
    order_id: Mapped[str | None] = mapped_column(String)

    raw_data: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class PortfolioSnapshot(Base):
    """
    Point-in-time holdings of one connection.

    Snapshots are never updated; a newer snapshot supersedes older ones for
    the same connection.
    """
    __tablename__ = "portfolio_snapshots"
    __table_args__ = (
        Index("ix_portfolio_snapshots_user_connection_time", "user_id", "connection_id", "snapshot_time"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    connection_id: Mapped[str | None] = mapped_column(
        ForeignKey("exchange_connections.id", ondelete="CASCADE"), index=True
    )
    exchange: Mapped[str] = mapped_column(String)
    holdings: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    total_portfolio_value: Mapped[Decimal] = mapped_column(Numeric(28, 10), default=Decimal("0"))
    total_spot_value: Mapped[Decimal] = mapped_column(Numeric(28, 10), default=Decimal("0"))
    total_futures_value: Mapped[Decimal] = mapped_column(Numeric(28, 10), default=Decimal("0"))
    primary_currency: Mapped[str] = mapped_column(String(3), default="USD")
    account_type: Mapped[str | None] = mapped_column(String(16))
    snapshot_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class AnalyticsCacheEntry(Base):
    """
    Per-user analytics cache, derived from trades and rebuildable at any time.

    Valid while trades_hash matches the user's current trade set and
    expires_at is in the future.
    """
    __tablename__ = "user_analytics_cache"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    analytics_data: Mapped[dict[str, Any]] = mapped_column(JSON)
    ai_context: Mapped[dict[str, Any]] = mapped_column(JSON)
    total_trades: Mapped[int] = mapped_column(Integer, default=0)
    last_trade_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    trades_hash: Mapped[str] = mapped_column(String(64))
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class CurrencyExchangeRate(Base):
    """Daily rate per currency, expressed in units per 1 USD (e.g. INR 88.73)."""
    __tablename__ = "currency_exchange_rates"
    __table_args__ = (
        UniqueConstraint("currency_code", "rate_date", name="uq_currency_rate_date"),
        Index("ix_currency_rates_code_date", "currency_code", "rate_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    currency_code: Mapped[str] = mapped_column(String(3))
    rate: Mapped[Decimal] = mapped_column(Numeric(20, 6))
    rate_date: Mapped[date] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class SnaptradeUser(Base):
    """Aggregator registration of a user. One per user, secret stored encrypted."""
    __tablename__ = "snaptrade_users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True)
    snaptrade_user_id: Mapped[str] = mapped_column(String, unique=True)
    user_secret_encrypted: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
