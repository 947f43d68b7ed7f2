# backend/tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- A fixed clock for cache expiry tests
- Sample data factories (users, connections, uploads, trades, snapshots)
- Bearer token helpers for API tests
"""

import os

# Must be set BEFORE importing tradeclarity modules (settings load at import)
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("APP_NAME", "Test App")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterator

import pytest
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tradeclarity.config import settings
from tradeclarity.middleware.rate_limit import limiter
from tradeclarity.models import (
    AccountType,
    Base,
    CsvUpload,
    ExchangeConnection,
    PortfolioSnapshot,
    Trade,
    TradeSide,
    User,
)

# Rate limits would make API tests order-dependent
limiter.enabled = False


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db(db_engine) -> Iterator[Session]:
    """Create a database session for testing."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# CLOCK
# =============================================================================

class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


# =============================================================================
# SAMPLE DATA FACTORIES
# =============================================================================

def create_user(db: Session, user_id: str = "user-1", email: str = "trader@example.com") -> User:
    """Factory function for creating User entities in the database."""
    user = User(id=user_id, email=email)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_connection(
        db: Session,
        user: User,
        exchange: str = "binance",
        label: str | None = None,
        is_active: bool = True,
        metadata: dict[str, Any] | None = None,
) -> ExchangeConnection:
    """Factory function for creating ExchangeConnection entities."""
    connection = ExchangeConnection(
        user_id=user.id,
        exchange=exchange,
        label=label,
        is_active=is_active,
        connection_metadata=metadata or {},
    )
    db.add(connection)
    db.commit()
    db.refresh(connection)
    return connection


def create_upload(
        db: Session,
        user: User,
        filename: str = "trades.csv",
        connection: ExchangeConnection | None = None,
        account_type: AccountType = AccountType.SPOT,
        exchange: str | None = "binance",
) -> CsvUpload:
    """Factory function for creating CsvUpload entities."""
    upload = CsvUpload(
        user_id=user.id,
        filename=filename,
        account_type=account_type.value,
        exchange=exchange,
        exchange_connection_id=connection.id if connection else None,
        size=1024,
        trades_count=0,
    )
    db.add(upload)
    db.commit()
    db.refresh(upload)
    return upload


def create_trade(
        db: Session,
        user: User,
        trade_id: str = "1",
        exchange: str = "binance",
        symbol: str = "BTCUSDT",
        side: TradeSide = TradeSide.BUY,
        quantity: str = "0.01",
        price: str = "50000",
        commission: str = "0.1",
        trade_time: datetime | None = None,
        connection: ExchangeConnection | None = None,
        upload: CsvUpload | None = None,
        account_type: AccountType = AccountType.SPOT,
        trade_type: str = "MARKET",
) -> Trade:
    """Factory function for creating Trade entities."""
    trade_time = trade_time or datetime(2024, 1, 1, tzinfo=timezone.utc)
    quantity_value = Decimal(quantity)
    price_value = Decimal(price)
    trade = Trade(
        user_id=user.id,
        exchange=exchange,
        exchange_connection_id=connection.id if connection else None,
        csv_upload_id=upload.id if upload else None,
        symbol=symbol,
        side=side.value,
        type=trade_type,
        account_type=account_type.value,
        is_futures=account_type == AccountType.FUTURES,
        quantity=quantity_value,
        price=price_value,
        quote_quantity=quantity_value * price_value,
        commission=Decimal(commission),
        commission_asset="USDT",
        timestamp=int(trade_time.timestamp() * 1000),
        trade_time=trade_time,
        trade_id=trade_id,
        order_id=f"order-{trade_id}",
    )
    db.add(trade)
    db.commit()
    db.refresh(trade)
    return trade


def create_snapshot(
        db: Session,
        user: User,
        connection: ExchangeConnection | None,
        holdings: list[dict[str, Any]],
        total: str,
        exchange: str = "binance",
        primary_currency: str = "USD",
        snapshot_time: datetime | None = None,
) -> PortfolioSnapshot:
    """Factory function for creating PortfolioSnapshot entities."""
    snapshot = PortfolioSnapshot(
        user_id=user.id,
        connection_id=connection.id if connection else None,
        exchange=exchange,
        holdings=holdings,
        total_portfolio_value=Decimal(total),
        total_spot_value=Decimal(total),
        total_futures_value=Decimal("0"),
        primary_currency=primary_currency,
        account_type="SPOT",
        snapshot_time=snapshot_time or datetime(2024, 1, 2, tzinfo=timezone.utc),
    )
    db.add(snapshot)
    db.commit()
    db.refresh(snapshot)
    return snapshot


# =============================================================================
# AUTH HELPERS
# =============================================================================

def make_token(
        user_id: str = "user-1",
        email: str | None = "trader@example.com",
        expires_in: timedelta = timedelta(hours=1),
        secret: str | None = None,
        audience: str | None = "authenticated",
) -> str:
    """Sign a token the way the managed auth service does."""
    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_in).timestamp()),
    }
    if email is not None:
        claims["email"] = email
    if audience is not None:
        claims["aud"] = audience
    return jwt.encode(claims, secret or settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)


def auth_headers(user_id: str = "user-1") -> dict[str, str]:
    """Authorization header carrying a valid bearer token."""
    return {"Authorization": f"Bearer {make_token(user_id)}"}


# =============================================================================
# FIXTURE EXPORTS (for convenience imports in tests)
# =============================================================================

@pytest.fixture
def sample_user(db: Session) -> User:
    """Provide a sample User for tests."""
    return create_user(db)
