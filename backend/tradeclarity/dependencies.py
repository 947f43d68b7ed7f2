# backend/tradeclarity/dependencies.py
"""
Dependency injection module for FastAPI services.

This module provides singleton service instances that are shared across
all requests. This is more efficient than creating new instances per request
and ensures shared state (like caches) works correctly.

Services are lazily initialized on first use to avoid import-time side effects.

Usage in routers:
    from tradeclarity.dependencies import (
        get_analytics_cache_service,
        get_trade_store,
        get_current_user_id,
    )

    @router.post("/compute")
    def compute(
        service: AnalyticsCacheService = Depends(get_analytics_cache_service),
        user_id: str = Depends(get_current_user_id),
    ):
        ...
"""

import hmac
import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from tradeclarity.config import settings
from tradeclarity.database import get_db, upsert_statement
from tradeclarity.models import User
from tradeclarity.services.analytics import AnalyticsCacheService, TradeAnalyzer
from tradeclarity.services.auth.jwt_handler import JWTHandler
from tradeclarity.services.connections import ConnectionService
from tradeclarity.services.csv_import import ColumnDetectionService, CsvImportService, CsvUploadService
from tradeclarity.services.currency import (
    CurrencyRateService,
    DatabaseRatesProvider,
    FreeApiRatesProvider,
    RatesCache,
    StaticRatesProvider,
)
from tradeclarity.services.exceptions import (
    InvalidTokenError,
    SnaptradeNotConfiguredError,
    TokenExpiredError,
)
from tradeclarity.services.portfolio import PortfolioAggregator
from tradeclarity.services.snaptrade import SecretBox, SnaptradeClient, SnaptradeService
from tradeclarity.services.trades import TradeStore
from tradeclarity.utils.context import set_user_id

logger = logging.getLogger(__name__)

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer(auto_error=False)

INTERNAL_SERVICE_KEY_HEADER = "X-Internal-Service-Key"


# =============================================================================
# SINGLETON SERVICE INSTANCES
# =============================================================================
# Using @lru_cache ensures the function returns the same instance on every call
#
# Order matters: define dependencies before dependents
# 1. get_portfolio_aggregator, get_csv_* (no deps)
# 2. get_analytics_cache_service (depends on aggregator)
# 3. get_trade_store, get_connection_service (depend on analytics)
# 4. get_snaptrade_service (depends on connections, trade store)


@lru_cache(maxsize=1)
def get_csv_import_service() -> CsvImportService:
    logger.debug("Initializing singleton CsvImportService")
    return CsvImportService()


@lru_cache(maxsize=1)
def get_csv_upload_service() -> CsvUploadService:
    logger.debug("Initializing singleton CsvUploadService")
    return CsvUploadService()


@lru_cache(maxsize=1)
def get_column_detection_service() -> ColumnDetectionService:
    """
    Get the singleton ColumnDetectionService instance.

    Shares the header-keyed detection cache across all requests.
    """
    logger.debug("Initializing singleton ColumnDetectionService")
    return ColumnDetectionService(
        api_key=settings.anthropic_api_key,
        api_url=settings.ai_api_url,
        model=settings.ai_model,
        api_version=settings.ai_api_version,
    )


@lru_cache(maxsize=1)
def get_portfolio_aggregator() -> PortfolioAggregator:
    logger.debug("Initializing singleton PortfolioAggregator")
    return PortfolioAggregator()


@lru_cache(maxsize=1)
def get_analytics_cache_service() -> AnalyticsCacheService:
    """Get the singleton AnalyticsCacheService instance."""
    logger.debug("Initializing singleton AnalyticsCacheService")
    return AnalyticsCacheService(
        analyzer=TradeAnalyzer(),
        portfolio=get_portfolio_aggregator(),
    )


def _recompute_analytics(db: Session, user_id: str) -> None:
    get_analytics_cache_service().compute(db, user_id, trigger="trades_changed")


@lru_cache(maxsize=1)
def get_trade_store() -> TradeStore:
    """
    Get the singleton TradeStore instance.

    New trades trigger an analytics recompute for their user.
    """
    logger.debug("Initializing singleton TradeStore")
    return TradeStore(on_trades_inserted=_recompute_analytics)


@lru_cache(maxsize=1)
def get_secret_box() -> SecretBox | None:
    """SecretBox over ENCRYPTION_KEY, or None when it is not set."""
    if not settings.is_encryption_configured:
        logger.warning("ENCRYPTION_KEY not set, exchange API keys cannot be stored")
        return None
    return SecretBox(settings.encryption_key)


@lru_cache(maxsize=1)
def get_connection_service() -> ConnectionService:
    logger.debug("Initializing singleton ConnectionService")
    return ConnectionService(on_trades_changed=_recompute_analytics, secrets=get_secret_box())


@lru_cache(maxsize=1)
def get_currency_rate_service() -> CurrencyRateService:
    """
    Get the singleton CurrencyRateService instance.

    Owns the 15 minute rates cache shared by all requests.
    """
    logger.debug("Initializing singleton CurrencyRateService")
    return CurrencyRateService(
        providers=[
            FreeApiRatesProvider(api_url=settings.fx_free_api_url),
            DatabaseRatesProvider(),
            StaticRatesProvider(),
        ],
        cache=RatesCache(),
    )


@lru_cache(maxsize=1)
def _build_snaptrade_service() -> SnaptradeService:
    logger.debug("Initializing singleton SnaptradeService")
    return SnaptradeService(
        client=SnaptradeClient(
            client_id=settings.snaptrade_client_id,
            consumer_key=settings.snaptrade_consumer_key,
            api_url=settings.snaptrade_api_url,
        ),
        secrets=get_secret_box(),
        connections=get_connection_service(),
        trade_store=get_trade_store(),
    )


def get_snaptrade_service() -> SnaptradeService:
    """
    Get the singleton SnaptradeService instance.

    Raises:
        SnaptradeNotConfiguredError: Aggregator credentials or ENCRYPTION_KEY missing
    """
    if not settings.is_snaptrade_configured:
        raise SnaptradeNotConfiguredError()
    return _build_snaptrade_service()


# =============================================================================
# AUTHENTICATION DEPENDENCIES
# =============================================================================


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _ensure_user(db: Session, user_id: str, email: str | None) -> None:
    """Mirror the auth service's user locally on first sight."""
    if db.get(User, user_id) is not None:
        return

    stmt = upsert_statement(db, User).values(id=user_id, email=email).on_conflict_do_nothing(
        index_elements=["id"]
    )
    try:
        db.execute(stmt)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create local user {user_id}: {e}", exc_info=True)
        raise
    logger.info(f"Created local user record for {user_id}")


def authenticate(credentials: HTTPAuthorizationCredentials | None, db: Session) -> str:
    """
    Resolve the user id of a bearer token.

    Raises:
        HTTPException 401: No token, or the token is invalid or expired
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    try:
        payload = JWTHandler.validate_access_token(credentials.credentials)
    except TokenExpiredError:
        raise _unauthorized("Token has expired")
    except InvalidTokenError as e:
        raise _unauthorized(str(e))

    user_id = str(payload["sub"])
    _ensure_user(db, user_id, payload.get("email"))
    set_user_id(user_id)
    return user_id


def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: Annotated[Session, Depends(get_db)],
) -> str:
    """
    Dependency that extracts and validates the current user from JWT.

    Usage:
        @router.get("/protected")
        def protected_endpoint(user_id: str = Depends(get_current_user_id)):
            return {"user_id": user_id}

    Raises:
        HTTPException 401: If no token provided or token is invalid/expired
    """
    return authenticate(credentials, db)


def is_internal_caller(
    x_internal_service_key: Annotated[str | None, Header(alias=INTERNAL_SERVICE_KEY_HEADER)] = None,
) -> bool:
    """True when the request carries the configured internal service key."""
    expected = settings.internal_service_key
    if not expected or not x_internal_service_key:
        return False
    return hmac.compare_digest(x_internal_service_key.encode("utf-8"), expected.encode("utf-8"))


def resolve_target_user_id(
    body_user_id: str | None,
    internal: bool,
    credentials: HTTPAuthorizationCredentials | None,
    db: Session,
) -> str:
    """
    User a request acts for.

    A userId in the body is honored only for internal callers; everyone
    else acts for the bearer token's subject.

    Raises:
        HTTPException 401: No valid token and no internal key
        HTTPException 403: userId sent without the internal key
    """
    if body_user_id and internal:
        _ensure_user(db, body_user_id, None)
        set_user_id(body_user_id)
        return body_user_id

    user_id = authenticate(credentials, db)
    if body_user_id and body_user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="userId may only be set by internal services",
        )
    return user_id


# =============================================================================
# CACHE MANAGEMENT
# =============================================================================

def clear_service_caches() -> None:
    """
    Clear all service caches.

    Useful for testing or when you need to reset state.
    """
    get_csv_import_service.cache_clear()
    get_csv_upload_service.cache_clear()
    get_column_detection_service.cache_clear()
    get_portfolio_aggregator.cache_clear()
    get_analytics_cache_service.cache_clear()
    get_trade_store.cache_clear()
    get_secret_box.cache_clear()
    get_connection_service.cache_clear()
    get_currency_rate_service.cache_clear()
    _build_snaptrade_service.cache_clear()
    logger.info("Cleared all service singleton caches")
