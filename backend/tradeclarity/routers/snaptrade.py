# backend/tradeclarity/routers/snaptrade.py
"""
SnapTrade brokerage aggregator endpoints.

Every endpoint returns 503 SNAPTRADE_NOT_CONFIGURED when the aggregator
credentials or ENCRYPTION_KEY are missing.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from tradeclarity.database import get_db
from tradeclarity.dependencies import get_current_user_id, get_snaptrade_service
from tradeclarity.middleware.rate_limit import limiter, RATE_LIMIT_DEFAULT, RATE_LIMIT_WRITE
from tradeclarity.schemas.connections import SnaptradeFetchRequest
from tradeclarity.schemas.errors import ErrorDetail
from tradeclarity.services.snaptrade import SnaptradeService


router = APIRouter(
    prefix="/api/snaptrade",
    tags=["SnapTrade"],
)


@router.post(
    "/register",
    summary="Register the user with SnapTrade",
    responses={
        409: {"description": "SnapTrade already knows this user", "model": ErrorDetail},
        502: {"description": "SnapTrade request failed", "model": ErrorDetail},
        503: {"description": "SnapTrade not configured", "model": ErrorDetail},
    },
)
@limiter.limit(RATE_LIMIT_WRITE)
def register(
        request: Request,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: SnaptradeService = Depends(get_snaptrade_service),
) -> dict[str, Any]:
    """
    Create the user's SnapTrade identity, or return the existing one.

    Safe to call repeatedly and concurrently: the registration row is
    written with an atomic insert-or-fetch, so `alreadyExists: true` is
    returned whenever a row was already there.
    """
    return service.register(db, user_id)


@router.get(
    "/check-registration",
    summary="Check SnapTrade registration",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def check_registration(
        request: Request,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: SnaptradeService = Depends(get_snaptrade_service),
) -> dict[str, Any]:
    return service.check_registration(db, user_id)


@router.post(
    "/sync-connections",
    summary="Sync brokerage connections from SnapTrade",
    responses={404: {"description": "User not registered", "model": ErrorDetail}},
)
@limiter.limit(RATE_LIMIT_WRITE)
def sync_connections(
        request: Request,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: SnaptradeService = Depends(get_snaptrade_service),
) -> dict[str, Any]:
    """
    Mirror the user's linked brokerages as exchange connections.

    Creates one `snaptrade-<brokerage>` connection per brokerage, reactivates
    returning ones and deactivates those no longer linked.
    """
    return service.sync_connections(db, user_id)


@router.post(
    "/fetch-and-store",
    summary="Import SnapTrade activities as trades",
    responses={
        404: {"description": "User not registered", "model": ErrorDetail},
        502: {"description": "SnapTrade request failed", "model": ErrorDetail},
    },
)
@limiter.limit(RATE_LIMIT_WRITE)
def fetch_and_store(
        request: Request,
        body: SnaptradeFetchRequest | None = None,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: SnaptradeService = Depends(get_snaptrade_service),
) -> dict[str, Any]:
    """
    Fetch brokerage activities, keep the BUY/SELL ones and store them.

    With `accountId`, the account's holdings are stored as a portfolio
    snapshot too. Only activities not stored before count as new trades.
    """
    body = body or SnaptradeFetchRequest()
    return service.fetch_and_store(
        db,
        user_id,
        start_date=body.start_date.isoformat() if body.start_date else None,
        end_date=body.end_date.isoformat() if body.end_date else None,
        account_id=body.account_id,
    )
