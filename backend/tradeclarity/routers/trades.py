# backend/tradeclarity/routers/trades.py
"""
Trade storage endpoints.

All sources (exchange APIs, CSV imports, the brokerage aggregator) end up
here as canonical trades. Storing new trades triggers an analytics
recompute for the user.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from tradeclarity.database import get_db
from tradeclarity.dependencies import (
    bearer_scheme,
    get_current_user_id,
    get_trade_store,
    is_internal_caller,
    resolve_target_user_id,
)
from tradeclarity.middleware.rate_limit import limiter, RATE_LIMIT_DEFAULT, RATE_LIMIT_WRITE
from tradeclarity.schemas.errors import ErrorDetail
from tradeclarity.schemas.trades import StoreTradesRequest
from tradeclarity.services.trades import TradeStore


router = APIRouter(
    prefix="/api/trades",
    tags=["Trades"],
)


@router.post(
    "/store",
    summary="Store a batch of trades",
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "userId sent without the internal service key"},
        500: {"description": "Trades could not be stored", "model": ErrorDetail},
    },
)
@limiter.limit(RATE_LIMIT_WRITE)
def store_trades(
        request: Request,
        body: StoreTradesRequest,
        internal: bool = Depends(is_internal_caller),
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
        db: Session = Depends(get_db),
        store: TradeStore = Depends(get_trade_store),
) -> dict[str, Any]:
    """
    Store spot trades and futures income for a user.

    **Deduplication:** trades already stored for the same
    (user, exchange, trade id) are skipped and counted in `alreadyExisted`.

    **Snapshot:** when `metadata` carries `spotHoldings` and
    `totalPortfolioValue`, a portfolio snapshot is saved as well.

    Inserting at least one new trade recomputes the analytics cache.
    """
    user_id = resolve_target_user_id(body.user_id, internal, credentials, db)

    result = store.store(
        db,
        user_id,
        body.exchange,
        spot_trades=body.spot_trades,
        futures_income=body.futures_income,
        connection_id=body.connection_id,
        csv_upload_id=body.csv_upload_id,
        metadata=body.metadata,
    )
    return result.to_response()


@router.get(
    "/fetch",
    summary="Fetch stored trades in analyzer format",
    responses={500: {"description": "Trades could not be read", "model": ErrorDetail}},
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def fetch_trades(
        request: Request,
        connection_id: str | None = Query(default=None, alias="connectionId"),
        exchange: str | None = Query(default=None),
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        store: TradeStore = Depends(get_trade_store),
) -> dict[str, Any]:
    """
    Return the user's trades as spot and futures wire records.

    Filter by `connectionId`, or by `exchange` when no connection is given.
    """
    return store.fetch(db, user_id, connection_id=connection_id, exchange=exchange)


@router.get(
    "/stats",
    summary="Trade counts and portfolio totals",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def trade_stats(
        request: Request,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        store: TradeStore = Depends(get_trade_store),
) -> dict[str, Any]:
    return store.stats(db, user_id)
