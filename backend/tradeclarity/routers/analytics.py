# backend/tradeclarity/routers/analytics.py
"""
Analytics cache endpoints.

The cache holds one analytics document per user. It is recomputed only
when the content hash of the user's trades changes or the row expires;
otherwise a compute call just slides the expiry window.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from tradeclarity.database import get_db
from tradeclarity.dependencies import (
    bearer_scheme,
    get_analytics_cache_service,
    get_current_user_id,
    is_internal_caller,
    resolve_target_user_id,
)
from tradeclarity.middleware.rate_limit import limiter, RATE_LIMIT_ANALYTICS, RATE_LIMIT_DEFAULT
from tradeclarity.schemas.analytics import ComputeAnalyticsRequest
from tradeclarity.schemas.errors import ErrorDetail
from tradeclarity.services.analytics import AnalyticsCacheService
from tradeclarity.services.constants import ANALYTICS_CACHE_CONTROL_HEADER

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api/analytics",
    tags=["Analytics"],
)


@router.post(
    "/compute",
    summary="Compute or refresh the analytics cache",
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "userId sent without the internal service key"},
        500: {"description": "Trades could not be read or the cache written", "model": ErrorDetail},
    },
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
def compute_analytics(
        request: Request,
        body: ComputeAnalyticsRequest | None = None,
        internal: bool = Depends(is_internal_caller),
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
        db: Session = Depends(get_db),
        service: AnalyticsCacheService = Depends(get_analytics_cache_service),
) -> dict[str, Any]:
    """
    Bring the analytics cache up to date.

    **Outcomes (all HTTP 200):**

    | Body | Meaning |
    |------|---------|
    | `cached: true, refreshed: true` | Trades unchanged, expiry extended by 1h |
    | `cached: false, computed: true` | Analytics recomputed and stored |
    | `success: false, error: NO_TRADES` | User has no trades, cache removed |

    Background callers (imports, jobs) may act for another user by sending
    `userId` together with the `X-Internal-Service-Key` header.
    """
    body = body or ComputeAnalyticsRequest()
    user_id = resolve_target_user_id(body.user_id, internal, credentials, db)

    logger.info(
        f"Analytics compute requested for user {user_id} "
        f"(trigger: {body.trigger or 'unknown'}, tradeCount: {body.trade_count})"
    )
    return service.compute(db, user_id, trigger=body.trigger)


@router.get(
    "/cache",
    summary="Read the cached analytics",
    responses={401: {"description": "Not authenticated"}},
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def get_analytics_cache(
        request: Request,
        response: Response,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: AnalyticsCacheService = Depends(get_analytics_cache_service),
) -> dict[str, Any]:
    """
    Return the cached analytics document when it has not expired.

    A miss returns `success: false, cached: false`; call
    `POST /api/analytics/compute` to fill the cache.
    """
    payload = service.get_cache(db, user_id)
    if payload.get("cached"):
        response.headers["Cache-Control"] = ANALYTICS_CACHE_CONTROL_HEADER
    return payload


@router.post(
    "/refresh",
    response_model=None,
    summary="Force an analytics recompute",
    responses={
        401: {"description": "Not authenticated"},
        500: {"description": "Recompute failed", "model": ErrorDetail},
    },
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
def refresh_analytics(
        request: Request,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: AnalyticsCacheService = Depends(get_analytics_cache_service),
) -> dict[str, Any] | JSONResponse:
    """Drop the cache row and recompute it, ignoring the trades hash."""
    result = service.refresh(db, user_id)

    if not result.get("success"):
        return JSONResponse(
            status_code=500,
            content=ErrorDetail(
                error="COMPUTE_FAILED",
                message=result.get("message") or "Failed to recompute analytics",
                details=result,
            ).model_dump(),
        )

    return {
        "success": True,
        "message": "Cache refreshed successfully",
        "computed": result.get("computed", False),
        "cached": result.get("cached", False),
        "totalTrades": result.get("totalTrades"),
        "computedAt": result.get("computedAt"),
    }
