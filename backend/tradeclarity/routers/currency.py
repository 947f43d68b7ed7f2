# backend/tradeclarity/routers/currency.py
"""Currency rate endpoint."""

from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from tradeclarity.database import get_db
from tradeclarity.dependencies import get_currency_rate_service
from tradeclarity.middleware.rate_limit import limiter, RATE_LIMIT_DEFAULT
from tradeclarity.services.currency import CurrencyRateService

router = APIRouter(
    prefix="/api",
    tags=["Currency"],
)


@router.get(
    "/currency-rate",
    summary="USD exchange rates",
    response_description="Units of each currency per USD",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def get_currency_rates(
        request: Request,
        db: Session = Depends(get_db),
        service: CurrencyRateService = Depends(get_currency_rate_service),
) -> dict[str, Any]:
    """
    Return rates for the supported display currencies.

    **Sources, in order:**
    1. `free-api`: live rates, accepted only when every currency is present
    2. `database`: latest stored daily rates (`ageDays` tells how old)
    3. `static`: built-in fallback table, never fails

    Results are cached in-process for 15 minutes (`cached: true`).
    No authentication required.
    """
    return service.get_rates(db)
