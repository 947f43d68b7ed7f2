# backend/tradeclarity/main.py
"""
FastAPI application entry point.

This file:
- Configures application-wide logging
- Creates the FastAPI application
- Registers global exception handlers
- Registers all routers
- Defines global endpoints (health checks)
"""

import logging

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from tradeclarity.config import settings
from tradeclarity.database import get_db
from tradeclarity.routers import (
    analytics_router,
    connections_router,
    csv_import_router,
    currency_router,
    snaptrade_router,
    trades_router,
)
from tradeclarity.schemas.errors import ErrorDetail, ValidationErrorDetail
from tradeclarity.services.exceptions import (
    ServiceError,
    ValidationError,
    NotFoundError,
    PersistenceError,
    ExternalServiceError,
    AINotConfiguredError,
    SnaptradeError,
    SnaptradeNotConfiguredError,
    SnaptradeUserExistsError,
    EncryptionNotConfiguredError,
    AuthenticationError,
)
from tradeclarity.utils import setup_logging

logger = logging.getLogger(__name__)

# =============================================================================
# LOGGING SETUP (must be before app creation)
# =============================================================================

setup_logging()

# =============================================================================
# APPLICATION SETUP
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description="Trade history normalization and analytics API",
    version="0.1.0",
)


# =============================================================================
# CORS MIDDLEWARE
# =============================================================================
# Must be added before other middleware
# Origins are configured via CORS_ORIGINS environment variable

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


# =============================================================================
# MIDDLEWARE (order matters: last added = first executed)
# =============================================================================

from slowapi.errors import RateLimitExceeded
from tradeclarity.middleware import (
    CorrelationIdMiddleware,
    limiter,
    rate_limit_exceeded_handler,
    SlowAPIMiddleware,
)
from tradeclarity.middleware.rate_limit import RATE_LIMIT_HEALTH

# Attach limiter to app state (required by slowapi)
app.state.limiter = limiter

app.add_middleware(SlowAPIMiddleware)

# Extracts/generates correlation IDs and adds them to response headers
app.add_middleware(CorrelationIdMiddleware)


# =============================================================================
# GLOBAL EXCEPTION HANDLERS
# =============================================================================
# Service-layer exceptions carry a machine-stable `code`; the handlers
# below only choose the HTTP status. Starlette dispatches on the most
# specific registered class, so subclasses registered here win over
# their family handler.
# =============================================================================

app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


def _error_response(
    status_code: int,
    exc: ServiceError,
    details: dict | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorDetail(
            error=exc.code,
            message=exc.message,
            details=details,
        ).model_dump(),
        headers=headers,
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle validation and CSV parse errors (400)."""
    logger.warning(f"Validation error ({exc.code}): {exc}")
    return _error_response(400, exc, details={"field": exc.field} if exc.field else None)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    """Handle missing connections, uploads and registrations (404)."""
    logger.warning(f"Not found: {exc.resource_type} {exc.resource_id}")
    details = None
    if exc.resource_type:
        details = {"resource_type": exc.resource_type, "resource_id": exc.resource_id}
    return _error_response(404, exc, details=details)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    """Handle database failures (500); the DB error text is kept for operators."""
    logger.error(f"Persistence error ({exc.code}): {exc.message}")
    return _error_response(500, exc, details={"db_error": exc.db_error} if exc.db_error else None)


@app.exception_handler(AINotConfiguredError)
async def ai_not_configured_handler(request: Request, exc: AINotConfiguredError) -> JSONResponse:
    """Handle column detection without AI credentials (503)."""
    logger.warning("AI column detection requested but not configured")
    return _error_response(503, exc)


@app.exception_handler(SnaptradeNotConfiguredError)
async def snaptrade_not_configured_handler(
    request: Request, exc: SnaptradeNotConfiguredError
) -> JSONResponse:
    """Handle aggregator requests without credentials (503)."""
    logger.warning("SnapTrade requested but not configured")
    return _error_response(503, exc)


@app.exception_handler(SnaptradeUserExistsError)
async def snaptrade_user_exists_handler(
    request: Request, exc: SnaptradeUserExistsError
) -> JSONResponse:
    """Handle aggregator users we hold no credentials for (409)."""
    logger.warning(f"SnapTrade user already exists: {exc.snaptrade_user_id}")
    return _error_response(409, exc, details={"userId": exc.snaptrade_user_id})


@app.exception_handler(SnaptradeError)
async def snaptrade_error_handler(request: Request, exc: SnaptradeError) -> JSONResponse:
    """Handle aggregator failures (502)."""
    logger.error(f"SnapTrade error (upstream status {exc.status_code}): {exc}")
    return _error_response(
        502,
        exc,
        details={"upstream_status": exc.status_code} if exc.status_code else None,
    )


@app.exception_handler(ExternalServiceError)
async def external_service_error_handler(
    request: Request, exc: ExternalServiceError
) -> JSONResponse:
    """Handle failures of third-party services (502)."""
    logger.error(f"External service error from {exc.service}: {exc}")
    return _error_response(502, exc, details={"service": exc.service})


@app.exception_handler(EncryptionNotConfiguredError)
async def encryption_not_configured_handler(
    request: Request, exc: EncryptionNotConfiguredError
) -> JSONResponse:
    """Handle credential storage without ENCRYPTION_KEY (503)."""
    logger.warning("Exchange credentials submitted but encryption is not configured")
    return _error_response(503, exc)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(
    request: Request, exc: AuthenticationError
) -> JSONResponse:
    """Handle bearer token errors (401)."""
    logger.warning(f"Authentication error: {exc}")
    return _error_response(401, exc, headers={"WWW-Authenticate": "Bearer"})


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle generic service errors (500)."""
    logger.error(f"Service error: {exc}")
    return _error_response(500, exc)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """
    Handle all HTTPExceptions with consistent error format.

    Converts FastAPI's default {"detail": "..."} format to our standard
    ErrorDetail format for API consistency.
    """
    error_types = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        413: "FILE_TOO_LARGE",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
        500: "INTERNAL_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }
    error_type = error_types.get(exc.status_code, "HTTP_ERROR")

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorDetail(
            error=error_type,
            message=str(exc.detail) if exc.detail else "An error occurred",
            details=None,
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors with consistent format.

    Converts the default 422 validation error to our ValidationErrorDetail format.
    """
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    return JSONResponse(
        status_code=422,
        content=ValidationErrorDetail(details=errors).model_dump(),
    )


# =============================================================================
# ROUTER REGISTRATION
# =============================================================================

app.include_router(csv_import_router)  # /api/csv/*
app.include_router(trades_router)  # /api/trades/*
app.include_router(analytics_router)  # /api/analytics/*
app.include_router(currency_router)  # /api/currency-rate
app.include_router(connections_router)  # /api/exchange/*
app.include_router(snaptrade_router)  # /api/snaptrade/*


# =============================================================================
# GLOBAL ENDPOINTS
# =============================================================================

@app.get("/", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def root(request: Request):
    """
    API root - returns basic application info.
    """
    return {
        "message": f"Welcome to {settings.app_name}!",
        "docs": "/docs",
        "redoc": "/redoc",
    }


@app.get("/health", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def health_check(request: Request, db: Session = Depends(get_db)):
    """
    Comprehensive health check endpoint.

    Returns HTTP 503 if the database is unhealthy. Optional integrations
    (AI column detection, SnapTrade) only report whether they are
    configured and never fail the check.

    **Response Status Codes:**
    - 200: Database reachable
    - 503: Database unreachable - do not route traffic here
    """
    checks = {}
    overall_status = "healthy"

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = {
            "status": "healthy",
            "critical": True,
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = {
            "status": "unhealthy",
            "critical": True,
            "error": str(e),
        }
        overall_status = "unhealthy"

    checks["ai_column_detection"] = {
        "status": "configured" if settings.is_ai_configured else "not_configured",
        "critical": False,
    }
    checks["snaptrade"] = {
        "status": "configured" if settings.is_snaptrade_configured else "not_configured",
        "critical": False,
    }

    response_data = {
        "status": overall_status,
        "checks": checks,
    }

    if overall_status == "unhealthy":
        return JSONResponse(status_code=503, content=response_data)

    return response_data


@app.get("/health/live", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def liveness_check(request: Request):
    """
    Kubernetes liveness probe endpoint.

    Returns HTTP 200 if the application is running.
    This does NOT check dependencies - use /health/ready for that.
    """
    return {"status": "alive"}


@app.get("/health/ready", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def readiness_check(request: Request, db: Session = Depends(get_db)):
    """
    Kubernetes readiness probe endpoint.

    Returns HTTP 503 while the database is unavailable.
    """
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ready"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "error": "Database unavailable",
            },
        )
