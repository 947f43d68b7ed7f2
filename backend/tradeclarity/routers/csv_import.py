# backend/tradeclarity/routers/csv_import.py
"""
CSV import endpoints.

Provides endpoints for turning exported trade history files into trades
and for managing the saved upload records.

Key features:
- Column-mapping driven parsing with per-exchange layout fallback
- AI column detection with an in-process cache
- Upload records that own their trades (deleting one deletes them)
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from sqlalchemy.orm import Session

from tradeclarity.database import get_db
from tradeclarity.dependencies import (
    get_analytics_cache_service,
    get_column_detection_service,
    get_csv_import_service,
    get_csv_upload_service,
    get_current_user_id,
)
from tradeclarity.middleware.rate_limit import (
    limiter,
    RATE_LIMIT_AI,
    RATE_LIMIT_DEFAULT,
    RATE_LIMIT_UPLOAD,
    RATE_LIMIT_WRITE,
)
from tradeclarity.models import AccountType
from tradeclarity.schemas.csv_import import CsvUploadCreate, CsvUploadLink, DetectColumnsRequest
from tradeclarity.schemas.errors import ErrorDetail
from tradeclarity.services.analytics import AnalyticsCacheService
from tradeclarity.services.constants import MAX_UPLOAD_FILE_SIZE_BYTES, MAX_UPLOAD_FILE_SIZE_MB
from tradeclarity.services.csv_import import (
    ColumnDetectionService,
    CsvImportService,
    CsvUploadService,
    upload_to_response,
)
from tradeclarity.services.exceptions import CsvParseError, ServiceError

logger = logging.getLogger(__name__)

# =============================================================================
# ROUTER SETUP
# =============================================================================

router = APIRouter(
    prefix="/api/csv",
    tags=["CSV Import"],
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _read_text(file: UploadFile) -> str:
    """
    Read an uploaded file as UTF-8 text.

    Raises:
        HTTPException 413: File exceeds the upload size limit
        CsvParseError: File is not UTF-8 text
    """
    content = file.file.read(MAX_UPLOAD_FILE_SIZE_BYTES + 1)
    if len(content) > MAX_UPLOAD_FILE_SIZE_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large. Maximum size is {MAX_UPLOAD_FILE_SIZE_MB} MB",
        )

    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise CsvParseError("INVALID_FORMAT", "File is not valid UTF-8 text")


def _parse_mapping(column_mapping: str | None) -> dict[str, Any] | None:
    """Decode the columnMapping form field; an unreadable mapping means none."""
    if not column_mapping:
        return None

    try:
        mapping = json.loads(column_mapping)
    except json.JSONDecodeError:
        logger.warning("Ignoring columnMapping that is not valid JSON")
        return None

    if not isinstance(mapping, dict):
        logger.warning("Ignoring columnMapping that is not a JSON object")
        return None
    return mapping


# =============================================================================
# PARSING
# =============================================================================

@router.post(
    "/parse",
    summary="Parse a trade history CSV",
    response_description="Analyzer wire records and row counts",
    responses={
        400: {"description": "File could not be parsed", "model": ErrorDetail},
        401: {"description": "Not authenticated"},
        413: {"description": "File too large"},
    },
)
@limiter.limit(RATE_LIMIT_UPLOAD)
def parse_csv(
        request: Request,
        file: UploadFile = File(..., description="Exported trade history CSV"),
        exchange: str = Form(..., min_length=1, description="Exchange the file came from"),
        account_type: AccountType = Form(..., alias="accountType"),
        column_mapping: str | None = Form(
            default=None,
            alias="columnMapping",
            description="JSON object mapping logical fields to header names",
        ),
        user_id: str = Depends(get_current_user_id),
        service: CsvImportService = Depends(get_csv_import_service),
) -> dict[str, Any]:
    """
    Parse an uploaded CSV into spot trades and futures income records.

    **Parsing order:**
    1. With `columnMapping`: the mapping is applied to the header row
    2. Without one, or when the mapping does not fit the file: the
       exchange's known export layouts are tried

    `accountType=BOTH` runs the spot and futures layouts and combines them.

    Rows missing a symbol or timestamp are skipped and counted in
    `skippedRows`; they never fail the file.
    """
    text = _read_text(file)
    mapping = _parse_mapping(column_mapping)

    logger.info(
        f"Parsing CSV {file.filename} for user {user_id}: exchange={exchange}, "
        f"accountType={account_type.value}, mapping={'yes' if mapping else 'no'}"
    )

    outcome = service.parse(text, exchange.strip().lower(), account_type, mapping)
    return outcome.to_response()


@router.post(
    "/detect-columns",
    summary="Detect CSV column mapping with AI",
    responses={
        401: {"description": "Not authenticated"},
        502: {"description": "AI service failed", "model": ErrorDetail},
        503: {"description": "AI service not configured", "model": ErrorDetail},
    },
)
@limiter.limit(RATE_LIMIT_AI)
def detect_columns(
        request: Request,
        body: DetectColumnsRequest,
        user_id: str = Depends(get_current_user_id),
        service: ColumnDetectionService = Depends(get_column_detection_service),
) -> dict[str, Any]:
    """
    Suggest which header holds each logical trade field.

    Results are cached per header row, so files exported from the same
    exchange are only sent to the AI service once per process.
    """
    result, cached = service.detect(body.headers, body.sample_data)
    return {"success": True, **result, "cached": cached}


# =============================================================================
# UPLOAD RECORDS
# =============================================================================

@router.post(
    "/uploads",
    status_code=status.HTTP_201_CREATED,
    summary="Save CSV upload metadata",
    responses={404: {"description": "Exchange connection not found", "model": ErrorDetail}},
)
@limiter.limit(RATE_LIMIT_WRITE)
def create_upload(
        request: Request,
        body: CsvUploadCreate,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: CsvUploadService = Depends(get_csv_upload_service),
) -> dict[str, Any]:
    """
    Record an uploaded file so its trades can reference it.

    Store the trades afterwards with `csvUploadId` set to the returned id.
    """
    upload = service.create_upload(
        db,
        user_id,
        filename=body.filename,
        account_type=body.account_type,
        label=body.label,
        exchange=body.exchange,
        exchange_connection_id=body.exchange_connection_id,
        size=body.size,
        trades_count=body.trades_count,
    )
    return {"success": True, "upload": upload_to_response(upload)}


@router.get(
    "/uploads",
    summary="List CSV uploads",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def list_uploads(
        request: Request,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: CsvUploadService = Depends(get_csv_upload_service),
) -> dict[str, Any]:
    """Uploads of the current user, newest first."""
    uploads = service.list_uploads(db, user_id)
    return {"success": True, "files": [upload_to_response(upload) for upload in uploads]}


@router.patch(
    "/uploads/{upload_id}",
    summary="Link a CSV upload to an exchange connection",
    responses={404: {"description": "Upload or connection not found", "model": ErrorDetail}},
)
@limiter.limit(RATE_LIMIT_WRITE)
def link_upload(
        request: Request,
        upload_id: str,
        body: CsvUploadLink,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: CsvUploadService = Depends(get_csv_upload_service),
) -> dict[str, Any]:
    """
    Attach an upload and its trades to a connection.

    Send `exchangeConnectionId: null` to detach it. Linked uploads follow
    their connection's delete (removed or unlinked on request).
    """
    upload = service.link_upload(db, user_id, upload_id, body.exchange_connection_id)
    return {"success": True, "upload": upload_to_response(upload)}


@router.delete(
    "/uploads/{upload_id}",
    summary="Delete a CSV upload and its trades",
    responses={404: {"description": "Upload not found", "model": ErrorDetail}},
)
@limiter.limit(RATE_LIMIT_WRITE)
def delete_upload(
        request: Request,
        upload_id: str,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: CsvUploadService = Depends(get_csv_upload_service),
        analytics: AnalyticsCacheService = Depends(get_analytics_cache_service),
) -> dict[str, Any]:
    """
    Delete an upload and every trade imported from it.

    The analytics cache is recomputed afterwards; a failed recompute does
    not fail the delete.
    """
    trades_deleted = service.delete_upload(db, user_id, upload_id)

    if trades_deleted > 0:
        try:
            analytics.compute(db, user_id, trigger="csv_deleted")
        except ServiceError as e:
            logger.warning(f"Analytics recompute after CSV delete failed for user {user_id}: {e}")

    return {
        "success": True,
        "message": "CSV file deleted successfully",
        "tradesDeleted": trades_deleted,
    }
