# backend/tradeclarity/routers/connections.py
"""
Exchange connection endpoints.

API-key exchanges are connected with a key and secret, which are stored
encrypted and never echoed back.

Deleting a connection removes everything imported through it: API trades,
holdings snapshots, and (on request) linked CSV uploads with their trades.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from tradeclarity.database import get_db
from tradeclarity.dependencies import get_connection_service, get_current_user_id
from tradeclarity.middleware.rate_limit import limiter, RATE_LIMIT_DEFAULT, RATE_LIMIT_WRITE
from tradeclarity.schemas.connections import (
    ConnectExchangeRequest,
    ConnectionRef,
    DeleteConnectionRequest,
    UpdateKeysRequest,
)
from tradeclarity.schemas.errors import ErrorDetail
from tradeclarity.services.connections import ConnectionService, connection_to_response


router = APIRouter(
    prefix="/api/exchange",
    tags=["Exchange Connections"],
)


@router.get(
    "/connections",
    summary="List exchange connections",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def list_connections(
        request: Request,
        include_inactive: bool = Query(default=False, alias="includeInactive"),
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: ConnectionService = Depends(get_connection_service),
) -> dict[str, Any]:
    """Connections of the current user, newest first."""
    connections = service.list_connections(db, user_id, active_only=not include_inactive)
    return {
        "success": True,
        "connections": [connection_to_response(connection) for connection in connections],
    }


@router.post(
    "/connect",
    summary="Connect an API-key exchange",
    responses={
        400: {"description": "Unsupported exchange or missing credentials", "model": ErrorDetail},
        503: {"description": "ENCRYPTION_KEY not configured", "model": ErrorDetail},
    },
)
@limiter.limit(RATE_LIMIT_WRITE)
def connect_exchange(
        request: Request,
        body: ConnectExchangeRequest,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: ConnectionService = Depends(get_connection_service),
) -> dict[str, Any]:
    """
    Store encrypted API credentials for binance or coindcx.

    A user has one connection per exchange: connecting again replaces the
    keys of the existing connection and reactivates it.
    """
    connection, created = service.connect_exchange(db, user_id, body.exchange, body.api_key, body.api_secret)
    return {
        "success": True,
        "created": created,
        "connection": connection_to_response(connection),
    }


@router.post(
    "/update-keys",
    summary="Replace the API keys of a connection",
    responses={
        404: {"description": "Connection not found", "model": ErrorDetail},
        503: {"description": "ENCRYPTION_KEY not configured", "model": ErrorDetail},
    },
)
@limiter.limit(RATE_LIMIT_WRITE)
def update_keys(
        request: Request,
        body: UpdateKeysRequest,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: ConnectionService = Depends(get_connection_service),
) -> dict[str, Any]:
    """Re-encrypt new credentials for an existing connection and reactivate it."""
    connection = service.update_keys(db, user_id, body.connection_id, body.api_key, body.api_secret)
    return {"success": True, "connection": connection_to_response(connection)}


@router.post(
    "/delete-preview",
    summary="Preview what deleting a connection removes",
    responses={404: {"description": "Connection not found", "model": ErrorDetail}},
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def preview_delete(
        request: Request,
        body: ConnectionRef,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: ConnectionService = Depends(get_connection_service),
) -> dict[str, Any]:
    """
    Count the API trades and list the linked CSV files of a connection.

    Use this to let the user decide on `deleteLinkedCSVs` before deleting.
    """
    return service.preview_delete(db, user_id, body.connection_id)


@router.post(
    "/delete",
    summary="Delete an exchange connection",
    responses={
        404: {"description": "Connection not found", "model": ErrorDetail},
        500: {"description": "Trades could not be deleted", "model": ErrorDetail},
    },
)
@limiter.limit(RATE_LIMIT_WRITE)
def delete_connection(
        request: Request,
        body: DeleteConnectionRequest,
        db: Session = Depends(get_db),
        user_id: str = Depends(get_current_user_id),
        service: ConnectionService = Depends(get_connection_service),
) -> dict[str, Any]:
    """
    Delete a connection and the data imported through it.

    **Order of operations:**
    1. API trades of the connection
    2. Holdings snapshots (a failure here is logged, not fatal)
    3. Linked CSV uploads: deleted with their trades when
       `deleteLinkedCSVs` is true, otherwise unlinked and kept
    4. The connection itself

    The analytics cache is recomputed when any trade was removed.
    """
    result = service.delete_connection(
        db,
        user_id,
        body.connection_id,
        delete_linked_csvs=body.delete_linked_csvs,
    )
    return result.to_response()
