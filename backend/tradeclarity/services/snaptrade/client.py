# backend/tradeclarity/services/snaptrade/client.py
"""
HTTP client for the SnapTrade brokerage aggregator.

Every request carries clientId and timestamp in the query string and a
"Signature" header:

    base64(HMAC-SHA256(consumer_key,
        json({"content": body | null, "path": "/api/v1/...", "query": "<querystring>"},
             sorted keys, compact separators)))

User-scoped endpoints add userId and userSecret to the query.

Failure handling:
    - network errors, 429 and 5xx      -> retried with exponential backoff
    - "user already exists"            -> SnaptradeUserExistsError (409)
    - other non-2xx, retries exhausted -> SnaptradeError
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode, urlsplit

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from tradeclarity.services.constants import (
    AI_MAX_RETRY_ATTEMPTS,
    AI_RETRY_MAX_WAIT_SECONDS,
    AI_RETRY_MULTIPLIER,
    EXTERNAL_API_TIMEOUT_SECONDS,
)
from tradeclarity.services.exceptions import SnaptradeError, SnaptradeUserExistsError

logger = logging.getLogger(__name__)


class _RetryableSnaptradeError(Exception):
    """Transient aggregator failure (network, 429, 5xx)."""


def sign_request(consumer_key: str, path: str, query: str, content: Any | None) -> str:
    """Signature header value for one request."""
    payload = json.dumps(
        {"content": content, "path": path, "query": query},
        separators=(",", ":"),
        sort_keys=True,
    )
    digest = hmac.new(consumer_key.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or body.get("error") or body)
    return str(body)


class SnaptradeClient:
    """
    Thin signed client over the aggregator's REST API.

    Args:
        client_id: Partner client id
        consumer_key: Partner signing key
        api_url: Base URL including the version prefix
        http_client: Optional shared httpx.Client (tests inject a MockTransport)
        clock: Epoch seconds source for the timestamp parameter
    """

    MAX_RETRY_ATTEMPTS = AI_MAX_RETRY_ATTEMPTS
    RETRY_MULTIPLIER = AI_RETRY_MULTIPLIER
    RETRY_MIN_WAIT = 1.0
    RETRY_MAX_WAIT = AI_RETRY_MAX_WAIT_SECONDS

    def __init__(
            self,
            client_id: str,
            consumer_key: str,
            api_url: str = "https://api.snaptrade.com/api/v1",
            http_client: httpx.Client | None = None,
            clock: Callable[[], float] = time.time,
    ) -> None:
        self._client_id = client_id
        self._consumer_key = consumer_key
        self._api_url = api_url.rstrip("/")
        self._base_path = urlsplit(self._api_url).path
        self._http_client = http_client
        self._clock = clock

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    def register_user(self, user_id: str) -> dict[str, str]:
        """
        Register a user with the aggregator.

        Returns:
            {"userId": ..., "userSecret": ...}

        Raises:
            SnaptradeUserExistsError: The aggregator already knows this user id
            SnaptradeError: Any other failure
        """
        user_id = (user_id or "").strip()
        if not user_id:
            raise SnaptradeError("userId must be a non-empty string")

        data = self._request("POST", "/snapTrade/registerUser", body={"userId": user_id})
        if not isinstance(data, dict) or not data.get("userId") or not data.get("userSecret"):
            raise SnaptradeError("Invalid response from SnapTrade registerUser")
        return {"userId": data["userId"], "userSecret": data["userSecret"]}

    def list_accounts(self, user_id: str, user_secret: str) -> list[dict[str, Any]]:
        data = self._request("GET", "/accounts", user=(user_id, user_secret))
        return data if isinstance(data, list) else []

    def get_activities(
            self,
            user_id: str,
            user_secret: str,
            start_date: str | None = None,
            end_date: str | None = None,
            accounts: str | None = None,
    ) -> list[dict[str, Any]]:
        """Transaction history; dates are YYYY-MM-DD, accounts comma-separated ids."""
        params = {"startDate": start_date, "endDate": end_date, "accounts": accounts}
        data = self._request("GET", "/activities", user=(user_id, user_secret), params=params)
        return data if isinstance(data, list) else []

    def get_holdings(self, user_id: str, user_secret: str, account_id: str) -> dict[str, Any]:
        data = self._request("GET", f"/accounts/{account_id}/holdings", user=(user_id, user_secret))
        return data if isinstance(data, dict) else {}

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _request(
            self,
            method: str,
            endpoint: str,
            user: tuple[str, str] | None = None,
            params: dict[str, Any] | None = None,
            body: dict[str, Any] | None = None,
    ) -> Any:
        @retry(
            stop=stop_after_attempt(self.MAX_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=self.RETRY_MULTIPLIER,
                min=self.RETRY_MIN_WAIT,
                max=self.RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type(_RetryableSnaptradeError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _inner() -> Any:
            return self._send(method, endpoint, user, params, body)

        try:
            return _inner()
        except _RetryableSnaptradeError as e:
            raise SnaptradeError(f"SnapTrade request failed after {self.MAX_RETRY_ATTEMPTS} attempts: {e}")

    def _send(
            self,
            method: str,
            endpoint: str,
            user: tuple[str, str] | None,
            params: dict[str, Any] | None,
            body: dict[str, Any] | None,
    ) -> Any:
        query_items: list[tuple[str, str]] = [
            ("clientId", self._client_id),
            ("timestamp", str(int(self._clock()))),
        ]
        if user is not None:
            query_items += [("userId", user[0]), ("userSecret", user[1])]
        query_items += [(key, str(value)) for key, value in (params or {}).items() if value is not None]
        query = urlencode(query_items)

        path = f"{self._base_path}{endpoint}"
        headers = {
            "Signature": sign_request(self._consumer_key, path, query, body),
            "Content-Type": "application/json",
        }
        url = f"{self._api_url}{endpoint}?{query}"

        client = self._http_client or httpx.Client(timeout=EXTERNAL_API_TIMEOUT_SECONDS)
        try:
            response = client.request(
                method,
                url,
                headers=headers,
                content=json.dumps(body, separators=(",", ":")) if body is not None else None,
            )
        except httpx.TransportError as e:
            raise _RetryableSnaptradeError(f"Network error: {e}")
        finally:
            if self._http_client is None:
                client.close()

        if response.status_code == 429 or response.status_code >= 500:
            raise _RetryableSnaptradeError(f"SnapTrade returned HTTP {response.status_code}")

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.warning(f"SnapTrade {method} {endpoint} failed with HTTP {response.status_code}: {detail}")
            if endpoint == "/snapTrade/registerUser" and "already exist" in detail.lower():
                raise SnaptradeUserExistsError((body or {}).get("userId", ""))
            raise SnaptradeError(f"SnapTrade error: {detail}", status_code=response.status_code)

        try:
            return response.json()
        except ValueError:
            raise SnaptradeError("SnapTrade returned a non-JSON response", status_code=response.status_code)
