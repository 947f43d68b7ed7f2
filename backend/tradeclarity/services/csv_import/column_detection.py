# backend/tradeclarity/services/csv_import/column_detection.py
"""
AI-assisted CSV column detection.

Sends the CSV header and a few sample rows to the completion API and asks
for a mapping from logical trade fields to header names:

    {"mapping": {"symbol": "Pair", "side": "Side", ...},
     "confidence": 0.92, "detectedExchange": "Binance", "detectedType": "spot"}

Results are cached in-process by header fingerprint (bounded LRU with TTL),
since the same exchange export is uploaded over and over.

Failure handling:
    - no API key                       -> AINotConfiguredError (503)
    - network errors, 429 and 5xx      -> retried with exponential backoff
    - auth errors, bad JSON, retries
      exhausted                        -> ColumnDetectionError (502)
"""

import json
import logging
import re
import threading
import time
from collections import OrderedDict
from typing import Any, Callable

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from tradeclarity.services.constants import (
    AI_DETECTION_MAX_TOKENS,
    AI_DETECTION_SAMPLE_ROWS,
    AI_DETECTION_TEMPERATURE,
    AI_MAPPING_MIN_CONFIDENCE,
    AI_MAX_RETRY_ATTEMPTS,
    AI_RETRY_MAX_WAIT_SECONDS,
    AI_RETRY_MULTIPLIER,
    COLUMN_DETECTION_CACHE_MAX_SIZE,
    COLUMN_DETECTION_CACHE_TTL_SECONDS,
    EXTERNAL_API_TIMEOUT_SECONDS,
)
from tradeclarity.services.csv_import.parsers import LOGICAL_FIELDS
from tradeclarity.services.exceptions import AINotConfiguredError, ColumnDetectionError

logger = logging.getLogger(__name__)

_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class _RetryableCompletionError(Exception):
    """Transient completion API failure (network, 429, 5xx)."""


# =============================================================================
# CACHE
# =============================================================================

class ColumnDetectionCache:
    """
    Thread-safe bounded LRU cache of detection results keyed by header tuple.

    Args:
        ttl_seconds: Entry lifetime
        max_size: Maximum entries before the least recently used is evicted
        clock: Monotonic seconds source (injectable for tests)
    """

    def __init__(
            self,
            ttl_seconds: int = COLUMN_DETECTION_CACHE_TTL_SECONDS,
            max_size: int = COLUMN_DETECTION_CACHE_MAX_SIZE,
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: OrderedDict[tuple[str, ...], tuple[float, dict[str, Any]]] = OrderedDict()
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._lock = threading.Lock()

    @staticmethod
    def make_key(headers: list[str]) -> tuple[str, ...]:
        return tuple(header.strip().lower() for header in headers)

    def get(self, headers: list[str]) -> dict[str, Any] | None:
        key = self.make_key(headers)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self._ttl:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, headers: list[str], value: dict[str, Any]) -> None:
        key = self.make_key(headers)
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = (self._clock(), value)
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# PROMPT
# =============================================================================

def build_detection_prompt(headers: list[str], sample_rows: list[Any] | None) -> str:
    """Prompt asking for a JSON mapping of logical fields to header names."""
    header_lines = "\n".join(f'{i}. "{header}"' for i, header in enumerate(headers, start=1))
    samples = (sample_rows or [])[:AI_DETECTION_SAMPLE_ROWS]
    sample_lines = "\n".join(json.dumps(row) for row in samples) or "No sample data provided"

    return f"""You are an expert at analyzing cryptocurrency trading CSV files. Map the CSV columns to the standard schema and detect the exchange.

Standard schema fields:
- symbol: Trading pair (e.g. BTC/USDT, BTCUSDT, BTC-USD)
- side: Trade direction (BUY, SELL, Long, Short)
- timestamp: Date/time of trade
- price: Execution price per unit
- quantity: Amount traded
- fee: Trading fee (optional)
- total: Total trade value in quote currency (optional)
- positionSide: LONG/SHORT for futures (optional)
- realizedPnl: Profit/loss for the trade (optional)

CSV headers:
{header_lines}

Sample data (first {len(samples)} rows):
{sample_lines}

Exchange hints:
- CoinDCX futures exports have "income_type" or "income" + "asset" columns
- Binance futures exports have a "Realized Profit" column
- Pairs like "BTCINR" come from CoinDCX

Return ONLY a JSON object:
{{"mapping": {{"symbol": "<header>", "side": "<header>", "timestamp": "<header>", "price": "<header>", "quantity": "<header>", "fee": "<header or null>", "total": "<header or null>", "positionSide": "<header or null>", "realizedPnl": "<header or null>"}}, "confidence": 0.0, "detectedExchange": "Binance|CoinDCX|Coinbase|Kraken|null", "detectedType": "spot|futures", "missingFields": [], "warnings": []}}

Only map fields you are more than 70% certain about."""


def parse_completion_json(text: str) -> dict[str, Any]:
    """
    Extract the JSON object from a completion (bare, or in a code block).

    Raises:
        ColumnDetectionError: If no JSON object can be decoded
    """
    match = _CODE_BLOCK.search(text)
    candidate = match.group(1) if match else None
    if candidate is None:
        match = _JSON_OBJECT.search(text)
        candidate = match.group(0) if match else None

    if candidate is None:
        raise ColumnDetectionError("No valid JSON found in AI response")

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ColumnDetectionError(f"AI response is not valid JSON: {e}")

    if not isinstance(parsed, dict):
        raise ColumnDetectionError("AI response JSON is not an object")
    return parsed


# =============================================================================
# SERVICE
# =============================================================================

class ColumnDetectionService:
    """
    Detects CSV column mappings through the completion API.

    Example:
        service = ColumnDetectionService(api_key="sk-...")
        result, cached = service.detect(["Date(UTC)", "Pair", "Side"], sample_rows)
    """

    MAX_RETRY_ATTEMPTS = AI_MAX_RETRY_ATTEMPTS
    RETRY_MULTIPLIER = AI_RETRY_MULTIPLIER
    RETRY_MIN_WAIT = 1.0
    RETRY_MAX_WAIT = AI_RETRY_MAX_WAIT_SECONDS

    def __init__(
            self,
            api_key: str | None,
            api_url: str = "https://api.anthropic.com/v1/messages",
            model: str = "claude-3-haiku-20240307",
            api_version: str = "2023-06-01",
            cache: ColumnDetectionCache | None = None,
            http_client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._model = model
        self._api_version = api_version
        self._cache = cache or ColumnDetectionCache()
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    @property
    def cache(self) -> ColumnDetectionCache:
        return self._cache

    def detect(
            self,
            headers: list[str],
            sample_rows: list[Any] | None = None,
    ) -> tuple[dict[str, Any], bool]:
        """
        Detect the column mapping for a CSV header.

        Returns:
            (detection result, served_from_cache)

        Raises:
            AINotConfiguredError: No API key configured
            ColumnDetectionError: Completion failed or returned garbage
        """
        if not self.is_configured:
            raise AINotConfiguredError()

        cached = self._cache.get(headers)
        if cached is not None:
            logger.debug(f"Column detection cache hit for {len(headers)} headers")
            return cached, True

        logger.info(f"Detecting CSV columns with AI for: {', '.join(headers[:5])}")

        prompt = build_detection_prompt(headers, sample_rows)
        completion = self._complete_with_retry(prompt)
        result = self._normalize_result(parse_completion_json(completion), headers)

        self._cache.set(headers, result)
        logger.info(
            f"AI detected mapping with confidence {result['confidence']} "
            f"(exchange={result['detectedExchange']}, type={result['detectedType']})"
        )
        return result, False

    def _complete_with_retry(self, prompt: str) -> str:
        @retry(
            stop=stop_after_attempt(self.MAX_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=self.RETRY_MULTIPLIER,
                min=self.RETRY_MIN_WAIT,
                max=self.RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type(_RetryableCompletionError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _inner() -> str:
            return self._complete(prompt)

        try:
            return _inner()
        except _RetryableCompletionError as e:
            raise ColumnDetectionError(
                f"AI request failed after {self.MAX_RETRY_ATTEMPTS} attempts: {e}"
            )

    def _complete(self, prompt: str) -> str:
        payload = {
            "model": self._model,
            "max_tokens": AI_DETECTION_MAX_TOKENS,
            "temperature": AI_DETECTION_TEMPERATURE,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {
            "x-api-key": self._api_key or "",
            "anthropic-version": self._api_version,
            "content-type": "application/json",
        }

        client = self._http_client or httpx.Client(timeout=EXTERNAL_API_TIMEOUT_SECONDS)
        try:
            response = client.post(self._api_url, json=payload, headers=headers)
        except httpx.TransportError as e:
            raise _RetryableCompletionError(f"Network error: {e}")
        finally:
            if self._http_client is None:
                client.close()

        if response.status_code in (401, 403):
            raise ColumnDetectionError("AI API authentication failed. Check API key.")
        if response.status_code == 429 or response.status_code >= 500:
            raise _RetryableCompletionError(f"AI API returned HTTP {response.status_code}")
        if response.status_code != 200:
            raise ColumnDetectionError(f"AI API returned HTTP {response.status_code}")

        body = response.json()
        content = body.get("content") or []
        if not content or "text" not in content[0]:
            raise ColumnDetectionError("AI response has no text content")
        return content[0]["text"]

    @staticmethod
    def _normalize_result(raw: dict[str, Any], headers: list[str]) -> dict[str, Any]:
        """Keep only logical fields that point at real headers."""
        raw_mapping = raw.get("mapping") or {}
        known_headers = set(headers)
        mapping: dict[str, str | None] = {}
        for name in LOGICAL_FIELDS:
            column = raw_mapping.get(name)
            mapping[name] = column if isinstance(column, str) and column in known_headers else None

        try:
            confidence = float(raw.get("confidence") or 0)
        except (TypeError, ValueError):
            confidence = 0.0

        return {
            "mapping": mapping,
            "confidence": confidence,
            "lowConfidence": confidence < AI_MAPPING_MIN_CONFIDENCE,
            "detectedExchange": raw.get("detectedExchange"),
            "detectedType": raw.get("detectedType"),
            "missingFields": raw.get("missingFields") or [],
            "warnings": raw.get("warnings") or [],
        }
