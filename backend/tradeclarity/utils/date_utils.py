# backend/tradeclarity/utils/date_utils.py
"""
Date and timestamp helpers shared across services.

Trades travel as epoch milliseconds on the wire and as timezone-aware UTC
datetimes in the database. SQLite hands back naive datetimes, so every
comparison against "now" goes through `ensure_utc()` first.

Usage:
    from tradeclarity.utils.date_utils import parse_trade_timestamp, to_epoch_ms

    when = parse_trade_timestamp("2024-01-01 00:00:00")
    to_epoch_ms(when)  # 1704067200000
"""

from datetime import datetime, timezone


# Accepted textual layouts for CSV timestamps, tried in order after ISO-8601
_TIMESTAMP_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
)

# Numeric timestamps above this are treated as milliseconds
_EPOCH_MS_THRESHOLD = 10 ** 11


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to a naive datetime, or convert an aware one to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    """Convert a datetime to integer epoch milliseconds (naive means UTC)."""
    return int(ensure_utc(value).timestamp() * 1000)


def from_epoch_ms(value: int | float) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    """ISO-8601 string of a UTC datetime, or None."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()


def parse_trade_timestamp(raw: str | int | float | None) -> datetime | None:
    """
    Parse a trade timestamp from any supported source representation.

    Accepts:
        - ISO-8601 with or without 'T', 'Z' or a UTC offset
        - 'YYYY-MM-DD HH:MM:SS' and 'YYYY/MM/DD HH:MM:SS'
        - 'MM/DD/YYYY HH:MM[:SS]'
        - numeric epoch seconds or milliseconds

    Naive values are interpreted as UTC.

    Returns:
        Aware UTC datetime, or None when the value cannot be parsed
    """
    if raw is None:
        return None

    if isinstance(raw, (int, float)):
        return _from_number(raw)

    text = str(raw).strip().strip('"')
    if not text:
        return None

    try:
        number = float(text)
    except ValueError:
        pass
    else:
        return _from_number(number)

    iso_text = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return ensure_utc(datetime.fromisoformat(iso_text))
    except ValueError:
        pass

    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    return None


def _from_number(value: int | float) -> datetime | None:
    if value <= 0:
        return None
    try:
        if value >= _EPOCH_MS_THRESHOLD:
            return from_epoch_ms(value)
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
