# backend/tradeclarity/utils/numbers.py
"""
Decimal helpers for trade amounts.

Amounts are handled as Decimal end to end and rendered for the analyzer
wire format as plain strings: no exponent, no trailing zeros
(Decimal("50000.00") -> "50000", Decimal("0.0100") -> "0.01").
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """
    Coerce a loosely typed amount into a Decimal.

    Strings may carry quotes, whitespace or thousands separators
    ("1,234.56"). Floats go through str() to avoid binary noise.
    Returns `default` for None, empty or unparseable input.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    if isinstance(value, (int, float)):
        value = str(value)

    text = str(value).strip().strip('"').replace(",", "")
    if not text:
        return default

    try:
        result = Decimal(text)
    except InvalidOperation:
        return default

    return result if result.is_finite() else default


def format_decimal(value: Any) -> str:
    """Render an amount without exponent or trailing zeros."""
    number = to_decimal(value)
    if number == 0:
        return "0"
    return format(number.normalize(), "f")


_LEADING_NUMBER = re.compile(r"^[-+]?(?:\d[\d,]*)?(?:\.\d+)?(?:[eE][-+]?\d+)?")


def leading_decimal(value: str | None, default: Decimal = ZERO) -> Decimal:
    """
    Parse the numeric prefix of an exchange cell.

    Exchange exports often suffix amounts with the asset ("0.01BTC",
    "0.5USDT"); only the leading number is kept.
    """
    if not value:
        return default
    match = _LEADING_NUMBER.match(value.strip().strip('"'))
    if not match or not match.group(0):
        return default
    return to_decimal(match.group(0), default)
