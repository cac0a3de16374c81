"""
Centralized data normalization utilities for type safety and consistency.

This module provides normalizers for the loosely typed fields the gateway
receives over RPC and HTTP, before they reach the database layer.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

# Epoch values above this are taken to be milliseconds
_EPOCH_MILLISECONDS_THRESHOLD = 10_000_000_000

# Largest value an INTEGER column holds
MAX_COUNT = 2**31 - 1

# NUMERIC(38, 18) leaves 20 integer digits
MAX_AMOUNT_INTEGER_DIGITS = 20

# Column widths in models.py
MAX_STRING_LENGTH = 255
MAX_ORDER_TYPE_LENGTH = 64
MAX_COIN_LENGTH = 32


def normalize_identifier(value: Union[int, str, None], field: str, max_length: Optional[int] = None) -> str:
    """
    Normalize an external identifier (order id, user id) to a non-empty string.

    Raises:
        ValueError: value is missing, empty, not a scalar or longer than max_length

    Examples:
        >>> normalize_identifier(" abc123 ", "order_id")
        'abc123'
        >>> normalize_identifier(42, "user")
        '42'
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"{field} is required")

    if isinstance(value, int):
        value = str(value)

    if not isinstance(value, str):
        raise ValueError(f"{field} must be a string, got {type(value).__name__}")

    value = value.strip()
    if not value:
        raise ValueError(f"{field} must not be empty")
    return _check_length(value, field, max_length)


def normalize_optional_string(value: Any, field: str, max_length: Optional[int] = None) -> Optional[str]:
    """Normalize an optional string field; empty strings become None"""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _check_length(str(value), field, max_length)
    if not isinstance(value, str):
        raise ValueError(f"{field} must be a string, got {type(value).__name__}")
    value = value.strip()
    if not value:
        return None
    return _check_length(value, field, max_length)


def normalize_amount(value: Union[str, int, float, Decimal, None], field: str = "amount") -> Optional[Decimal]:
    """
    Normalize an amount to Decimal. Floats go through str() so that 0.1
    stays 0.1 instead of its binary expansion.

    Raises:
        ValueError: value is not a finite, non-negative number
    """
    if value is None:
        return None

    if isinstance(value, bool):
        raise ValueError(f"{field} must be a number")

    try:
        amount = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"{field} is not a valid number: {value}") from e

    if not amount.is_finite():
        raise ValueError(f"{field} must be finite: {value}")
    if amount < 0:
        raise ValueError(f"{field} cannot be negative: {value}")
    if amount >= Decimal(10) ** MAX_AMOUNT_INTEGER_DIGITS:
        raise ValueError(f"{field} is too large: {value}")
    return amount


def normalize_count(value: Union[int, str, None], field: str, default: int = 0) -> int:
    """Normalize a counter (confirmations) to 0..MAX_COUNT; None becomes the default"""
    if value is None:
        return default

    if isinstance(value, bool):
        raise ValueError(f"{field} must be an integer")

    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            raise ValueError(f"{field} must contain only digits: {value}")
        value = int(value)

    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{field} must be an integer: {value}")
        value = int(value)

    if not isinstance(value, int):
        raise ValueError(f"{field} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{field} cannot be negative: {value}")
    if value > MAX_COUNT:
        raise ValueError(f"{field} is too large: {value}")
    return value


def normalize_timestamp(value: Union[str, int, float, datetime, None], field: str = "created_at") -> Optional[datetime]:
    """
    Normalize a timestamp to a timezone-aware UTC datetime.

    Accepts ISO-8601 strings (a trailing 'Z' included), epoch seconds and
    epoch milliseconds. Naive values are taken to be UTC.
    """
    if value is None or value == "":
        return None

    if isinstance(value, bool):
        raise ValueError(f"{field} must be a timestamp")

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > _EPOCH_MILLISECONDS_THRESHOLD else value
        try:
            parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise ValueError(f"{field} is out of range: {value}") from e
    elif isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return normalize_timestamp(int(text), field)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueError(f"{field} is not an ISO-8601 timestamp: {value}") from e
    else:
        raise ValueError(f"{field} must be a timestamp, got {type(value).__name__}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _check_length(value: str, field: str, max_length: Optional[int]) -> str:
    if max_length is not None and len(value) > max_length:
        raise ValueError(f"{field} must be at most {max_length} characters")
    return value
