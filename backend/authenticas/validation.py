from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlparse


# Largest value a 64-bit signed INTEGER column holds (ids, cent amounts)
MAX_STORABLE_INT = 2**63 - 1

# Maximum configurable spending limit: $9,999,999.99 (999,999,999 cents)
MAX_SPENDING_LIMIT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """Business rule conflict (e.g., duplicate pending disconnect request)."""


class NotFoundError(LookupError):
    """404-level missing record."""


def require_payload(payload: Any) -> dict:
    if payload is None:
        raise ValidationError("Request body must be a JSON object")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def parse_id(value: Any, field: str) -> int:
    """
    Record ids are positive integers.

    Accepts ints and plain digit strings; rejects bools, floats and blanks.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer id")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
    else:
        raise ValidationError(f"{field} must be an integer id")
    if parsed <= 0:
        raise ValidationError(f"{field} must be a positive integer id")
    if parsed > MAX_STORABLE_INT:
        raise ValidationError(f"{field} is out of range")
    return parsed


def parse_optional_id(value: Any, field: str) -> int | None:
    if value is None:
        return None
    return parse_id(value, field)


def parse_money(value: Any, field: str, *, allow_zero: bool = False, max_cents: int = MAX_STORABLE_INT) -> int:
    """
    Convert a JSON number in currency units to integer cents.

    - must be an int or float (not bool, not string)
    - must be finite
    - must be > 0 (or >= 0 when allow_zero)
    - fractions of a cent round half up
    - at most max_cents once converted
    """
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"{field} must be a finite number")

    try:
        dec = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")

    if allow_zero:
        if dec < 0:
            raise ValidationError(f"{field} must be >= 0")
    elif dec <= 0:
        raise ValidationError(f"{field} must be greater than 0")

    if dec * 100 > max_cents:
        raise ValidationError(f"{field} cannot exceed {Decimal(max_cents) / 100:,.2f}")

    cents_int = int((dec * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents_int == 0 and not allow_zero:
        raise ValidationError(f"{field} must be at least 0.01")
    return cents_int


def cents_to_amount(cents: int | None) -> float | None:
    if cents is None:
        return None
    return cents / 100


def parse_bool(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be a boolean")
    return value


def parse_name(value: Any, field: str, *, max_length: int = 255) -> str:
    if value is None or not isinstance(value, str):
        raise ValidationError(f"{field} is required")
    cleaned = value.strip()
    if not cleaned:
        raise ValidationError(f"{field} cannot be blank")
    if len(cleaned) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return cleaned


def normalize_webhook_url(value: Any) -> str | None:
    """Blank clears the endpoint; otherwise an absolute http(s) URL is required."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("webhookUrl must be a string")
    cleaned = value.strip()
    if not cleaned:
        return None
    parsed = urlparse(cleaned)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("webhookUrl must be an absolute http(s) URL")
    if len(cleaned) > 2048:
        raise ValidationError("webhookUrl exceeds max length 2048")
    return cleaned
