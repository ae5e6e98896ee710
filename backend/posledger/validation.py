from __future__ import annotations

from datetime import datetime
from typing import Any

from posledger.time_utils import parse_iso_datetime


# Maximum amount: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class NotFoundError(LookupError):
    """404-level: entity missing or outside the caller's tenant scope."""


class InvalidOperationError(Exception):
    """Business rule violation (400 unless a subclass says otherwise)."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(InvalidOperationError):
    """Requested quantity exceeds available stock."""

    status_code = 409

    def __init__(self, product_id: int, requested: int, available: int, product_name: str | None = None):
        label = product_name or f"Product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, Requested: {requested}",
            details={"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


def error_status(exc: Exception) -> int:
    """HTTP status for a service-layer exception."""
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, InvalidOperationError):
        return exc.status_code
    return 500


def error_body(exc: Exception) -> dict:
    body: dict[str, Any] = {"error": str(exc)}
    details = getattr(exc, "details", None)
    if details:
        body["details"] = details
    return body


# =============================================================================
# Payload coercion
# =============================================================================

def require_fields(data: dict | None, *names: str) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")
    missing = [n for n in names if data.get(n) in (None, "")]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required")
    return data


def coerce_int(value: Any, field: str, *, minimum: int | None = None, required: bool = True) -> int | None:
    """
    Strict integer coercion: rejects floats, decimals and scientific notation.
    """
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return result


def coerce_cents(value: Any, field: str, *, allow_zero: bool = False, required: bool = True) -> int | None:
    cents = coerce_int(value, field, required=required)
    if cents is None:
        return None
    if cents < 0 or (cents == 0 and not allow_zero):
        qualifier = "zero or greater" if allow_zero else "greater than zero"
        raise ValidationError(f"{field} must be {qualifier}")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed amount")
    return cents


def coerce_datetime(value: Any, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 string")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def coerce_text(value: Any, field: str, *, min_length: int = 0, max_length: int | None = None,
                required: bool = False) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    text = value.strip()
    if required and not text:
        raise ValidationError(f"{field} is required")
    if text and len(text) < min_length:
        raise ValidationError(f"{field} must be at least {min_length} characters")
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text or None


# Exceptions routes translate into 4xx responses
SERVICE_ERRORS = (ValidationError, NotFoundError, InvalidOperationError)
