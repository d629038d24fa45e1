from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .errors import ValidationError
from .time_utils import parse_iso_datetime


# Maximum unit price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Largest single movement accepted in one ledger entry
MAX_QUANTITY = 1_000_000


@dataclass(frozen=True)
class PayloadPolicy:
    """
    Central policy layer for request bodies:
    - integer_fields / string_fields / datetime_fields: what clients may send, by kind
    - required: fields that must be present
    - max_lengths: optional String(n) style limits
    """
    integer_fields: frozenset[str] = frozenset()
    string_fields: frozenset[str] = frozenset()
    datetime_fields: frozenset[str] = frozenset()
    required: frozenset[str] = frozenset()
    max_lengths: dict[str, int] = field(default_factory=dict)

    @property
    def writable_fields(self) -> frozenset[str]:
        return self.integer_fields | self.string_fields | self.datetime_fields


def coerce_int(name: str, value: Any) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def _coerce_datetime(name: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{name} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{name} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{name} must be a datetime")


def validate_payload(*, payload: Any, policy: PayloadPolicy) -> dict:
    """
    Validates + normalizes an incoming JSON body against the policy.
    Unknown fields are rejected; returns a cleaned dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    missing = sorted(f for f in policy.required if payload.get(f) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    for key in payload:
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")

    cleaned: dict = {}
    for key, raw in payload.items():
        if raw is None:
            cleaned[key] = None
        elif key in policy.integer_fields:
            cleaned[key] = coerce_int(key, raw)
        elif key in policy.datetime_fields:
            cleaned[key] = _coerce_datetime(key, raw)
        else:
            text = str(raw).strip()
            limit = policy.max_lengths.get(key)
            if limit and len(text) > limit:
                raise ValidationError(f"{key} exceeds max length {limit}")
            cleaned[key] = text or None
    return cleaned


def require_positive_int(name: str, value: Any) -> int:
    value = coerce_int(name, value)
    if value <= 0:
        raise ValidationError(f"{name} must be > 0")
    return value


def require_non_negative_int(name: str, value: Any) -> int:
    value = coerce_int(name, value)
    if value < 0:
        raise ValidationError(f"{name} must be >= 0")
    return value


def require_quantity(name: str, value: Any) -> int:
    value = require_positive_int(name, value)
    if value > MAX_QUANTITY:
        raise ValidationError(f"{name} cannot exceed {MAX_QUANTITY}")
    return value


def require_price_cents(name: str, value: Any) -> int:
    if value is None:
        raise ValidationError(f"{name} is required")
    value = require_non_negative_int(name, value)
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")
    return value
