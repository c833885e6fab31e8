from __future__ import annotations
from datetime import datetime
from storefront.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime, JSON
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Tax is expressed in basis points; 100% = 10_000 bps
MAX_TAX_BPS = 10_000


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, JSON):
        if not isinstance(value, dict):
            raise ValidationError(f"{col.key} must be an object")
        return value

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    Keys listed in writable_fields that are not model columns (e.g. a
    product's variants list) are passed through untouched for the service
    to validate.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols.get(k)
        if col is None:
            patch[k] = raw
            continue

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_cents(patch: dict, key: str) -> None:
    if key in patch and patch[key] is not None:
        value = patch[key]
        if value < 0:
            raise ValidationError(f"{key} must be >= 0")
        if value > MAX_PRICE_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for key in (
        "price_cents",
        "wholesale_price_cents",
        "retail_shipping_cents",
        "wholesale_shipping_cents",
    ):
        _check_cents(patch, key)

    if "stock" in patch and patch["stock"] is not None and patch["stock"] < 0:
        raise ValidationError("stock must be >= 0")

    pct = patch.get("discount_percentage")
    if pct is not None and not 0 <= pct <= 100:
        raise ValidationError("discount_percentage must be between 0 and 100")

    for key in ("retail_tax_bps", "wholesale_tax_bps"):
        bps = patch.get(key)
        if bps is not None and not 0 <= bps <= MAX_TAX_BPS:
            raise ValidationError(f"{key} must be between 0 and {MAX_TAX_BPS}")

    start = patch.get("discount_start_date")
    end = patch.get("discount_end_date")
    if start is not None and end is not None and end < start:
        raise ValidationError("discount_end_date must be after discount_start_date")


def enforce_rules_coupon(patch: dict) -> None:
    from .models.coupons import VALID_DISCOUNT_TYPES, VALID_SCOPES, DISCOUNT_PERCENTAGE

    discount_type = patch.get("discount_type")
    if discount_type is not None and discount_type not in VALID_DISCOUNT_TYPES:
        raise ValidationError(f"discount_type must be one of {', '.join(VALID_DISCOUNT_TYPES)}")

    scope = patch.get("scope")
    if scope is not None and scope not in VALID_SCOPES:
        raise ValidationError(f"scope must be one of {', '.join(VALID_SCOPES)}")

    value = patch.get("discount_value")
    if value is not None:
        if value <= 0:
            raise ValidationError("discount_value must be > 0")
        if (discount_type or DISCOUNT_PERCENTAGE) == DISCOUNT_PERCENTAGE and value > 100:
            raise ValidationError("discount_value must be between 1 and 100 for PERCENTAGE coupons")

    _check_cents(patch, "max_discount_cents")
    _check_cents(patch, "min_order_cents")

    limit = patch.get("usage_limit")
    if limit is not None and limit < 1:
        raise ValidationError("usage_limit must be >= 1")

    start = patch.get("start_date")
    end = patch.get("expiration_date")
    if start is not None and end is not None and end <= start:
        raise ValidationError("expiration_date must be after start_date")
