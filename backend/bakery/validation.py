from __future__ import annotations
from datetime import date, datetime
from bakery.time_utils import parse_iso_date, parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Upper bound for any single quantity field coming from a client
MAX_QUANTITY = 999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate batch number)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns a request body may touch for one model.
    - writable_fields: keys a client may send (batch status stays server-owned)
    - required_on_create: keys a create request must carry
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # bool is an int subclass; never accept it as a quantity
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # DateTime before Date: accept ISO-8601 strings, normalize to UTC
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

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be a YYYY-MM-DD date")
            if d is None:
                raise ValidationError(f"{col.key} must be a YYYY-MM-DD date")
            return d
        raise ValidationError(f"{col.key} must be a date")

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
    Checks and coerces a JSON body for a batch or production request write using
    - the model column types, nullability and String lengths
    - the allowlist in policy.writable_fields
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
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
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

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


# -----------------------------------------------------------------------------
# Operation payloads (not backed by a single model row)
# -----------------------------------------------------------------------------

def require_int(payload: dict, key: str, *, minimum: int | None = None, allow_missing: bool = False) -> int | None:
    if key not in payload or payload[key] is None:
        if allow_missing:
            return None
        raise ValidationError(f"{key} is required")
    value = _coerce_int(key, payload[key])
    if minimum is not None and value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    if abs(value) > MAX_QUANTITY and not key.endswith("_id"):
        raise ValidationError(f"{key} cannot exceed {MAX_QUANTITY:,}")
    return value


def require_text(payload: dict, key: str, *, allow_missing: bool = False, max_length: int = 500) -> str | None:
    raw = payload.get(key)
    if raw is None or str(raw).strip() == "":
        if allow_missing:
            return None
        raise ValidationError(f"{key} is required")
    value = str(raw).strip()
    if len(value) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return value


def require_list(payload: dict, key: str) -> list:
    value = payload.get(key)
    if not isinstance(value, list) or not value:
        raise ValidationError(f"{key} must be a non-empty list")
    return value


def enforce_rules_batch(patch: dict) -> None:
    """Business rules for ProductBatch payloads not captured by column metadata."""
    if "quantity" in patch and patch["quantity"] is not None:
        if patch["quantity"] < 0:
            raise ValidationError("quantity must be >= 0")
        if patch["quantity"] > MAX_QUANTITY:
            raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY:,}")

    production = patch.get("production_date")
    expiry = patch.get("expiry_date")
    if production is not None and expiry is not None and expiry < production:
        raise ValidationError("expiry_date cannot be before production_date")


def enforce_rules_production(patch: dict) -> None:
    qty = patch.get("quantity_requested")
    if qty is None or qty <= 0:
        raise ValidationError("quantity_requested must be > 0")
    if qty > MAX_QUANTITY:
        raise ValidationError(f"quantity_requested cannot exceed {MAX_QUANTITY:,}")
