from __future__ import annotations
from datetime import date, datetime
from servicebook.time_utils import parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Upper bound for a single line or adjustment quantity
MAX_LINE_QUANTITY = 1_000_000


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


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


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_date(key: str, value: Any) -> date:
    if isinstance(value, (date, datetime)):
        return parse_iso_date(value)
    if isinstance(value, str):
        try:
            parsed = parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 date")
        if parsed is None:
            raise ValidationError(f"{key} must be an ISO-8601 date")
        return parsed
    raise ValidationError(f"{key} must be a date")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    if isinstance(coltype, Date):
        return _coerce_date(col.key, value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
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

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
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

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_stock_item(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "unit_price_cents" in patch and patch["unit_price_cents"] is not None:
        price = patch["unit_price_cents"]
        if price < 0:
            raise ValidationError("unit_price_cents must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"unit_price_cents cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")

    for key in ("initial_quantity", "reorder_threshold"):
        if key in patch and patch[key] is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")


def parse_int_field(payload: dict, key: str, *, required: bool = True, minimum: int | None = None):
    """Strict integer read from a JSON body; returns None for an absent optional field."""
    raw = payload.get(key)
    if raw is None:
        if required:
            raise ValidationError(f"{key} is required")
        return None
    value = _coerce_int(key, raw)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return value


def parse_date_field(payload: dict, key: str, *, required: bool = False):
    raw = payload.get(key)
    if raw is None or raw == "":
        if required:
            raise ValidationError(f"{key} is required")
        return None
    return _coerce_date(key, raw)


def parse_line_quantity(value: Any, *, key: str = "quantity") -> int:
    """
    Request-boundary quantity check.

    Unlike stock_math.normalize_quantity (which clamps), this rejects
    fractional, negative and oversized input so the caller hears about it.
    """
    if value is None:
        raise ValidationError(f"{key} is required")
    quantity = _coerce_int(key, value)
    if quantity < 0:
        raise ValidationError(f"{key} must be >= 0")
    if quantity > MAX_LINE_QUANTITY:
        raise ValidationError(f"{key} cannot exceed {MAX_LINE_QUANTITY}")
    return quantity


def parse_document_lines(raw_lines: Any) -> list[dict]:
    """
    Validate the `lines` array of a document payload.

    Each line needs a quantity and either a product_id (stock line) or a
    description (manual line). Returns cleaned dicts in input order.
    """
    if raw_lines is None:
        raise ValidationError("lines is required")
    if not isinstance(raw_lines, list):
        raise ValidationError("lines must be a list")

    allowed = {"product_id", "description", "quantity", "unit_price_cents"}
    lines = []
    for index, raw in enumerate(raw_lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{index}] must be an object")
        unknown = set(raw) - allowed
        if unknown:
            raise ValidationError(f"lines[{index}]: field not allowed: {sorted(unknown)[0]}")

        product_id = raw.get("product_id")
        if product_id is not None:
            product_id = _coerce_int(f"lines[{index}].product_id", product_id)
        description = raw.get("description")
        if description is not None:
            description = str(description).strip()[:255] or None
        if product_id is None and not description:
            raise ValidationError(f"lines[{index}] needs a product_id or a description")

        price = raw.get("unit_price_cents")
        price = 0 if price is None else _coerce_int(f"lines[{index}].unit_price_cents", price)
        if price < 0 or price > MAX_PRICE_CENTS:
            raise ValidationError(f"lines[{index}].unit_price_cents out of range")

        lines.append(
            {
                "product_id": product_id,
                "description": description,
                "quantity": parse_line_quantity(raw.get("quantity"), key=f"lines[{index}].quantity"),
                "unit_price_cents": price,
            }
        )
    return lines
