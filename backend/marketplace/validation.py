from __future__ import annotations
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from marketplace.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import JSON, Boolean, Float, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

LISTED_BY_CHOICES = ("walid", "abdo", "jebbar", "amine", "mehdi", "othmane", "janah", "youssef")

# URL and storage-folder safe
SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate slug)."""


class NotFoundError(LookupError):
    """404-level missing resource."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - ignored_fields: read-only keys clients may echo back; dropped silently
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    ignored_fields: set[str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # JSON documents are shape-checked by the per-model rules
    if isinstance(coltype, JSON):
        return value

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

    if isinstance(coltype, Float):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{col.key} must be a number")

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
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

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if isinstance(value, (dict, list)):
            raise ValidationError(f"{col.key} must be a string")
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

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    ignored = policy.ignored_fields or set()
    payload = {k: v for k, v in payload.items() if k not in ignored}

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, "", [], {}))
        if missing:
            raise ValidationError(f"Missing required field: {', '.join(missing)}")

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
            if isinstance(val, str) and val == "" and k in required:
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def strip_blank_values(model: DeclarativeMeta, payload: dict) -> dict:
    """
    Drop blank strings / empty lists sent for NOT NULL columns.

    Admin edit forms post every field; an untouched required field arrives
    as "" and must leave the stored value alone rather than blank it.
    """
    cols = _columns_by_key(model)
    cleaned = {}
    for k, v in payload.items():
        col = cols.get(k)
        if col is not None and not col.nullable:
            if v is None:
                continue
            if isinstance(v, str) and v.strip() == "":
                continue
            if isinstance(v, list) and not v:
                continue
        cleaned[k] = v
    return cleaned


def parse_price_cents(value: Any, field: str = "price") -> int:
    """Decimal amount (number or numeric string) -> integer cents."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS / 100:,.2f}")
    return cents


def _require_string_list(patch: dict, key: str, *, allow_empty: bool) -> None:
    value = patch[key]
    if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
        raise ValidationError(f"{key} must be a list of strings")
    if not allow_empty and not value:
        raise ValidationError(f"{key} is required and must be a non-empty array")
    patch[key] = [v.strip() for v in value]


def enforce_rules_product(patch: dict, *, creating: bool) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "slug" in patch:
        slug = (patch["slug"] or "").strip().lower()
        if not SLUG_RE.match(slug):
            raise ValidationError("slug may only contain lowercase letters, digits, '-' and '_'")
        patch["slug"] = slug

    if creating:
        if not patch.get("collections"):
            raise ValidationError(
                "collections is required and must be a non-empty array. Please select at least one collection."
            )
        if not patch.get("images"):
            raise ValidationError("images is required and must be a non-empty array")

    if "price_cents" in patch:
        if patch["price_cents"] is None or patch["price_cents"] <= 0:
            raise ValidationError("price must be greater than 0")

    if "listed_by" in patch:
        listed_by = (patch["listed_by"] or "").strip().lower()
        if not listed_by:
            raise ValidationError("listed_by is required. Please select a user.")
        if listed_by not in LISTED_BY_CHOICES:
            raise ValidationError(f"Invalid listed_by value. Must be one of: {', '.join(LISTED_BY_CHOICES)}")
        patch["listed_by"] = listed_by

    if "collections" in patch:
        _require_string_list(patch, "collections", allow_empty=not creating)
    if "images" in patch:
        _require_string_list(patch, "images", allow_empty=False)

    if "reviews" in patch and not isinstance(patch["reviews"], list):
        raise ValidationError("reviews must be a list")

    if "meta" in patch and not isinstance(patch["meta"], dict):
        raise ValidationError("meta must be an object")

    if "currency" in patch:
        currency = (patch["currency"] or "").upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValidationError("currency must be a 3-letter ISO code")
        patch["currency"] = currency

    if "rating" in patch and patch["rating"] is not None:
        if patch["rating"] < 0 or patch["rating"] > 5:
            raise ValidationError("rating must be between 0 and 5")

    if "review_count" in patch and patch["review_count"] is not None and patch["review_count"] < 0:
        raise ValidationError("review_count must be >= 0")
