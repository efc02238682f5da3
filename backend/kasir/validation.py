from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from kasir.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any


# Maximum unit price / cost in minor units; keeps JSON and SQLite integers sane
MAX_AMOUNT = 999_999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate barcode)."""


@dataclass(frozen=True)
class Field:
    kind: str  # int, amount, str, bool, datetime, decimal, dict, list
    nullable: bool = False
    max_length: int | None = None


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - fields: what clients are allowed to set and how each is coerced
    - required_on_create: fields required for POST
    """
    fields: dict[str, Field]
    required_on_create: frozenset[str] = frozenset()


def _coerce_value(key: str, field: Field, value: Any):
    kind = field.kind

    # Integers - strict validation to reject floats and scientific notation
    if kind in ("int", "amount"):
        if isinstance(value, bool):
            raise ValidationError(f"{key} must be an integer")
        if isinstance(value, int):
            result = value
        elif isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{key} must be an integer (no decimals)")
            try:
                result = int(stripped)
            except ValueError:
                raise ValidationError(f"{key} must be an integer")
        elif isinstance(value, float):
            raise ValidationError(f"{key} must be an integer, not a decimal")
        else:
            raise ValidationError(f"{key} must be an integer")
        if kind == "amount":
            if result < 0:
                raise ValidationError(f"{key} must be >= 0")
            if result > MAX_AMOUNT:
                raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT}")
        return result

    if kind == "decimal":
        if isinstance(value, bool):
            raise ValidationError(f"{key} must be a number")
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{key} must be a number")
        if not result.is_finite():
            raise ValidationError(f"{key} must be a finite number")
        if result < 0:
            raise ValidationError(f"{key} must be >= 0")
        return result

    if kind == "bool":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValidationError(f"{key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if kind == "datetime":
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{key} must be a datetime")

    if kind == "str":
        val = str(value).strip()
        if field.max_length and len(val) > field.max_length:
            raise ValidationError(f"{key} exceeds max length {field.max_length}")
        if not field.nullable and val == "":
            raise ValidationError(f"{key} cannot be blank")
        return val

    if kind == "list":
        if not isinstance(value, list):
            raise ValidationError(f"{key} must be a list")
        return value

    if kind == "dict":
        if not isinstance(value, dict):
            raise ValidationError(f"{key} must be an object")
        return value

    return value


def validate_payload(
    *,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against the policy's field table.
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    for k in payload.keys():
        if k not in policy.fields:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}
    for k, raw in payload.items():
        field = policy.fields[k]
        if raw is None:
            if not field.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue
        patch[k] = _coerce_value(k, field, raw)

    return patch


PRODUCT_POLICY = ModelValidationPolicy(
    fields={
        "name": Field("str", max_length=255),
        "category": Field("str", nullable=True, max_length=120),
        "category_id": Field("str", nullable=True, max_length=64),
        "barcode": Field("str", max_length=64),
        "price": Field("amount"),
        "cost": Field("amount"),
        "stock": Field("amount"),
        "unit": Field("str", max_length=32),
        "description": Field("str", nullable=True, max_length=2000),
        "image": Field("str", nullable=True, max_length=2000),
        "created_by": Field("str", nullable=True, max_length=64),
    },
    required_on_create=frozenset({"name", "barcode", "price"}),
)

DISCOUNT_POLICY = ModelValidationPolicy(
    fields={
        "id": Field("str", max_length=64),
        "name": Field("str", max_length=255),
        "type": Field("str", max_length=16),
        "value": Field("decimal"),
        "min_purchase": Field("amount", nullable=True),
        "tiers": Field("list", nullable=True),
        "valid_from": Field("datetime", nullable=True),
        "valid_to": Field("datetime", nullable=True),
        "is_active": Field("bool"),
        "created_by": Field("str", nullable=True, max_length=64),
    },
    required_on_create=frozenset({"name", "type"}),
)

CUSTOMER_POLICY = ModelValidationPolicy(
    fields={
        "name": Field("str", max_length=255),
        "phone": Field("str", nullable=True, max_length=32),
    },
    required_on_create=frozenset({"name"}),
)

EXPENSE_POLICY = ModelValidationPolicy(
    fields={
        "description": Field("str", max_length=255),
        "amount": Field("amount"),
        "category": Field("str", nullable=True, max_length=120),
        "created_by": Field("str", nullable=True, max_length=64),
    },
    required_on_create=frozenset({"description", "amount"}),
)

KASBON_POLICY = ModelValidationPolicy(
    fields={
        "customer_name": Field("str", max_length=255),
        "customer_id": Field("str", nullable=True, max_length=64),
        "amount": Field("amount"),
        "note": Field("str", nullable=True, max_length=2000),
        "due_date": Field("datetime", nullable=True),
        "created_by": Field("str", nullable=True, max_length=64),
    },
    required_on_create=frozenset({"customer_name", "amount"}),
)

KASBON_PAYMENT_POLICY = ModelValidationPolicy(
    fields={
        "amount": Field("amount"),
        "actor": Field("str", nullable=True, max_length=64),
    },
    required_on_create=frozenset({"amount"}),
)


def require_quantity(value, field: str = "quantity", *, minimum: int = 1) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return value


def require_amount(value, field: str) -> int:
    """Validate a non-negative integer amount (minor units)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer amount")
    if value < 0:
        raise ValidationError(f"{field} must be >= 0")
    return value


def parse_datetime_arg(key: str, value: str | None) -> datetime | None:
    """Query-string datetime; blank means absent, garbage is a ValidationError."""
    if value is None or not value.strip():
        return None
    return _coerce_value(key, Field("datetime"), value)
