from __future__ import annotations
from datetime import datetime
from storefront.time_utils import parse_iso_datetime, to_utc_z

from dataclasses import dataclass, field
from typing import Any

from .errors import ValidationError


# Maximum money amount accepted on any writable field (rupees)
MAX_AMOUNT = 9_999_999.99


@dataclass(frozen=True)
class FieldSpec:
    """
    Type and bounds for one client-writable document field.

    kind: "str" | "int" | "number" | "bool" | "datetime" | "dict" | "list"
    """
    kind: str
    nullable: bool = True
    choices: tuple | None = None
    min_value: float | None = None
    max_value: float | None = None
    max_length: int | None = None


@dataclass(frozen=True)
class PatchPolicy:
    """
    Central policy layer:
    - fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for create semantics
    """
    fields: dict[str, FieldSpec]
    required_on_create: frozenset = field(default_factory=frozenset)


def _coerce_value(key: str, spec: FieldSpec, value: Any):
    kind = spec.kind

    # Integers - strict validation to reject floats and scientific notation
    if kind == "int":
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or "e" in stripped.lower() or "." in stripped:
                raise ValidationError(f"{key} must be a plain integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{key} must be an integer")
        raise ValidationError(f"{key} must be an integer")

    if kind == "number":
        if isinstance(value, bool):
            raise ValidationError(f"{key} must be a number")
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                raise ValidationError(f"{key} must be a number")
        raise ValidationError(f"{key} must be a number")

    if kind == "bool":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValidationError(f"{key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC 'Z' strings)
    if kind == "datetime":
        if isinstance(value, datetime):
            return to_utc_z(value)
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{key} must be an ISO-8601 datetime")
            return to_utc_z(dt)
        raise ValidationError(f"{key} must be a datetime")

    if kind == "dict":
        if not isinstance(value, dict):
            raise ValidationError(f"{key} must be an object")
        return value

    if kind == "list":
        if not isinstance(value, list):
            raise ValidationError(f"{key} must be a list")
        return value

    # Strings
    return str(value).strip()


def validate_payload(*, payload: dict, policy: PatchPolicy, partial: bool) -> dict:
    """
    Validates + normalizes incoming JSON against a PatchPolicy.
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.fields:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}
    for k, raw in payload.items():
        spec = policy.fields[k]

        if raw is None:
            if not spec.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(k, spec, raw)

        if spec.kind == "str":
            if not spec.nullable and val == "":
                raise ValidationError(f"{k} cannot be blank")
            if spec.max_length and len(val) > spec.max_length:
                raise ValidationError(f"{k} exceeds max length {spec.max_length}")

        if spec.choices is not None and val not in spec.choices:
            raise ValidationError(f"{k} must be one of {', '.join(map(str, spec.choices))}")

        if spec.kind in ("int", "number"):
            if spec.min_value is not None and val < spec.min_value:
                raise ValidationError(f"{k} must be >= {spec.min_value}")
            if spec.max_value is not None and val > spec.max_value:
                raise ValidationError(f"{k} cannot exceed {spec.max_value}")

        patch[k] = val

    return patch


def positive_int(value: Any, name: str) -> int:
    spec = FieldSpec(kind="int", nullable=False, min_value=1)
    return validate_payload(
        payload={name: value},
        policy=PatchPolicy(fields={name: spec}),
        partial=True,
    )[name]


def iso_datetime(value: Any, name: str) -> datetime:
    """Required ISO-8601 datetime field, normalized to UTC-naive."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} required")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")
