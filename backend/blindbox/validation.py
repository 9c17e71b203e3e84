"""
Request payload validation.

Routes pass incoming JSON through `validate_payload` with a field policy:
only allowlisted fields are accepted, required fields must be present, and
values are coerced strictly (wei amounts may arrive as digit strings since
they exceed the safe integer range of JavaScript clients).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .errors import ValidationError

INT = "int"
BOOL = "bool"
STR = "str"

# Form checkboxes post "on"
TRUE_STRINGS = {"true", "1", "on", "yes"}
FALSE_STRINGS = {"false", "0", "off", "no", ""}


@dataclass(frozen=True)
class PayloadPolicy:
    """
    - fields: allowed field name -> kind (INT, BOOL, STR)
    - required: fields that must be present
    - defaults: values used for missing optional fields
    """
    fields: dict
    required: frozenset = frozenset()
    defaults: dict = field(default_factory=dict)


def coerce_int(name: str, value: Any) -> int:
    # bool is a subclass of int
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        # Reject scientific notation (e.g., "1e18")
        if 'e' in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def coerce_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
    raise ValidationError(f"{name} must be a boolean")


def coerce_str(name: str, value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise ValidationError(f"{name} must be a string")
    return str(value).strip()


_COERCERS = {INT: coerce_int, BOOL: coerce_bool, STR: coerce_str}


def validate_payload(payload: Any, policy: PayloadPolicy) -> dict:
    """
    Validate + normalize a JSON body against a policy.

    Unknown fields are rejected; None is passed through for optional fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    missing = sorted(f for f in policy.required if payload.get(f) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    for k in payload.keys():
        if k not in policy.fields:
            raise ValidationError(f"Field not allowed: {k}")

    cleaned = dict(policy.defaults)
    for k, raw in payload.items():
        if raw is None:
            cleaned.setdefault(k, None)
            continue
        cleaned[k] = _COERCERS[policy.fields[k]](k, raw)
    return cleaned
