from __future__ import annotations

from typing import Any


class ValidationError(ValueError):
    """400-level input problem."""


def coerce_int(field: str, value: Any) -> int:
    """
    Strict integer coercion for request payloads.

    Accepts ints and plain digit strings (optional leading minus); rejects
    bools, floats, decimals and scientific notation.
    """
    if value is None:
        raise ValidationError(f"{field} is required")

    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def require_json_object(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def require_fields(payload: dict, *fields: str) -> None:
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def require_str_fields(payload: dict, *fields: str) -> None:
    """Reject present, non-null values of FIELDS that are not strings."""
    wrong = [f for f in fields if payload.get(f) is not None and not isinstance(payload[f], str)]
    if wrong:
        raise ValidationError(f"Fields must be strings: {', '.join(wrong)}")


def optional_str(payload: dict, field: str) -> str:
    value = payload.get(field)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value
