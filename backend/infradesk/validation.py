from __future__ import annotations

from typing import Any

from .errors import ValidationError


# Free-text fields are stored as-is but bounded
MAX_TEXT_LENGTH = 4000


def coerce_int(field: str, value: Any) -> int:
    """
    Strict integer coercion for JSON input.

    Rejects booleans, floats, decimals and scientific notation so that
    "1e3" or 2.5 never silently become a quantity.
    """
    if value is None:
        raise ValidationError(f"{field} is required", field=field)

    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value

    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field=field)
        if "e" in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)", field=field
            )
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)

    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)

    raise ValidationError(f"{field} must be an integer", field=field)


def coerce_positive_int(field: str, value: Any) -> int:
    number = coerce_int(field, value)
    if number <= 0:
        raise ValidationError(f"{field} must be a positive integer", field=field)
    return number


def coerce_optional_int(field: str, value: Any) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return coerce_int(field, value)


def coerce_mapping(field: str, value: Any) -> dict:
    """Opaque key/value documents must at least be JSON objects."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"{field} must be an object", field=field)
    return value


def coerce_text(field: str, value: Any, *, required: bool = False) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    text = str(value).strip()
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(f"{field} must be at most {MAX_TEXT_LENGTH} characters", field=field)
    return text
