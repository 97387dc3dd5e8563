from flask import request

from errors import ValidationError


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def require_str(data: dict, key: str, label: str | None = None, max_len: int = 255) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label or key} is required")
    value = value.strip()
    if len(value) > max_len:
        raise ValidationError(f"{label or key} is too long")
    return value


def optional_str(data: dict, key: str, max_len: int = 255) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    if len(value) > max_len:
        raise ValidationError(f"{key} is too long")
    return value or None


def parse_int(value, label: str, minimum: int | None = None) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a whole number")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{label} must be a whole number")
        value = int(value)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a whole number")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{label} must be at least {minimum}")
    return number


def parse_bool(value, label: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{label} must be true or false")
