from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from app.modulekit.errors import ValidationError


def clean_str(value: Any, field: str, default: str = "") -> str:
    """Strip a JSON string value. None and "" give `default`; any other type is a 400."""
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip()


def str_field(payload: Mapping[str, Any], *keys: str, default: str = "") -> str:
    """First non-empty value among `keys` (camelCase, then snake_case aliases), stripped."""
    for key in keys:
        value = payload.get(key)
        if value is None or value == "":
            continue
        return clean_str(value, keys[0], default)
    return default


def optional_str(payload: Mapping[str, Any], *keys: str) -> str | None:
    return str_field(payload, *keys) or None
