from __future__ import annotations

import math
from typing import Iterable


class DeltaValidationError(ValueError):
    pass


def as_number(value, *, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DeltaValidationError(f"{field} expects a number, got {value!r}")
    if math.isnan(value) or math.isinf(value):
        raise DeltaValidationError(f"{field} expects a finite number")
    return value


def as_text(value, *, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise DeltaValidationError(f"{field} expects a non-empty string")
    return value.strip()


def as_mapping(value, *, field: str) -> dict:
    if not isinstance(value, dict):
        raise DeltaValidationError(f"{field} expects an object")
    return value


def require_fields(payload: dict, fields: Iterable[str], *, field: str) -> None:
    missing = [name for name in fields if not payload.get(name)]
    if missing:
        raise DeltaValidationError(f"{field} missing required fields: {', '.join(missing)}")


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def optional_number(value, default: float, *, field: str) -> float:
    if value is None:
        return default
    return as_number(value, field=field)


def as_level(value, *, field: str, default: int = 1) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise DeltaValidationError(f"{field} expects an integer of at least 1, got {value!r}")
    return value
