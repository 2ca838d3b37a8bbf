from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from .errors import InvalidLocation, ValidationError
from .time_utils import normalize_datetime, parse_business_date


# Maximum monetary amount: 9,999,999,999.99 (999,999,999,999 cents)
MAX_VALUE_CENTS = 999_999_999_999


@dataclass(frozen=True)
class Location:
    """
    Physical placement of a jewelry unit.

    branch_id and counter_id are always present; box_id is optional.
    """
    branch_id: int
    counter_id: int
    box_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "counter_id": self.counter_id,
            "box_id": self.box_id,
        }


def coerce_int(field: str, value: Any) -> int:
    """Strict integer coercion: rejects floats, bools, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def optional_int(field: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    return coerce_int(field, value)


def coerce_cents(field: str, value: Any) -> Optional[int]:
    """Monetary amounts are integer cents in [0, MAX_VALUE_CENTS]."""
    cents = optional_int(field, value)
    if cents is None:
        return None
    if cents < 0:
        raise ValidationError(f"{field} must be >= 0")
    if cents > MAX_VALUE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_VALUE_CENTS}")
    return cents


def optional_str(field: str, value: Any, max_length: int | None = None) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    if max_length and len(s) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return s


def require_fields(payload: dict, *fields: str) -> None:
    missing = [f for f in fields if payload.get(f) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def parse_datetime_field(field: str, value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return normalize_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def parse_date_field(field: str, value: Any) -> date:
    try:
        return parse_business_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)")


def build_location(branch_id: Any, counter_id: Any, box_id: Any = None) -> Location:
    """
    Build a Location from loose ids.

    A box without a counter, or a counter without a branch, is malformed.
    """
    if branch_id is None or counter_id is None:
        raise InvalidLocation("Location requires both branch_id and counter_id")
    branch = coerce_int("branch_id", branch_id)
    counter = coerce_int("counter_id", counter_id)
    box = optional_int("box_id", box_id)
    if branch <= 0 or counter <= 0 or (box is not None and box <= 0):
        raise InvalidLocation("Location ids must be positive integers")
    return Location(branch_id=branch, counter_id=counter, box_id=box)


def parse_location(payload: Any, *, required: bool = True) -> Optional[Location]:
    """
    Parse {"branch_id", "counter_id", "box_id"?} from a JSON object.

    Returns None when the location is absent and not required.
    """
    if payload is None:
        if required:
            raise InvalidLocation("Location is required")
        return None
    if not isinstance(payload, dict):
        raise InvalidLocation("Location must be an object")
    if not any(payload.get(k) is not None for k in ("branch_id", "counter_id", "box_id")):
        if required:
            raise InvalidLocation("Location is required")
        return None
    return build_location(payload.get("branch_id"), payload.get("counter_id"), payload.get("box_id"))
