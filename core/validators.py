"""
Input validation functions for API parameters.

Validators raise ValidationError on invalid input; the number parsers
never raise and fall back to a default instead, so a malformed ``limit``
degrades to the default page size rather than a 400.
"""
import math
import re
from typing import Any, Optional

from core.exceptions import ValidationError

FILTER_TYPES = ("date", "category", "coupon")

_LEADING_INT = re.compile(r"\s*[+-]?\d+")


def require_store_id(value: Optional[str], message: str = "Missing storeId") -> str:
    """Return the stripped store id or raise with the route's message."""
    if value is None or not str(value).strip():
        raise ValidationError("storeId", message)
    return str(value).strip()


def _to_number(value: Any) -> float:
    if value is None or value == "":
        return math.nan
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def parse_positive_int(value: Any, fallback: int, min_value: int, max_value: int) -> int:
    """
    Floor and clamp ``value`` to [min_value, max_value].

    Non-numeric and non-finite input returns ``fallback`` unclamped.
    """
    n = _to_number(value)
    if not math.isfinite(n):
        return fallback
    return min(max(math.floor(n), min_value), max_value)


def parse_int_param(value: Any, fallback: int, min_value: int, max_value: int) -> int:
    """
    Leading-integer parse ("12abc" -> 12, "7.9" -> 7) clamped to the range.

    Input without a leading integer returns ``fallback``.
    """
    match = _LEADING_INT.match(str(value)) if value is not None else None
    if not match:
        return fallback
    return min(max(int(match.group(0)), min_value), max_value)


def validate_filter_type(value: Optional[str]) -> str:
    """Accept date / category / coupon; None means date."""
    if value is None or value == "":
        return "date"
    if value not in FILTER_TYPES:
        raise ValidationError(
            "type",
            f"Invalid filter type. Expected one of: {', '.join(FILTER_TYPES)}",
            value,
        )
    return value


def parse_customer_id(value: Any) -> int:
    """Path/query customer ids are positive integers."""
    n = _to_number(value)
    if not math.isfinite(n) or n <= 0 or n != int(n):
        raise ValidationError("customerId", "Invalid customer id", value)
    return int(n)
