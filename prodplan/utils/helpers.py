"""Shared utility functions for services and blueprints.

parse_dt:       ISO string → datetime (None passthrough)
as_utc:         attach UTC to naive datetimes read back from SQLite
parse_position: queue position from request input
require_text:   non-blank string fields (names, titles)
parse_duration: non-negative integer minutes
"""
from datetime import datetime, timezone

from prodplan.core.exceptions import ValidationError


def parse_dt(val):
    """Convert an ISO-format string to a datetime.

    Supports the common ISO variants sent by shop-floor terminals and falls
    back to ``fromisoformat``.  Passes None/datetime through unchanged.

    Raises:
        ValidationError: the string is not a recognisable datetime.
    """
    if val is None or isinstance(val, datetime):
        return val
    if isinstance(val, str):
        val = val.strip()
        if not val:
            return None
        for fmt in ("%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
            try:
                return datetime.strptime(val, fmt)
            except ValueError:
                continue
        try:
            return datetime.fromisoformat(val)
        except ValueError as exc:
            raise ValidationError(f"Invalid datetime: {val!r}") from exc
    raise ValidationError(f"Invalid datetime: {val!r}")


def as_utc(value):
    """Return *value* as an aware UTC datetime (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_position(value):
    """Queue position as int ≥ 1; integral floats (``2.0``) are accepted.

    Raises:
        ValidationError: bools, strings, fractional floats, or values < 1.
    """
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("position must be an integer", details={"position": value})
    if value < 1:
        raise ValidationError("position must be >= 1", details={"position": value})
    return value


def require_text(value, label, field="name"):
    """Return *value* stripped, or raise ValidationError if blank or not a string."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required", details={field: "required"})
    return value.strip()


def parse_duration(value, field="expected_duration_min"):
    """Non-negative integer minutes, None passthrough."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(
            f"{field} must be a non-negative integer",
            details={field: value},
        )
    return value
