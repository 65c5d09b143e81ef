"""
Input coercion shared by the workflow services.

Each helper returns the cleaned value or raises ValidationError with a
field-level ``details`` entry; nothing here touches the database.
"""

from __future__ import annotations

import math

from resourcing.core.exceptions import ValidationError

MAX_REASON_LENGTH = 500


def require_reason(reason, field: str = "reason") -> str:
    if reason is not None and not isinstance(reason, str):
        raise ValidationError(f"{field} must be a string", details={field: "invalid"})
    text = (reason or "").strip()
    if not text:
        raise ValidationError(f"{field} is required", details={field: "required"})
    if len(text) > MAX_REASON_LENGTH:
        raise ValidationError(
            f"{field} must be at most {MAX_REASON_LENGTH} characters",
            details={field: "too_long"},
        )
    return text


def parse_hours(value, field: str = "hours", *, allow_zero: bool = True, required: bool = True):
    """Coerce ``value`` to a finite non-negative float.

    Returns None when the value is absent and ``required`` is False.
    """
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", details={field: "required"})
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={field: "invalid"})
    try:
        hours = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: "invalid"}) from None
    if math.isnan(hours) or math.isinf(hours):
        raise ValidationError(f"{field} must be a number", details={field: "invalid"})
    if hours < 0 or (hours == 0 and not allow_zero):
        bound = ">= 0" if allow_zero else "> 0"
        raise ValidationError(f"{field} must be {bound}", details={field: "out_of_range"})
    return hours


def parse_enum(enum_cls, value, field: str):
    """Map a case-insensitive string onto ``enum_cls``."""
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", details={field: "required"})
    try:
        return enum_cls(value.strip().upper())
    except ValueError:
        allowed = sorted(m.value for m in enum_cls)
        raise ValidationError(
            f"{field} must be one of {allowed}", details={field: "invalid"},
        ) from None
