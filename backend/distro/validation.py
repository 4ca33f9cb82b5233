from __future__ import annotations

from typing import Any


# Maximum money amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


class NotFoundError(LookupError):
    """404-level missing entity."""


def coerce_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion for JSON input.

    Accepts ints and plain digit strings; rejects bools, floats, decimals and
    scientific notation, like the cents columns they end up in.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        out = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            out = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and out < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    if maximum is not None and out > maximum:
        raise ValidationError(f"{field} must be <= {maximum}")
    return out


def coerce_cents(value: Any, field: str) -> int:
    """Non-negative money amount in cents. None and "" count as zero."""
    if value is None or value == "":
        return 0
    return coerce_int(value, field, minimum=0, maximum=MAX_AMOUNT_CENTS)


def coerce_percent(value: Any, field: str) -> float:
    """Discount percentage clamped to 0..100."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        pct = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    return max(0.0, min(pct, 100.0))


def coerce_id_map(raw: Any, field: str, coerce) -> dict[int, Any]:
    """
    Normalize a JSON object keyed by product id ({"12": 3}) into {12: 3}.
    """
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError(f"{field} must be an object keyed by product id")
    out: dict[int, Any] = {}
    for key, value in raw.items():
        product_id = coerce_int(key, f"{field} key", minimum=1)
        out[product_id] = coerce(value, f"{field}[{key}]")
    return out
