# Overview: Input coercion and validation helpers shared by routes and services.

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from .errors import InvalidAmount, ValidationError


# Maximum single amount: S/ 999,999.00 (99,999,900 céntimos)
# Matches the ceiling the POS forms enforce; guards against overflow and typos
MAX_AMOUNT_CENTS = 99_999_900

MIN_REASON_LENGTH = 10
MAX_TEXT_LENGTH = 500


def parse_int(value: Any, field: str, *, allow_none: bool = False) -> int | None:
    """
    Strict integer coercion for JSON input.

    Rejects bools, floats, decimals and scientific notation so that amounts in
    céntimos are never silently truncated.
    """
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required", field=field)

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            if allow_none:
                return None
            raise ValidationError(f"{field} is required", field=field)
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field=field)
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    raise ValidationError(f"{field} must be an integer", field=field)


def require_positive_amount(amount_cents: Any, field: str = "amount_cents") -> int:
    """Amount strictly greater than zero, within MAX_AMOUNT_CENTS."""
    value = parse_int(amount_cents, field)
    if value <= 0:
        raise InvalidAmount(f"{field} must be greater than 0", field=field)
    if value > MAX_AMOUNT_CENTS:
        raise InvalidAmount(f"{field} exceeds the maximum allowed amount", field=field)
    return value


def require_non_negative_amount(amount_cents: Any, field: str) -> int:
    value = parse_int(amount_cents, field)
    if value < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds the maximum allowed amount", field=field)
    return value


def require_text(
    value: Any,
    field: str,
    *,
    min_length: int = 1,
    max_length: int = MAX_TEXT_LENGTH,
) -> str:
    """Trimmed text within [min_length, max_length] characters."""
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be text", field=field)
    text = value.strip()
    if not text:
        raise ValidationError(f"{field} is required", field=field)
    if len(text) < min_length:
        raise ValidationError(f"{field} must have at least {min_length} characters", field=field)
    if len(text) > max_length:
        raise ValidationError(f"{field} must have at most {max_length} characters", field=field)
    return text


def optional_text(value: Any, field: str, *, max_length: int = MAX_TEXT_LENGTH) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return require_text(value, field, max_length=max_length)


def require_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = list(choices)
    if not isinstance(value, str) or value.strip().upper() not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(allowed)}", field=field)
    return value.strip().upper()


def parse_bool(value: Any, field: str, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes", "si", "sí"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no"):
        return False
    raise ValidationError(f"{field} must be a boolean", field=field)


def parse_quantity(value: Any, field: str = "cantidad") -> Decimal:
    """Positive quantity with up to three decimals (products sold by weight/length)."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} is required", field=field)
    try:
        qty = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if not qty.is_finite() or qty <= 0:
        raise ValidationError(f"{field} must be greater than 0", field=field)
    if qty.as_tuple().exponent < -3:
        raise ValidationError(f"{field} allows at most 3 decimals", field=field)
    return qty
