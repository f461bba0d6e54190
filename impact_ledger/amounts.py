from decimal import Decimal, InvalidOperation, ROUND_FLOOR

from .errors import ValidationError


def to_amount(value, field: str = "amount") -> Decimal:
    """Coerce ``value`` to a finite, non-negative Decimal or raise ValidationError."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field)
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be a number, got {value!r}", field=field)
    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite, got {value!r}", field=field)
    if amount < 0:
        raise ValidationError(f"{field} must not be negative, got {value!r}", field=field)
    return amount


def floor_credits(amount: Decimal) -> Decimal:
    """Round down to whole credits."""
    return amount.to_integral_value(rounding=ROUND_FLOOR)
