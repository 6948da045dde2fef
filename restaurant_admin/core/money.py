import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from restaurant_admin.core.errors import ValidationError

MONEY_QUANT = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")
# Numeric(12, 2) columns hold at most ten integer digits.
MONEY_MAX = Decimal("9999999999.99")

QTY_QUANT = Decimal("0.001")
ZERO_QTY = Decimal("0.000")
# Numeric(12, 3) columns hold at most nine integer digits.
QTY_MAX = Decimal("999999999.999")


def _parse_decimal(value: Decimal | int | float | str, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"{field} must be a finite number")
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a number") from exc
    if not parsed.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return parsed


def _quantize_within(parsed: Decimal, quant: Decimal, limit: Decimal, field: str) -> Decimal:
    if abs(parsed) > limit:
        raise ValidationError(f"{field} must not exceed {limit} in magnitude")
    try:
        return parsed.quantize(quant, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValidationError(f"{field} is out of range") from exc


def to_money(value: Decimal | int | float | str, *, field: str = "amount") -> Decimal:
    return _quantize_within(_parse_decimal(value, field), MONEY_QUANT, MONEY_MAX, field)


def to_quantity(value: Decimal | int | float | str, *, field: str = "qty") -> Decimal:
    """Coerce a stock quantity to a finite Decimal with three places."""
    return _quantize_within(_parse_decimal(value, field), QTY_QUANT, QTY_MAX, field)
