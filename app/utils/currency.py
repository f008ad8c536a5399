"""Money helpers: amounts are Decimal with two places everywhere, never float."""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.core.config import settings

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Coerce int/str/Decimal to a 2-place Decimal. Floats go through str() to avoid binary noise."""
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValueError(f"invalid amount: {value!r}") from e


def format_amount(amount) -> str:
    """Format as e.g. "RM 12.50"."""
    if amount is None:
        return f"{settings.currency_code} 0.00"
    return f"{settings.currency_code} {to_money(amount)}"
