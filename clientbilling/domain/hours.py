"""
Minute/hour conversions.

Minutes are the integer source of truth; hours are Decimal and only appear at
reporting boundaries, quantized to 4 places.
"""
from decimal import Decimal, ROUND_HALF_UP

HOURS_QUANT = Decimal("0.0001")
MONEY_QUANT = Decimal("0.01")
MINUTES_PER_HOUR = Decimal(60)
ZERO = Decimal(0)


def minutes_to_hours(minutes) -> Decimal:
    return (Decimal(minutes) / MINUTES_PER_HOUR).quantize(HOURS_QUANT, rounding=ROUND_HALF_UP)


def hours_to_minutes(hours) -> Decimal:
    """Exact minute count (Decimal) for an hours value such as 10.25."""
    return Decimal(hours) * MINUTES_PER_HOUR


def whole_minutes(minutes) -> int:
    """Round a Decimal minute amount to an integer minute count."""
    return int(Decimal(minutes).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def quantize_money(amount) -> Decimal:
    return Decimal(amount).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def format_minutes(minutes: int) -> str:
    """Format a minute count as "h:mm" (e.g. 90 -> "1:30")."""
    hours, rest = divmod(int(minutes), 60)
    return f"{hours}:{rest:02d}"
