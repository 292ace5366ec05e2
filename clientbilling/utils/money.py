"""
Money formatting for API payloads.

Usage:
    from clientbilling.utils.money import format_money

    format_money(1500)            -> "1,500.00"
    format_money("1200.5", "USD") -> "1,200.50 USD"
"""
from decimal import Decimal


def format_money(amount, currency: str | None = None, decimals: int = 2) -> str:
    """
    Format an amount with thousands separators and an optional currency code.

    Args:
        amount: int / float / Decimal / str
        currency: ISO code appended after the amount
        decimals: digits after the point
    """
    if isinstance(amount, str):
        amount = Decimal(amount)
    formatted = f"{{:,.{decimals}f}}".format(amount)
    return f"{formatted} {currency}" if currency else formatted


def decimal_str(value: Decimal | None) -> str | None:
    """Serialize a Decimal for JSON (None stays None)."""
    return None if value is None else str(value)
