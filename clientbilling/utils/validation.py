"""
Validation utilities for decimal request fields (hours, rates, fees)
"""
import re
from decimal import Decimal, InvalidOperation


def normalize_decimal_input(value: str) -> str:
    """
    Normalize a decimal input: trim and replace a decimal comma with a dot

    Example:
        >>> normalize_decimal_input("10,25")
        "10.25"
    """
    return value.strip().replace(",", ".")


def validate_decimal_amount(
    value: str,
    max_decimal_places: int = 2,
    allow_negative: bool = False,
) -> tuple[bool, str | None]:
    """
    Validate a decimal amount

    Args:
        value: input string
        max_decimal_places: maximum digits after the point (2 for money, 4 for hours)
        allow_negative: accept a leading minus (adjustment lines)

    Returns:
        (is_valid, error_message)

    Example:
        >>> validate_decimal_amount("100.50")
        (True, None)
        >>> validate_decimal_amount("100.505")
        (False, "At most 2 decimal places")
    """
    normalized = normalize_decimal_input(value)

    try:
        Decimal(normalized)
    except (InvalidOperation, ValueError):
        return False, f"Invalid number: {value!r}"

    sign = "-?" if allow_negative else ""
    pattern = rf"^{sign}\d+(\.\d{{1,{max_decimal_places}}})?$"
    if not re.match(pattern, normalized):
        if not allow_negative and normalized.startswith("-"):
            return False, "Value cannot be negative"
        return False, f"At most {max_decimal_places} decimal places"

    return True, None


def validate_and_normalize_amount(
    value: str,
    max_decimal_places: int = 2,
    allow_negative: bool = False,
) -> Decimal:
    """
    Validate a decimal amount and return it as Decimal

    Raises:
        ValueError: if validation fails
    """
    is_valid, error = validate_decimal_amount(value, max_decimal_places, allow_negative)
    if not is_valid:
        raise ValueError(error)

    return Decimal(normalize_decimal_input(value))
