"""Placement fee arithmetic."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")


def to_decimal(value: Optional[Number], label: str) -> Optional[Decimal]:
    """Convert user input to Decimal; floats go through ``str`` to avoid binary noise."""
    if value is None:
        return None
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{label} must be a number, got {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"{label} must be finite, got {value!r}")
    return result


def estimate_fee(salary: Optional[Number], fee_percentage: Optional[Number]) -> Optional[Decimal]:
    """``salary * fee_percentage / 100`` rounded to cents.

    Returns None when either input is missing.

    Raises:
        ValueError: Negative salary, or a percentage outside 0-100

    Example:
        >>> estimate_fee(120000, 20)
        Decimal('24000.00')
    """
    salary = to_decimal(salary, "estimated_salary")
    fee_percentage = to_decimal(fee_percentage, "fee_percentage")
    if salary is None or fee_percentage is None:
        return None
    if salary < 0:
        raise ValueError(f"estimated_salary must not be negative, got {salary}")
    if not Decimal(0) <= fee_percentage <= Decimal(100):
        raise ValueError(f"fee_percentage must be between 0 and 100, got {fee_percentage}")
    return (salary * fee_percentage / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
