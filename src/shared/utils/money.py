from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

ZERO = Decimal("0.00")
_CENTS = Decimal("0.01")


def to_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """
    Parse a monetary input into a 2-place Decimal.

    Floats go through str() so 0.1 stays 0.1. Raises ValueError for
    malformed, infinite or NaN input.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid monetary value: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid monetary value: {value!r}") from None
    if not amount.is_finite():
        raise ValueError(f"Invalid monetary value: {value!r}")
    return round_money(amount)


def round_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """
    Round monetary value to 2 decimal places using ROUND_HALF_UP.

    Examples:
        >>> round_money(10.125)
        Decimal('10.13')
        >>> round_money(10.124)
        Decimal('10.12')
        >>> round_money("10.115")
        Decimal('10.12')
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if value < 0:
        return value.quantize(_CENTS, rounding=ROUND_HALF_DOWN)
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def round_whole(value: Union[Decimal, int, str]) -> Decimal:
    """
    Round to the nearest whole currency unit (half up), kept at 2 places.

        >>> round_whole(Decimal("266.67"))
        Decimal('267.00')
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP).quantize(_CENTS)


def sum_money(values) -> Decimal:
    """Sum an iterable of money values, starting from ZERO."""
    return round_money(sum(values, ZERO))
