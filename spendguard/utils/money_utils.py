"""Decimal money helpers"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from spendguard.domain.exceptions import InvalidAmountError

CENT = Decimal("0.01")


def to_amount(value: Union[Decimal, int, float, str]) -> Decimal:
    """
    Coerce a number to a two-place Decimal (floats go through str to avoid binary noise).

    Raises:
        InvalidAmountError: value is not a finite number that fits to the cent
    """
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise InvalidAmountError(f"Amount {value} cannot be represented to the cent") from e
    if not amount.is_finite():
        raise InvalidAmountError(f"Amount {value} is not a finite number")
    return amount


def apply_rate(amount: Decimal, rate: Union[Decimal, float, str]) -> Decimal:
    """Multiply an amount by a fractional rate, rounded half-up to the cent"""
    return to_amount(Decimal(amount) * Decimal(str(rate)))
