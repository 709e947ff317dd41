"""Payout Calculator

Platform commission on delivered work. All arithmetic is done in
Decimal and rounded half-up to whole currency units, so repeated calls
never accumulate float drift and ``fee + net`` always equals the budget.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ..exceptions import InvalidAmount

DEFAULT_COMMISSION_RATE = Decimal("0.05")

_UNIT = Decimal("1")


def to_decimal(value: int | str | float | Decimal) -> Decimal:
    """Coerce a monetary input to Decimal without going through binary floats"""
    if isinstance(value, bool):
        raise InvalidAmount(f"Not a monetary amount: {value!r}", value=value)
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation as e:
            raise InvalidAmount(f"Not a monetary amount: {value!r}", value=str(value)) from e
    if not result.is_finite():
        raise InvalidAmount(f"Not a monetary amount: {value!r}", value=str(value))
    return result


def round_half_up(value: Decimal) -> int:
    """Round to the nearest whole unit, halves away from zero"""
    return int(value.quantize(_UNIT, rounding=ROUND_HALF_UP))


def to_units(value: int | str | float | Decimal) -> int:
    """Coerce an amount that must already be a whole number of units"""
    d = to_decimal(value)
    if d != d.to_integral_value():
        raise InvalidAmount(f"Amount must be whole currency units: {value}", value=str(value))
    return int(d)


@dataclass(frozen=True)
class Payout:
    """Split of a gross budget between the platform and the executor"""

    fee: int
    net: int

    @property
    def gross(self) -> int:
        return self.fee + self.net


class PayoutCalculator:
    """
    Computes platform commission and net payout.

    Example:
        >>> PayoutCalculator().compute_payout(1000)
        Payout(fee=50, net=950)
    """

    def __init__(self, commission_rate: Decimal | str | float = DEFAULT_COMMISSION_RATE):
        rate = to_decimal(commission_rate)
        if rate < 0 or rate >= 1:
            raise ValueError(f"commission_rate must be in [0, 1), got {rate}")
        self.commission_rate = rate

    def compute_fee(self, budget: int | str | Decimal) -> int:
        units = to_units(budget)
        if units < 0:
            raise InvalidAmount(f"Budget cannot be negative: {units}", budget=units)
        return round_half_up(Decimal(units) * self.commission_rate)

    def compute_payout(self, budget: int | str | Decimal) -> Payout:
        """
        Split a gross budget.

        Raises:
            InvalidAmount: If the budget is negative or not whole units
        """
        units = to_units(budget)
        fee = self.compute_fee(units)
        return Payout(fee=fee, net=units - fee)
