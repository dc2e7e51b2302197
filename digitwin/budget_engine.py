from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from digitwin.errors import ValidationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class Partition:
    user_id: int
    month: int
    year: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValidationError("Month must be between 1 and 12.")

    @classmethod
    def for_date(cls, user_id: int, value: date) -> "Partition":
        return cls(user_id=user_id, month=value.month, year=value.year)

    @property
    def key(self) -> str:
        return budget_key(self.user_id, self.month, self.year)

    def shift(self, months: int) -> "Partition":
        month, year = shift_month(self.month, self.year, months)
        return replace(self, month=month, year=year)


@dataclass(frozen=True)
class BudgetAggregate:
    budget: Decimal
    spent: Decimal = ZERO

    @property
    def remaining(self) -> Decimal:
        return self.budget - self.spent

    @property
    def percent_spent(self) -> int:
        return percent_of(self.spent, self.budget)


def budget_key(user_id: int, month: int, year: int) -> str:
    return f"{user_id}_{month}-{year}"


def shift_month(month: int, year: int, months: int) -> tuple[int, int]:
    index = (year * 12 + (month - 1)) + months
    return index % 12 + 1, index // 12


def percent_of(part: Decimal, whole: Decimal) -> int:
    """Whole-number percentage rounded half up; zero when ``whole`` is zero."""
    part = coerce_amount(part)
    whole = coerce_amount(whole)
    if whole == ZERO:
        return 0
    ratio = part / whole * HUNDRED
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_amount(amount: Decimal | int | float | str, *, allow_zero: bool = False) -> Decimal:
    try:
        value = coerce_amount(amount)
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("Amount must be a number.") from exc
    if not value.is_finite():
        raise ValidationError("Amount must be a finite number.")
    if value < ZERO or (value == ZERO and not allow_zero):
        raise ValidationError("Amount must be greater than zero.")
    # Stored as NUMERIC(12, 2); sub-cent digits would be truncated on write.
    try:
        whole_cents = value == value.quantize(CENTS)
    except InvalidOperation as exc:
        raise ValidationError("Amount is too large.") from exc
    if not whole_cents:
        raise ValidationError("Amount cannot have more than two decimal places.")
    return value


def recompute(budget: Decimal, amounts: Iterable[Decimal]) -> BudgetAggregate:
    spent = ZERO
    for amount in amounts:
        spent += coerce_amount(amount)
    return BudgetAggregate(budget=coerce_amount(budget), spent=spent)


def coerce_amount(amount: Decimal | int | float | str | None) -> Decimal:
    if amount is None:
        return ZERO
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
