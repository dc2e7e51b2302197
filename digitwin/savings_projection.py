from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from digitwin.budget_engine import CENTS, ZERO, coerce_amount
from digitwin.errors import ValidationError

MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class SipProjection:
    invested_amount: Decimal
    estimated_returns: Decimal
    total_value: Decimal


def project_sip(
    monthly_investment: Decimal,
    annual_return_pct: Decimal,
    years: int,
) -> SipProjection:
    """Future value of a fixed monthly contribution made at the start of each month."""
    monthly_investment = coerce_amount(monthly_investment)
    annual_return_pct = coerce_amount(annual_return_pct)
    if monthly_investment <= ZERO:
        raise ValidationError("Monthly investment must be greater than zero.")
    if annual_return_pct < ZERO:
        raise ValidationError("Expected return cannot be negative.")
    if years <= 0:
        raise ValidationError("Time period must be at least one year.")

    months = years * MONTHS_PER_YEAR
    invested = monthly_investment * months
    monthly_rate = annual_return_pct / Decimal(MONTHS_PER_YEAR) / Decimal("100")

    if monthly_rate == ZERO:
        total = invested
    else:
        growth = (1 + monthly_rate) ** months
        total = monthly_investment * ((growth - 1) / monthly_rate) * (1 + monthly_rate)

    total = total.quantize(CENTS, rounding=ROUND_HALF_UP)
    invested = invested.quantize(CENTS, rounding=ROUND_HALF_UP)
    return SipProjection(
        invested_amount=invested,
        estimated_returns=total - invested,
        total_value=total,
    )
