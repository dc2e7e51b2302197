"""
Monthly financial task derivation.

Turns a user's task preferences into the set of reminders for one month.
The ledger deletes the month's generated tasks and inserts this set again
whenever preferences change, so this module only has to describe the
target state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Mapping, Sequence

UTILITY_DUE_DAYS: dict[str, int] = {
    "electricity": 20,
    "internet": 22,
    "water": 25,
    "gas": 28,
}

DEFAULT_UTILITY_BILLS: dict[str, bool] = {
    "electricity": True,
    "internet": True,
    "water": False,
    "gas": False,
}


@dataclass(frozen=True)
class TaskPreferences:
    has_home_loan: bool = False
    uses_card: bool = False
    credit_card_types: Sequence[str] = ()
    pays_rent: bool = True
    utility_bills: Mapping[str, bool] = field(default_factory=lambda: dict(DEFAULT_UTILITY_BILLS))
    savings_goal: Decimal = Decimal("0")
    has_savings_goal_reminder: bool = False


@dataclass(frozen=True)
class PlannedTask:
    description: str
    due_date: date
    category: str


def plan_monthly_tasks(
    preferences: TaskPreferences,
    month: int,
    year: int,
) -> list[PlannedTask]:
    tasks: list[PlannedTask] = []

    if preferences.has_home_loan:
        tasks.append(PlannedTask("Pay home loan EMI", date(year, month, 5), "loan"))

    if preferences.uses_card:
        for card_type in preferences.credit_card_types:
            card_type = card_type.strip()
            if not card_type:
                continue
            tasks.append(
                PlannedTask(f"Pay {card_type} credit card bill", date(year, month, 15), "credit")
            )

    if preferences.pays_rent:
        tasks.append(PlannedTask("Pay monthly rent", date(year, month, 1), "housing"))

    for utility, enabled in preferences.utility_bills.items():
        due_day = UTILITY_DUE_DAYS.get(utility)
        if not enabled or due_day is None:
            continue
        tasks.append(PlannedTask(f"Pay {utility} bill", date(year, month, due_day), "utilities"))

    if preferences.has_savings_goal_reminder and preferences.savings_goal > 0:
        tasks.append(
            PlannedTask(
                f"Transfer {_format_amount(preferences.savings_goal)} to savings account",
                date(year, month, 25),
                "savings",
            )
        )

    return tasks


def _format_amount(amount: Decimal) -> str:
    quantized = Decimal(str(amount)).quantize(Decimal("0.01"))
    if quantized == quantized.to_integral_value():
        return f"{int(quantized):,}"
    return f"{quantized:,}"
