from __future__ import annotations

import zlib
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from digitwin.budget_engine import ZERO, coerce_amount, percent_of

DEFAULT_CATEGORY = "Other"

PALETTE: tuple[str, ...] = (
    "#6366f1",
    "#10b981",
    "#f59e0b",
    "#ef4444",
    "#3b82f6",
    "#8b5cf6",
    "#ec4899",
    "#14b8a6",
    "#f97316",
    "#84cc16",
)


@dataclass(frozen=True)
class CategorizedAmount:
    amount: Decimal
    category: Optional[str] = None


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    total: Decimal
    percentage: int
    color: str


@dataclass(frozen=True)
class CategoryComparison:
    category: str
    totals: dict[str, Decimal]


def normalize_category(value: Optional[str]) -> str:
    if value is None or not value.strip():
        return DEFAULT_CATEGORY
    return value


def color_for(category: str, palette: Sequence[str] = PALETTE) -> str:
    """Pick a palette color from a stable hash of the category name.

    The same name always maps to the same color regardless of which other
    categories are present or in what order they were first seen.
    """
    if not palette:
        raise ValueError("Palette must not be empty.")
    digest = zlib.crc32(category.encode("utf-8"))
    return palette[digest % len(palette)]


def group_totals(items: Iterable[CategorizedAmount]) -> dict[str, Decimal]:
    # Case-sensitive on purpose: "food" and "Food" stay separate groups.
    totals: dict[str, Decimal] = {}
    for item in items:
        category = normalize_category(item.category)
        totals[category] = totals.get(category, ZERO) + coerce_amount(item.amount)
    return totals


def summarize_by_category(
    items: Iterable[CategorizedAmount],
    palette: Sequence[str] = PALETTE,
) -> list[CategoryTotal]:
    totals = group_totals(items)
    if not totals:
        return []
    grand_total = sum(totals.values(), ZERO)
    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [
        CategoryTotal(
            category=category,
            total=total,
            percentage=percent_of(total, grand_total),
            color=color_for(category, palette),
        )
        for category, total in ordered
    ]


def compare_periods(
    periods: Sequence[tuple[str, Iterable[CategorizedAmount]]],
) -> list[CategoryComparison]:
    """Side-by-side category spend for several labelled periods.

    Every category seen in any period gets a total for every label, zero
    where that period had no spend in it.
    """
    per_label: list[tuple[str, dict[str, Decimal]]] = [
        (label, group_totals(items)) for label, items in periods
    ]
    categories: list[str] = []
    for _, totals in per_label:
        for category in totals:
            if category not in categories:
                categories.append(category)

    return [
        CategoryComparison(
            category=category,
            totals={label: totals.get(category, ZERO) for label, totals in per_label},
        )
        for category in sorted(categories)
    ]
