from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional

from digitwin.budget_engine import ZERO, coerce_amount, percent_of, validate_amount
from digitwin.errors import ValidationError

DELETE_REASONS = {
    "completed",
    "not-relevant",
    "too-ambitious",
    "changed-priorities",
    "duplicate",
    "other",
}


@dataclass(frozen=True)
class GoalState:
    name: str
    saved: Decimal
    target: Decimal
    celebrated: bool = False

    @property
    def percent_complete(self) -> int:
        # Not clamped; display layers cap at 100 themselves.
        return percent_of(self.saved, self.target)

    @property
    def is_complete(self) -> bool:
        return self.percent_complete >= 100


@dataclass(frozen=True)
class GoalUpdate:
    state: GoalState
    newly_completed: bool


def new_goal(name: str, saved: Decimal, target: Decimal) -> GoalUpdate:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Goal name required.")
    saved = validate_amount(saved, allow_zero=True)
    target = validate_amount(target)
    state = GoalState(name=name, saved=saved, target=target)
    return _latch(state)


def apply_update(
    current: GoalState,
    *,
    name: Optional[str] = None,
    saved: Optional[Decimal] = None,
    target: Optional[Decimal] = None,
) -> GoalUpdate:
    """Apply a partial edit and fire the one-shot completion latch.

    ``celebrated`` flips to true the first time the goal reaches 100% and is
    never reset afterwards, so a goal that dips below and climbs back does
    not celebrate a second time.
    """
    changes: dict = {}
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Goal name required.")
        changes["name"] = name
    if saved is not None:
        changes["saved"] = validate_amount(saved, allow_zero=True)
    if target is not None:
        changes["target"] = validate_amount(target)
    return _latch(replace(current, **changes))


def _latch(state: GoalState) -> GoalUpdate:
    if state.is_complete and not state.celebrated:
        return GoalUpdate(state=replace(state, celebrated=True), newly_completed=True)
    return GoalUpdate(state=state, newly_completed=False)


def validate_delete_reason(reason: Optional[str]) -> str:
    """Accept one of the fixed reasons or any non-empty free text."""
    normalized = (reason or "").strip()
    if not normalized:
        raise ValidationError("A reason is required to delete a goal.")
    lowered = normalized.lower()
    if lowered in DELETE_REASONS:
        return lowered
    return normalized


def farewell_message(percent_complete: int) -> str:
    if percent_complete >= 100:
        return "Congratulations on achieving your goal!"
    if percent_complete > 50:
        return "You made good progress! Remember, every step counts."
    return "Goal deleted. Don't worry, you can set new goals anytime!"


def remaining_to_target(state: GoalState) -> Decimal:
    remaining = coerce_amount(state.target) - coerce_amount(state.saved)
    return remaining if remaining > ZERO else ZERO
