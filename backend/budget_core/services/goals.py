from __future__ import annotations

from typing import Any, Iterable, Mapping

from ..schemas import GoalMode, Priority, UserSettings
from .classifier import amount_of


def resolve_limit(
    goal: Mapping[str, Any] | None,
    monthly_income: float,
    settings: UserSettings,
    historical_average_income: float = 0.0,
) -> float:
    """Turn a goal into a currency limit for one month.

    Absolute mode returns the goal's flat amount. Percentage mode applies the
    goal's percentage to the month's income, unless fixed-lifestyle mode is on
    and income rose above the historical average: then the average is the
    basis, needs/wants are capped to it and savings absorbs the whole overflow.
    """
    if not goal:
        return 0.0

    if settings.goalMode == GoalMode.absolute:
        return amount_of(goal, "target_amount")

    pct = amount_of(goal, "target_percentage")
    if (
        settings.fixedLifestyleMode
        and historical_average_income > 0
        and monthly_income > historical_average_income
    ):
        basis = historical_average_income
        standard = basis * pct / 100
        overflow = monthly_income - basis
        if goal.get("priority") == Priority.savings.value:
            return standard + overflow
        return standard

    return monthly_income * pct / 100


def goals_by_priority(goals: Iterable[Mapping[str, Any]] | None) -> dict[str, Mapping[str, Any]]:
    """Latest goal per priority; stored goals are unique per (user, priority)."""
    result: dict[str, Mapping[str, Any]] = {}
    for goal in goals or []:
        priority = getattr(goal.get("priority"), "value", goal.get("priority"))
        if priority in {p.value for p in Priority}:
            result[priority] = goal
    return result
