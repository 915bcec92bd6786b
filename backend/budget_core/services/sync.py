from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Iterable, Mapping

from ..dates import MonthWindow, is_past_month, month_boundaries, parse_date
from ..persistence import EntityType, Persistence
from ..schemas import GoalMode, Priority, UserSettings
from .breakdown import historical_average_income, monthly_income
from .classifier import amount_of
from .goals import goals_by_priority, resolve_limit

logger = logging.getLogger(__name__)

SYSTEM_TYPES = (Priority.needs, Priority.wants, Priority.savings)
SYSTEM_COLORS = {
    Priority.needs: "#448eef",
    Priority.wants: "#F59E0B",
    Priority.savings: "#10B981",
}
CHANGE_TOLERANCE = 0.01


@dataclass
class SyncStats:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _budget_key(row: Mapping[str, Any]) -> tuple[Any, str, date | None, date | None]:
    budget_type = row.get("systemBudgetType")
    return (
        row.get("user_id"),
        getattr(budget_type, "value", budget_type),
        parse_date(row.get("startDate")),
        parse_date(row.get("endDate")),
    )


def find_duplicate_system_budgets(rows: Iterable[Mapping[str, Any]]) -> dict[tuple, list[Mapping[str, Any]]]:
    """Group rows sharing a (user, type, month) key; only keys with more than one row are returned."""
    groups: dict[tuple, list[Mapping[str, Any]]] = defaultdict(list)
    for row in rows:
        groups[_budget_key(row)].append(row)
    return {key: items for key, items in groups.items() if len(items) > 1}


def should_update(existing_amount: float, new_amount: float, allow_updates: bool) -> bool:
    # Past months stay frozen once populated; zero means never initialized.
    if not (allow_updates or existing_amount == 0):
        return False
    return abs(existing_amount - new_amount) > CHANGE_TOLERANCE


def compute_period_limits(
    goals: Mapping[str, Mapping[str, Any]],
    income: float,
    settings: UserSettings,
    historical_average: float = 0.0,
    previous_needs: float | None = None,
) -> dict[Priority, float]:
    amounts = {
        t: round(resolve_limit(goals.get(t.value), income, settings, historical_average), 2)
        for t in SYSTEM_TYPES
    }
    # Fixed lifestyle: needs may not grow past what was already persisted; the
    # surplus goes to savings.
    if (
        settings.goalMode == GoalMode.percentage
        and settings.fixedLifestyleMode
        and previous_needs is not None
        and previous_needs > 0
        and income > 0
        and amounts[Priority.needs] > previous_needs
    ):
        surplus = amounts[Priority.needs] - previous_needs
        amounts[Priority.needs] = previous_needs
        amounts[Priority.savings] = round(amounts[Priority.savings] + surplus, 2)
    return amounts


class SystemBudgetSynchronizer:
    """Keeps one system budget per (user, priority type, month) in line with the goals.

    Reconciliation is check-then-act against the store. Two overlapping runs for
    the same period can both see a type as absent and both create it; the
    re-fetch right before each create narrows that window but does not close it.
    Duplicates are reported, never merged.
    """

    def __init__(self, persistence: Persistence, history_lookback_months: int = 3) -> None:
        self.persistence = persistence
        self.history_lookback_months = history_lookback_months

    def reconcile(self, user_id: str, year: int, month: int, today: date | None = None) -> SyncStats:
        window = month_boundaries(year, month)
        goals = self.persistence.list_entities(EntityType.goals, user_id)
        transactions = self.persistence.list_entities(EntityType.transactions, user_id)
        existing = self.persistence.filter_entities(
            EntityType.system_budgets,
            user_id,
            {"startDate": window.start, "endDate": window.end},
        )
        settings = self.persistence.get_user_settings(user_id)
        return self.reconcile_period(user_id, year, month, goals, transactions, existing, settings, today=today)

    def reconcile_period(
        self,
        user_id: str,
        year: int,
        month: int,
        goals: list[Mapping[str, Any]] | None,
        transactions: list[Mapping[str, Any]],
        existing: list[Mapping[str, Any]] | None,
        settings: UserSettings,
        today: date | None = None,
    ) -> SyncStats:
        stats = SyncStats()
        if not goals or existing is None:
            return stats

        today = today or date.today()
        window = month_boundaries(year, month)
        allow_updates = not is_past_month(year, month, today)

        for key, rows in find_duplicate_system_budgets(existing).items():
            logger.warning("duplicate system budgets for %s: %s", key, [r.get("id") for r in rows])

        current = {}
        for row in existing:
            budget_type = getattr(row.get("systemBudgetType"), "value", row.get("systemBudgetType"))
            current.setdefault(budget_type, row)

        income = monthly_income(transactions, window.start, window.end)
        historical_average = historical_average_income(transactions, year, month, self.history_lookback_months)
        previous_needs = amount_of(current[Priority.needs.value], "budgetAmount") if Priority.needs.value in current else None
        amounts = compute_period_limits(goals_by_priority(goals), income, settings, historical_average, previous_needs)

        for budget_type in SYSTEM_TYPES:
            try:
                self._apply(user_id, budget_type, window, amounts[budget_type], current.get(budget_type.value), allow_updates, stats)
            except Exception:
                stats.failed += 1
                logger.exception("system budget sync failed for %s %s %s", user_id, budget_type.value, window.start)

        logger.info("system budget sync %s %04d-%02d: %s", user_id, year, month, stats.as_dict())
        return stats

    def _apply(
        self,
        user_id: str,
        budget_type: Priority,
        window: MonthWindow,
        amount: float,
        existing: Mapping[str, Any] | None,
        allow_updates: bool,
        stats: SyncStats,
    ) -> None:
        if existing is not None:
            existing_amount = amount_of(existing, "budgetAmount")
            if should_update(existing_amount, amount, allow_updates):
                self.persistence.update_entity(EntityType.system_budgets, user_id, existing["id"], {"budgetAmount": amount})
                stats.updated += 1
                logger.info("updated %s budget %s: %.2f -> %.2f", budget_type.value, existing["id"], existing_amount, amount)
            elif not allow_updates and abs(existing_amount - amount) > CHANGE_TOLERANCE:
                stats.skipped += 1
                logger.debug("past %s budget %s is frozen at %.2f", budget_type.value, existing["id"], existing_amount)
            else:
                stats.unchanged += 1
            return

        # Re-check right before creating; another run may have won the race.
        wanted = (user_id, budget_type.value, window.start, window.end)
        everything = self.persistence.list_entities(EntityType.system_budgets, user_id)
        if any(_budget_key(row) == wanted for row in everything):
            stats.skipped += 1
            return

        created = self.persistence.create_entity(
            EntityType.system_budgets,
            user_id,
            {
                "name": budget_type.value.capitalize(),
                "systemBudgetType": budget_type.value,
                "budgetAmount": amount,
                "startDate": window.start,
                "endDate": window.end,
                "color": SYSTEM_COLORS[budget_type],
            },
        )
        stats.created += 1
        logger.info("created %s budget %s for %s: %.2f", budget_type.value, created["id"], window.start, amount)

    def snapshot_future_budgets(
        self,
        user_id: str,
        goal: Mapping[str, Any],
        settings: UserSettings,
        today: date | None = None,
    ) -> SyncStats:
        """Re-resolve stored budgets of ``goal``'s type from the current month on.

        Each month uses its own income. Past months are never touched.
        """
        stats = SyncStats()
        if not goal:
            return stats
        today = today or date.today()
        horizon = date(today.year, today.month, 1)
        budget_type = getattr(goal.get("priority"), "value", goal.get("priority"))

        budgets = [
            b for b in self.persistence.filter_entities(EntityType.system_budgets, user_id, {"systemBudgetType": budget_type})
            if (parse_date(b.get("startDate")) or date.min) >= horizon
        ]
        if not budgets:
            return stats

        transactions = self.persistence.list_entities(EntityType.transactions, user_id)
        for budget in budgets:
            start = parse_date(budget.get("startDate"))
            window = month_boundaries(start.year, start.month)
            income = monthly_income(transactions, window.start, window.end)
            historical_average = historical_average_income(transactions, start.year, start.month, self.history_lookback_months)
            amount = round(resolve_limit(goal, income, settings, historical_average), 2)
            if abs(amount_of(budget, "budgetAmount") - amount) <= CHANGE_TOLERANCE:
                stats.unchanged += 1
                continue
            try:
                self.persistence.update_entity(EntityType.system_budgets, user_id, budget["id"], {"budgetAmount": amount})
                stats.updated += 1
            except Exception:
                stats.failed += 1
                logger.exception("snapshot update failed for system budget %s", budget.get("id"))
        return stats
