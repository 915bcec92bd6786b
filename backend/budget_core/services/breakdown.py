from __future__ import annotations

from typing import Any, Iterable, Mapping

from ..dates import in_window, month_boundaries, shift_month
from ..schemas import (
    CustomBudgetStats,
    FinancialBreakdown,
    Priority,
    SystemBudgetStats,
    UserSettings,
)
from .classifier import amount_of, as_priority, classify, index_by_id
from .goals import resolve_limit

Row = Mapping[str, Any]


def aggregate(
    transactions: Iterable[Row],
    categories: Iterable[Row] | None,
    custom_budgets: Iterable[Row] | None,
    window_start: Any,
    window_end: Any,
) -> FinancialBreakdown:
    """Split the window's expenses into needs and wants buckets in one pass.

    Savings are never accumulated here; they are income minus the two totals.
    """
    result = FinancialBreakdown()
    categories_by_id = index_by_id(categories)
    custom_by_id = index_by_id(custom_budgets)

    for t in transactions or []:
        if t.get("type") != "expense":
            continue
        if not in_window(t, window_start, window_end):
            continue
        amount = amount_of(t)
        c = classify(t, categories_by_id, custom_by_id)
        if c.priority == Priority.needs:
            if c.paid:
                result.needs.paid += amount
            else:
                result.needs.unpaid += amount
        elif c.priority == Priority.wants:
            if c.custom:
                if c.paid:
                    result.wants.customPaid += amount
                else:
                    result.wants.customUnpaid += amount
            elif c.paid:
                result.wants.directPaid += amount
            else:
                result.wants.directUnpaid += amount

    result.needs.total = result.needs.paid + result.needs.unpaid
    result.wants.total = (
        result.wants.directPaid
        + result.wants.directUnpaid
        + result.wants.customPaid
        + result.wants.customUnpaid
    )
    return result


def monthly_income(transactions: Iterable[Row], start: Any, end: Any) -> float:
    return sum(
        amount_of(t) for t in transactions or []
        if t.get("type") == "income" and in_window(t, start, end)
    )


def monthly_paid_expenses(transactions: Iterable[Row], start: Any, end: Any) -> float:
    return sum(
        amount_of(t) for t in transactions or []
        if t.get("type") == "expense" and t.get("isPaid") and in_window(t, start, end)
    )


def total_month_expenses(transactions: Iterable[Row], start: Any, end: Any) -> float:
    return sum(
        amount_of(t) for t in transactions or []
        if t.get("type") == "expense" and in_window(t, start, end)
    )


def historical_average_income(transactions: Iterable[Row], year: int, month: int, lookback_months: int = 3) -> float:
    """Mean monthly income over the ``lookback_months`` before the given month."""
    rows = list(transactions or [])
    if not rows or lookback_months <= 0:
        return 0.0
    total = 0.0
    for offset in range(1, lookback_months + 1):
        y, m = shift_month(year, month, -offset)
        window = month_boundaries(y, m)
        total += monthly_income(rows, window.start, window.end)
    return total / lookback_months


def system_budget_stats(
    system_budget: Row,
    transactions: Iterable[Row],
    categories: Iterable[Row] | None,
    custom_budgets: Iterable[Row] | None,
    start: Any,
    end: Any,
    income: float,
    settings: UserSettings,
    historical_average: float = 0.0,
    goal: Row | None = None,
) -> SystemBudgetStats:
    budget_type = as_priority(system_budget.get("systemBudgetType"))
    breakdown = aggregate(transactions, categories, custom_budgets, start, end)

    if budget_type is None:
        paid = unpaid = 0.0
    elif budget_type == Priority.needs:
        paid, unpaid = breakdown.needs.paid, breakdown.needs.unpaid
    elif budget_type == Priority.wants:
        paid = breakdown.wants.directPaid + breakdown.wants.customPaid
        unpaid = breakdown.wants.directUnpaid + breakdown.wants.customUnpaid
    else:
        paid = max(0.0, income - (breakdown.needs.total + breakdown.wants.total))
        unpaid = 0.0

    # Without a goal the persisted amount is the limit.
    if goal is not None and budget_type is not None:
        limit = resolve_limit(goal, income, settings, historical_average)
    else:
        limit = amount_of(system_budget, "budgetAmount")

    total_spent = paid + unpaid
    return SystemBudgetStats(
        systemBudgetId=str(system_budget["id"]) if system_budget.get("id") is not None else None,
        systemBudgetType=budget_type,
        budgetLimit=limit,
        paidAmount=paid,
        unpaidAmount=unpaid,
        totalSpent=total_spent,
        remaining=limit - total_spent,
        percentageUsed=(total_spent / limit) * 100 if limit > 0 else 0.0,
    )


def custom_budget_stats(custom_budget: Row, transactions: Iterable[Row], start: Any = None, end: Any = None) -> CustomBudgetStats:
    budget_id = str(custom_budget.get("id"))
    expenses = [
        t for t in transactions or []
        if str(t.get("customBudgetId")) == budget_id
        and t.get("type") == "expense"
        and (start is None or end is None or in_window(t, start, end))
    ]
    allocated = amount_of(custom_budget, "allocatedAmount")
    paid = sum(amount_of(t) for t in expenses if t.get("isPaid"))
    unpaid = sum(amount_of(t) for t in expenses if not t.get("isPaid"))
    spent = paid + unpaid
    return CustomBudgetStats(
        customBudgetId=budget_id,
        allocated=allocated,
        spent=spent,
        paid=paid,
        unpaid=unpaid,
        remaining=allocated - spent,
        transactionCount=len(expenses),
    )


def bonus_savings_potential(
    system_budgets: Iterable[Row],
    transactions: Iterable[Row],
    categories: Iterable[Row] | None,
    custom_budgets: Iterable[Row] | None,
    start: Any,
    end: Any,
    income: float,
    settings: UserSettings,
    historical_average: float = 0.0,
    goals: Mapping[str, Row] | None = None,
) -> float:
    """Unspent needs and wants limits, i.e. what could still move to savings."""
    breakdown = aggregate(transactions, categories, custom_budgets, start, end)
    spent = {Priority.needs.value: breakdown.needs.total, Priority.wants.value: breakdown.wants.total}
    goals = goals or {}
    potential = 0.0
    for budget in system_budgets or []:
        budget_type = getattr(budget.get("systemBudgetType"), "value", budget.get("systemBudgetType"))
        if budget_type not in spent:
            continue
        goal = goals.get(budget_type)
        if goal is not None:
            limit = resolve_limit(goal, income, settings, historical_average)
        else:
            limit = amount_of(budget, "budgetAmount")
        potential += limit - spent.pop(budget_type)
    return potential
