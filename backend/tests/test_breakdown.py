from datetime import date

import pytest

from budget_core.schemas import Priority, UserSettings
from budget_core.services.breakdown import (
    aggregate,
    bonus_savings_potential,
    custom_budget_stats,
    historical_average_income,
    monthly_income,
    monthly_paid_expenses,
    system_budget_stats,
)
from budget_core.services.classifier import PrioritySource, amount_of, classify, index_by_id, resolve_priority

START = date(2026, 3, 1)
END = date(2026, 3, 31)

CATEGORIES = [
    {"id": "rent", "name": "Rent", "priority": "needs"},
    {"id": "fun", "name": "Fun", "priority": "wants"},
]
CUSTOM_BUDGETS = [
    {"id": "trip", "name": "Trip", "allocatedAmount": 500, "isSystemBudget": False},
    {"id": "sys-wants", "name": "Wants", "allocatedAmount": 900, "isSystemBudget": True},
]


def _expense(amount, **extra):
    return {"type": "expense", "amount": amount, "date": "2026-03-10", "isPaid": False, **extra}


TRANSACTIONS = [
    {"type": "income", "amount": 4000, "date": "2026-03-01", "isPaid": True},
    _expense(100, category_id="rent", isPaid=True, paidDate="2026-03-05"),
    _expense(50, financial_priority="needs"),
    _expense(30, isPaid=True, paidDate="2026-03-12"),
    _expense(20, customBudgetId="trip"),
    _expense(15, customBudgetId="trip", isPaid=True, paidDate="2026-03-20"),
    _expense(10, customBudgetId="sys-wants", isPaid=True, paidDate="2026-03-11"),
    # booked in March, paid in April: belongs to April
    _expense(999, category_id="rent", isPaid=True, paidDate="2026-04-02"),
    _expense(5, category_id="fun", date="2026-02-27"),
]


def test_explicit_priority_beats_category() -> None:
    cats = index_by_id(CATEGORIES)
    resolution = resolve_priority({"category_id": "fun", "financial_priority": "needs"}, cats)
    assert resolution.priority == Priority.needs
    assert resolution.source == PrioritySource.transaction


def test_priority_falls_back_to_category_then_wants() -> None:
    cats = index_by_id(CATEGORIES)
    assert resolve_priority({"category_id": "rent"}, cats).source == PrioritySource.category
    fallback = resolve_priority({"category_id": "missing"}, cats)
    assert fallback.priority == Priority.wants
    assert fallback.source == PrioritySource.default


def test_system_budget_link_is_not_custom() -> None:
    c = classify(_expense(10, customBudgetId="sys-wants"), {}, index_by_id(CUSTOM_BUDGETS))
    assert c.custom is False
    c = classify(_expense(10, customBudgetId="trip"), {}, index_by_id(CUSTOM_BUDGETS))
    assert c.custom is True
    c = classify(_expense(10, customBudgetId="deleted"), {}, index_by_id(CUSTOM_BUDGETS))
    assert c.custom is False


def test_malformed_amounts_count_as_zero() -> None:
    assert amount_of({"amount": "abc"}) == 0.0
    assert amount_of({"amount": None}) == 0.0
    assert amount_of({}) == 0.0
    assert amount_of({"amount": "12.5"}) == 12.5


def test_aggregate_splits_needs_and_wants() -> None:
    result = aggregate(TRANSACTIONS, CATEGORIES, CUSTOM_BUDGETS, START, END)
    assert result.needs.paid == 100
    assert result.needs.unpaid == 50
    assert result.needs.total == result.needs.paid + result.needs.unpaid
    assert result.wants.directPaid == 40
    assert result.wants.directUnpaid == 0
    assert result.wants.customPaid == 15
    assert result.wants.customUnpaid == 20
    assert result.wants.total == 75


def test_aggregate_handles_missing_inputs() -> None:
    result = aggregate([], None, None, START, END)
    assert result.needs.total == 0
    assert result.wants.total == 0
    broken = [{"type": "expense", "amount": 10, "date": "not-a-date"}]
    assert aggregate(broken, None, None, START, END).wants.total == 0


def test_income_and_paid_expense_totals() -> None:
    assert monthly_income(TRANSACTIONS, START, END) == 4000
    assert monthly_paid_expenses(TRANSACTIONS, START, END) == 155


def test_historical_average_income_uses_previous_months() -> None:
    transactions = [
        {"type": "income", "amount": 3000, "date": "2026-01-15"},
        {"type": "income", "amount": 3000, "date": "2026-02-15"},
        {"type": "income", "amount": 9000, "date": "2026-03-15"},
    ]
    assert historical_average_income(transactions, 2026, 3, 3) == 2000
    assert historical_average_income([], 2026, 3, 3) == 0.0


def test_savings_stats_are_income_minus_spending() -> None:
    budget = {"id": "s1", "systemBudgetType": "savings", "budgetAmount": 800}
    stats = system_budget_stats(budget, TRANSACTIONS, CATEGORIES, CUSTOM_BUDGETS, START, END, 4000, UserSettings())
    assert stats.paidAmount == 4000 - (150 + 75)
    assert stats.unpaidAmount == 0
    assert stats.budgetLimit == 800


def test_needs_stats_use_goal_limit() -> None:
    budget = {"id": "n1", "systemBudgetType": "needs", "budgetAmount": 1}
    goal = {"priority": "needs", "target_percentage": 50}
    stats = system_budget_stats(
        budget, TRANSACTIONS, CATEGORIES, CUSTOM_BUDGETS, START, END, 4000, UserSettings(), goal=goal
    )
    assert stats.budgetLimit == 2000
    assert stats.totalSpent == 150
    assert stats.remaining == 1850
    assert stats.percentageUsed == pytest.approx(7.5)


def test_zero_limit_reports_zero_percentage() -> None:
    budget = {"id": "w1", "systemBudgetType": "wants", "budgetAmount": 0}
    stats = system_budget_stats(budget, TRANSACTIONS, CATEGORIES, CUSTOM_BUDGETS, START, END, 4000, UserSettings())
    assert stats.percentageUsed == 0.0


def test_custom_budget_stats() -> None:
    stats = custom_budget_stats(CUSTOM_BUDGETS[0], TRANSACTIONS)
    assert stats.allocated == 500
    assert stats.paid == 15
    assert stats.unpaid == 20
    assert stats.remaining == 465
    assert stats.transactionCount == 2


def test_bonus_savings_potential() -> None:
    budgets = [
        {"id": "n1", "systemBudgetType": "needs", "budgetAmount": 1000},
        {"id": "w1", "systemBudgetType": "wants", "budgetAmount": 500},
        {"id": "s1", "systemBudgetType": "savings", "budgetAmount": 800},
    ]
    potential = bonus_savings_potential(
        budgets, TRANSACTIONS, CATEGORIES, CUSTOM_BUDGETS, START, END, 4000, UserSettings()
    )
    assert potential == (1000 - 150) + (500 - 75)


def test_unknown_budget_type_degrades_to_persisted_amount() -> None:
    budget = {"id": "x1", "systemBudgetType": "luxury", "budgetAmount": 300}
    goal = {"priority": "needs", "target_percentage": 50}
    stats = system_budget_stats(
        budget, TRANSACTIONS, CATEGORIES, CUSTOM_BUDGETS, START, END, 4000, UserSettings(), goal=goal
    )
    assert stats.systemBudgetType is None
    assert stats.paidAmount == 0
    assert stats.unpaidAmount == 0
    assert stats.budgetLimit == 300
    assert stats.remaining == 300
