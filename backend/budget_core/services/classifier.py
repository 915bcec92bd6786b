from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from ..schemas import Priority


class PrioritySource(str, Enum):
    transaction = "transaction"
    category = "category"
    default = "default"


@dataclass(frozen=True)
class PriorityResolution:
    priority: Priority
    source: PrioritySource


@dataclass(frozen=True)
class Classification:
    priority: Priority
    source: PrioritySource
    paid: bool
    custom: bool


DEFAULT_PRIORITY = Priority.wants


def as_priority(value: Any) -> Priority | None:
    if isinstance(value, Priority):
        return value
    try:
        return Priority(value)
    except ValueError:
        return None


def amount_of(row: Mapping[str, Any], field: str = "amount") -> float:
    """Numeric value of ``row[field]``; missing or malformed amounts count as zero."""
    try:
        value = float(row.get(field) or 0)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def index_by_id(rows: Iterable[Mapping[str, Any]] | None) -> dict[str, Mapping[str, Any]]:
    return {str(row["id"]): row for row in rows or [] if row.get("id") is not None}


def resolve_priority(
    transaction: Mapping[str, Any],
    categories_by_id: Mapping[str, Mapping[str, Any]],
) -> PriorityResolution:
    explicit = as_priority(transaction.get("financial_priority"))
    if explicit is not None:
        return PriorityResolution(explicit, PrioritySource.transaction)
    category_id = transaction.get("category_id")
    category = categories_by_id.get(str(category_id)) if category_id is not None else None
    if category is not None:
        from_category = as_priority(category.get("priority"))
        if from_category is not None:
            return PriorityResolution(from_category, PrioritySource.category)
    return PriorityResolution(DEFAULT_PRIORITY, PrioritySource.default)


def is_actual_custom_budget(budget_id: Any, custom_budgets_by_id: Mapping[str, Mapping[str, Any]]) -> bool:
    if not budget_id:
        return False
    budget = custom_budgets_by_id.get(str(budget_id))
    return budget is not None and not budget.get("isSystemBudget", False)


def is_settled(transaction: Mapping[str, Any]) -> bool:
    if transaction.get("type") == "income":
        return True
    return bool(transaction.get("isPaid"))


def classify(
    transaction: Mapping[str, Any],
    categories_by_id: Mapping[str, Mapping[str, Any]],
    custom_budgets_by_id: Mapping[str, Mapping[str, Any]],
) -> Classification:
    resolution = resolve_priority(transaction, categories_by_id)
    return Classification(
        priority=resolution.priority,
        source=resolution.source,
        paid=is_settled(transaction),
        custom=is_actual_custom_budget(transaction.get("customBudgetId"), custom_budgets_by_id),
    )
