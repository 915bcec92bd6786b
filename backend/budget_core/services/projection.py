from __future__ import annotations

import math
from datetime import date
from typing import Any, Iterable, Mapping, Sequence

from ..dates import days_in_month, effective_date, month_key, trailing_month_keys
from ..schemas import CategoryProjection, CurrentMonthEstimate, ProjectionResult
from .classifier import amount_of, index_by_id

UNCATEGORIZED_ID = "uncategorized"
UNCATEGORIZED_NAME = "Uncategorized"
UNCATEGORIZED_COLOR = "#9ca3af"


def adjusted_average(values: Sequence[float]) -> float:
    """Mean of ``values`` after dropping points more than two standard deviations out."""
    if not values:
        return 0.0
    if len(values) == 1:
        return float(values[0])

    mean = sum(values) / len(values)
    std_dev = math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))
    if std_dev == 0:
        return mean

    kept = [v for v in values if abs(v - mean) / std_dev <= 2]
    if not kept:
        return mean
    return sum(kept) / len(kept)


def project_monthly(
    transactions: Iterable[Mapping[str, Any]],
    categories: Iterable[Mapping[str, Any]] | None,
    lookback_months: int = 6,
    today: date | None = None,
) -> ProjectionResult:
    today = today or date.today()
    keys = trailing_month_keys(today, lookback_months)
    if not keys:
        return ProjectionResult(totalProjectedMonthly=0.0)
    key_set = set(keys)
    categories_by_id = index_by_id(categories)

    history: dict[str, dict[str, float]] = {cat_id: {} for cat_id in categories_by_id}
    history.setdefault(UNCATEGORIZED_ID, {})

    for t in transactions or []:
        if t.get("type") != "expense":
            continue
        when = effective_date(t)
        if when is None:
            continue
        key = month_key(when)
        if key not in key_set:
            continue
        cat_id = str(t.get("category_id") or UNCATEGORIZED_ID)
        months = history.setdefault(cat_id, {})
        months[key] = months.get(key, 0.0) + amount_of(t)

    projections: list[CategoryProjection] = []
    total = 0.0
    for cat_id, months in history.items():
        series = [months.get(key, 0.0) for key in keys]
        if all(v == 0 for v in series):
            continue
        average = adjusted_average(series)
        total += average
        category = categories_by_id.get(cat_id)
        projections.append(
            CategoryProjection(
                categoryId=cat_id,
                name=(category or {}).get("name") or UNCATEGORIZED_NAME,
                color=(category or {}).get("color") or UNCATEGORIZED_COLOR,
                averageSpend=average,
                history=series,
            )
        )

    projections.sort(key=lambda p: p.averageSpend, reverse=True)
    return ProjectionResult(totalProjectedMonthly=total, categoryProjections=projections)


def estimate_current_month(
    current_month_transactions: Iterable[Mapping[str, Any]],
    safe_monthly_baseline: float,
    today: date | None = None,
) -> CurrentMonthEstimate:
    # Remaining days run at the baseline rate, not the month's volatile run-rate.
    today = today or date.today()
    month_days = days_in_month(today.year, today.month)
    days_remaining = month_days - max(1, today.day)

    actual = sum(amount_of(t) for t in current_month_transactions or [] if t.get("type") == "expense")
    daily_rate = safe_monthly_baseline / month_days
    remaining = daily_rate * days_remaining
    return CurrentMonthEstimate(actual=actual, remaining=remaining, total=actual + remaining)
