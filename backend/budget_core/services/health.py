from __future__ import annotations

import math

from ..schemas import HealthLabel, HealthScore, HealthScoreBreakdown, HealthScoreMetrics

TARGET_SAVINGS_RATE = 0.20
SAVINGS_POINTS = 50
SOLVENCY_POINTS = 30
TREND_STEP_POINTS = 10


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def label_for(score: int) -> HealthLabel:
    if score >= 80:
        return HealthLabel.excellent
    if score >= 60:
        return HealthLabel.good
    if score >= 40:
        return HealthLabel.fair
    return HealthLabel.needs_work


def _savings_rate(income: float, expenses: float) -> float:
    return (income - expenses) / income if income > 0 else 0.0


def score_health(
    income: float,
    paid_expenses: float,
    prev_income: float,
    prev_paid_expenses: float,
) -> HealthScore:
    """Score a period 0-100 from savings rate (50), solvency (30) and trend (20).

    Full savings points need a 20% savings rate. Solvency loses one point per
    percent of income overspent. Trend gives 10 points each for a better
    savings rate and for lower paid expenses than the previous period.
    """
    expenses = abs(paid_expenses)
    prev_expenses = abs(prev_paid_expenses)
    net = income - expenses
    savings_rate = _savings_rate(income, expenses)
    prev_savings_rate = _savings_rate(prev_income, prev_expenses)

    savings_score = 0.0
    if savings_rate > 0:
        savings_score = min(SAVINGS_POINTS, (savings_rate / TARGET_SAVINGS_RATE) * SAVINGS_POINTS)

    if net >= 0:
        solvency_score = float(SOLVENCY_POINTS)
    else:
        overspend_ratio = abs(net) / income if income > 0 else 1.0
        solvency_score = max(0.0, SOLVENCY_POINTS - overspend_ratio * 100)

    trend_score = 0
    if savings_rate > prev_savings_rate:
        trend_score += TREND_STEP_POINTS
    if expenses < prev_expenses:
        trend_score += TREND_STEP_POINTS

    total = _round_half_up(savings_score + solvency_score + trend_score)
    return HealthScore(
        score=total,
        label=label_for(total),
        breakdown=HealthScoreBreakdown(
            savings=_round_half_up(savings_score),
            solvency=_round_half_up(solvency_score),
            trend=trend_score,
        ),
        metrics=HealthScoreMetrics(
            savingsRate=savings_rate * 100,
            expenseDiff=prev_expenses - expenses,
        ),
    )
