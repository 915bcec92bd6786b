from budget_core.schemas import GoalMode, UserSettings
from budget_core.services.goals import goals_by_priority, resolve_limit

PERCENTAGE = UserSettings()
ABSOLUTE = UserSettings(goalMode=GoalMode.absolute)
FIXED = UserSettings(fixedLifestyleMode=True)


def test_percentage_goal_scales_with_income() -> None:
    goal = {"priority": "needs", "target_percentage": 50, "target_amount": 999}
    assert resolve_limit(goal, 4000, PERCENTAGE) == 2000
    assert resolve_limit(goal, 0, PERCENTAGE) == 0


def test_absolute_goal_ignores_income() -> None:
    goal = {"priority": "wants", "target_percentage": 30, "target_amount": 750}
    assert resolve_limit(goal, 4000, ABSOLUTE) == 750
    assert resolve_limit(goal, 100000, ABSOLUTE) == 750


def test_missing_goal_resolves_to_zero() -> None:
    assert resolve_limit(None, 4000, PERCENTAGE) == 0.0
    assert resolve_limit({}, 4000, ABSOLUTE) == 0.0


def test_fixed_lifestyle_caps_needs_and_wants_at_average() -> None:
    needs = {"priority": "needs", "target_percentage": 50}
    wants = {"priority": "wants", "target_percentage": 30}
    assert resolve_limit(needs, 4000, FIXED, historical_average_income=3000) == 1500
    assert resolve_limit(wants, 4000, FIXED, historical_average_income=3000) == 900


def test_fixed_lifestyle_sends_overflow_to_savings() -> None:
    savings = {"priority": "savings", "target_percentage": 20}
    assert resolve_limit(savings, 4000, FIXED, historical_average_income=3000) == 600 + 1000


def test_fixed_lifestyle_inactive_without_raise() -> None:
    needs = {"priority": "needs", "target_percentage": 50}
    assert resolve_limit(needs, 2500, FIXED, historical_average_income=3000) == 1250
    assert resolve_limit(needs, 2500, FIXED, historical_average_income=0) == 1250


def test_resolve_limit_is_repeatable() -> None:
    goal = {"priority": "needs", "target_percentage": 42.5}
    first = resolve_limit(goal, 3210, FIXED, 3000)
    assert resolve_limit(goal, 3210, FIXED, 3000) == first


def test_goals_by_priority_ignores_unknown_types() -> None:
    goals = [
        {"id": "1", "priority": "needs", "target_percentage": 50},
        {"id": "2", "priority": "other", "target_percentage": 10},
        {"id": "3", "priority": "savings", "target_percentage": 20},
    ]
    result = goals_by_priority(goals)
    assert set(result) == {"needs", "savings"}
    assert goals_by_priority(None) == {}
