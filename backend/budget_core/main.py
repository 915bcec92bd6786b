from datetime import date
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import configure_logging, settings
from .dates import effective_date, in_window, is_past_month, month_boundaries, shift_month
from .persistence import EntityType, get_persistence
from .schemas import (
    ApiErrorDetail,
    ApiErrorPayload,
    ApiErrorResponse,
    BreakdownReport,
    CategoryCreate,
    CategoryResponse,
    CategoryUpdate,
    CustomBudgetCreate,
    CustomBudgetResponse,
    CustomBudgetStats,
    CustomBudgetUpdate,
    GoalCreate,
    GoalResponse,
    GoalUpdate,
    HealthResponse,
    HealthScore,
    Priority,
    ProjectionReport,
    SyncStatsResponse,
    SystemBudgetReport,
    SystemBudgetResponse,
    TransactionCreate,
    TransactionResponse,
    TransactionType,
    TransactionUpdate,
    UserSettings,
    UserSettingsUpdate,
)
from .services.breakdown import (
    aggregate,
    bonus_savings_potential,
    custom_budget_stats,
    historical_average_income,
    monthly_income,
    monthly_paid_expenses,
    system_budget_stats,
)
from .services.goals import goals_by_priority
from .services.health import score_health
from .services.projection import estimate_current_month, project_monthly
from .services.sync import SystemBudgetSynchronizer

app = FastAPI(
    title="Budget Core API",
    version="0.1.0",
    description="Needs/wants/savings budgeting engine: breakdowns, system budgets, projections and health score.",
)

persistence = get_persistence()
synchronizer = SystemBudgetSynchronizer(persistence, settings.history_lookback_months)


def _user(x_user_id: str | None) -> str:
    return (x_user_id or "").strip() or settings.default_user_id


def _period(year: int | None, month: int | None) -> tuple[int, int]:
    today = date.today()
    return year or today.year, month or today.month


def _reconcile_touched(user_id: str, *rows: dict[str, Any]) -> None:
    today = date.today()
    months = set()
    for row in rows:
        when = effective_date(row)
        if when is not None and not is_past_month(when.year, when.month, today):
            months.add((when.year, when.month))
    for year, month in sorted(months):
        synchronizer.reconcile(user_id, year, month, today=today)


def build_error_response(details: list[ApiErrorDetail], message: str = "Invalid request payload") -> JSONResponse:
    payload = ApiErrorResponse(
        error=ApiErrorPayload(code="VALIDATION_ERROR", message=message, details=details)
    )
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=payload.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details: list[ApiErrorDetail] = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", []) if item != "body")
        details.append(ApiErrorDetail(field=loc or "body", message=err.get("msg", "validation error")))
    return build_error_response(details)


@app.exception_handler(ValueError)
async def value_error_exception_handler(request: Request, exc: ValueError) -> JSONResponse:
    return build_error_response([ApiErrorDetail(field="body", message=str(exc))])


@app.on_event("startup")
async def on_startup() -> None:
    configure_logging()


@app.get("/api/v1/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/api/v1/settings", response_model=UserSettings)
async def get_settings(x_user_id: str | None = Header(default=None)) -> UserSettings:
    return persistence.get_user_settings(_user(x_user_id))


@app.put("/api/v1/settings", response_model=UserSettings)
async def update_settings(payload: UserSettingsUpdate, x_user_id: str | None = Header(default=None)) -> UserSettings:
    user_id = _user(x_user_id)
    updated = persistence.update_user_settings(user_id, payload)
    year, month = _period(None, None)
    synchronizer.reconcile(user_id, year, month)
    return updated


# Transactions


def _settle_income(updates: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    merged = {**current, **updates}
    if merged.get("type") == TransactionType.income:
        updates["isPaid"] = True
        if not merged.get("paidDate"):
            updates["paidDate"] = merged.get("date")
    return updates


@app.post("/api/v1/transactions", response_model=TransactionResponse, status_code=201)
async def create_transaction(payload: TransactionCreate, x_user_id: str | None = Header(default=None)) -> TransactionResponse:
    user_id = _user(x_user_id)
    row = persistence.create_entity(EntityType.transactions, user_id, payload.model_dump())
    _reconcile_touched(user_id, row)
    return TransactionResponse(**row)


@app.get("/api/v1/transactions", response_model=list[TransactionResponse])
async def list_transactions(
    year: int | None = Query(default=None, ge=1900, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    x_user_id: str | None = Header(default=None),
) -> list[TransactionResponse]:
    rows = persistence.list_entities(EntityType.transactions, _user(x_user_id))
    if year is not None or month is not None:
        window = month_boundaries(*_period(year, month))
        rows = [r for r in rows if in_window(r, window.start, window.end)]
    return [TransactionResponse(**row) for row in rows]


@app.get("/api/v1/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(transaction_id: str, x_user_id: str | None = Header(default=None)) -> TransactionResponse:
    return TransactionResponse(**persistence.get_entity(EntityType.transactions, _user(x_user_id), transaction_id))


@app.put("/api/v1/transactions/{transaction_id}", response_model=TransactionResponse)
async def update_transaction(
    transaction_id: str,
    payload: TransactionUpdate,
    x_user_id: str | None = Header(default=None),
) -> TransactionResponse:
    user_id = _user(x_user_id)
    current = persistence.get_entity(EntityType.transactions, user_id, transaction_id)
    updates = _settle_income(payload.model_dump(exclude_unset=True), current)
    row = persistence.update_entity(EntityType.transactions, user_id, transaction_id, updates)
    _reconcile_touched(user_id, current, row)
    return TransactionResponse(**row)


@app.delete("/api/v1/transactions/{transaction_id}", status_code=204)
async def delete_transaction(transaction_id: str, x_user_id: str | None = Header(default=None)) -> Response:
    user_id = _user(x_user_id)
    current = persistence.get_entity(EntityType.transactions, user_id, transaction_id)
    persistence.delete_entity(EntityType.transactions, user_id, transaction_id)
    _reconcile_touched(user_id, current)
    return Response(status_code=204)


# Categories


@app.post("/api/v1/categories", response_model=CategoryResponse, status_code=201)
async def create_category(payload: CategoryCreate, x_user_id: str | None = Header(default=None)) -> CategoryResponse:
    return CategoryResponse(**persistence.create_entity(EntityType.categories, _user(x_user_id), payload.model_dump()))


@app.get("/api/v1/categories", response_model=list[CategoryResponse])
async def list_categories(x_user_id: str | None = Header(default=None)) -> list[CategoryResponse]:
    return [CategoryResponse(**row) for row in persistence.list_entities(EntityType.categories, _user(x_user_id))]


@app.put("/api/v1/categories/{category_id}", response_model=CategoryResponse)
async def update_category(category_id: str, payload: CategoryUpdate, x_user_id: str | None = Header(default=None)) -> CategoryResponse:
    row = persistence.update_entity(EntityType.categories, _user(x_user_id), category_id, payload.model_dump(exclude_unset=True))
    return CategoryResponse(**row)


@app.delete("/api/v1/categories/{category_id}", status_code=204)
async def delete_category(category_id: str, x_user_id: str | None = Header(default=None)) -> Response:
    persistence.delete_entity(EntityType.categories, _user(x_user_id), category_id)
    return Response(status_code=204)


# Goals


@app.post("/api/v1/goals", response_model=GoalResponse, status_code=201)
async def create_goal(payload: GoalCreate, x_user_id: str | None = Header(default=None)) -> GoalResponse:
    user_id = _user(x_user_id)
    if persistence.filter_entities(EntityType.goals, user_id, {"priority": payload.priority}):
        raise HTTPException(status_code=409, detail=f"goal already exists for priority: {payload.priority.value}")
    row = persistence.create_entity(EntityType.goals, user_id, payload.model_dump())
    synchronizer.snapshot_future_budgets(user_id, row, persistence.get_user_settings(user_id))
    synchronizer.reconcile(user_id, *_period(None, None))
    return GoalResponse(**row)


@app.get("/api/v1/goals", response_model=list[GoalResponse])
async def list_goals(x_user_id: str | None = Header(default=None)) -> list[GoalResponse]:
    return [GoalResponse(**row) for row in persistence.list_entities(EntityType.goals, _user(x_user_id))]


@app.put("/api/v1/goals/{goal_id}", response_model=GoalResponse)
async def update_goal(goal_id: str, payload: GoalUpdate, x_user_id: str | None = Header(default=None)) -> GoalResponse:
    user_id = _user(x_user_id)
    row = persistence.update_entity(EntityType.goals, user_id, goal_id, payload.model_dump(exclude_unset=True))
    synchronizer.snapshot_future_budgets(user_id, row, persistence.get_user_settings(user_id))
    synchronizer.reconcile(user_id, *_period(None, None))
    return GoalResponse(**row)


@app.delete("/api/v1/goals/{goal_id}", status_code=204)
async def delete_goal(goal_id: str, x_user_id: str | None = Header(default=None)) -> Response:
    persistence.delete_entity(EntityType.goals, _user(x_user_id), goal_id)
    return Response(status_code=204)


# Custom budgets


@app.post("/api/v1/custom-budgets", response_model=CustomBudgetResponse, status_code=201)
async def create_custom_budget(payload: CustomBudgetCreate, x_user_id: str | None = Header(default=None)) -> CustomBudgetResponse:
    data = {**payload.model_dump(), "isSystemBudget": False}
    return CustomBudgetResponse(**persistence.create_entity(EntityType.custom_budgets, _user(x_user_id), data))


@app.get("/api/v1/custom-budgets", response_model=list[CustomBudgetResponse])
async def list_custom_budgets(x_user_id: str | None = Header(default=None)) -> list[CustomBudgetResponse]:
    return [CustomBudgetResponse(**row) for row in persistence.list_entities(EntityType.custom_budgets, _user(x_user_id))]


@app.put("/api/v1/custom-budgets/{budget_id}", response_model=CustomBudgetResponse)
async def update_custom_budget(
    budget_id: str,
    payload: CustomBudgetUpdate,
    x_user_id: str | None = Header(default=None),
) -> CustomBudgetResponse:
    user_id = _user(x_user_id)
    current = persistence.get_entity(EntityType.custom_budgets, user_id, budget_id)
    updates = payload.model_dump(exclude_unset=True)
    merged = CustomBudgetCreate(**{**current, **updates})
    row = persistence.update_entity(EntityType.custom_budgets, user_id, budget_id, merged.model_dump())
    return CustomBudgetResponse(**row)


@app.delete("/api/v1/custom-budgets/{budget_id}", status_code=204)
async def delete_custom_budget(budget_id: str, x_user_id: str | None = Header(default=None)) -> Response:
    persistence.delete_entity(EntityType.custom_budgets, _user(x_user_id), budget_id)
    return Response(status_code=204)


@app.get("/api/v1/custom-budgets/{budget_id}/stats", response_model=CustomBudgetStats)
async def get_custom_budget_stats(
    budget_id: str,
    year: int | None = Query(default=None, ge=1900, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    x_user_id: str | None = Header(default=None),
) -> CustomBudgetStats:
    user_id = _user(x_user_id)
    budget = persistence.get_entity(EntityType.custom_budgets, user_id, budget_id)
    transactions = persistence.list_entities(EntityType.transactions, user_id)
    if year is None and month is None:
        return custom_budget_stats(budget, transactions)
    window = month_boundaries(*_period(year, month))
    return custom_budget_stats(budget, transactions, window.start, window.end)


# System budgets


@app.get("/api/v1/system-budgets", response_model=list[SystemBudgetResponse])
async def list_system_budgets(
    year: int | None = Query(default=None, ge=1900, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    x_user_id: str | None = Header(default=None),
) -> list[SystemBudgetResponse]:
    user_id = _user(x_user_id)
    y, m = _period(year, month)
    synchronizer.reconcile(user_id, y, m)
    window = month_boundaries(y, m)
    rows = persistence.filter_entities(
        EntityType.system_budgets,
        user_id,
        {"startDate": window.start, "endDate": window.end},
    )
    return [SystemBudgetResponse(**row) for row in rows]


@app.post("/api/v1/system-budgets/sync", response_model=SyncStatsResponse)
async def sync_system_budgets(
    year: int | None = Query(default=None, ge=1900, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    x_user_id: str | None = Header(default=None),
) -> SyncStatsResponse:
    stats = synchronizer.reconcile(_user(x_user_id), *_period(year, month))
    return SyncStatsResponse(**stats.as_dict())


# Reports


@app.get("/api/v1/reports/breakdown", response_model=BreakdownReport)
async def breakdown_report(
    year: int | None = Query(default=None, ge=1900, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    x_user_id: str | None = Header(default=None),
) -> BreakdownReport:
    user_id = _user(x_user_id)
    window = month_boundaries(*_period(year, month))
    transactions = persistence.list_entities(EntityType.transactions, user_id)
    breakdown = aggregate(
        transactions,
        persistence.list_entities(EntityType.categories, user_id),
        persistence.list_entities(EntityType.custom_budgets, user_id),
        window.start,
        window.end,
    )
    income = monthly_income(transactions, window.start, window.end)
    return BreakdownReport(
        startDate=window.start,
        endDate=window.end,
        income=income,
        savings=income - (breakdown.needs.total + breakdown.wants.total),
        breakdown=breakdown,
    )


@app.get("/api/v1/reports/system-budgets", response_model=SystemBudgetReport)
async def system_budget_report(
    year: int | None = Query(default=None, ge=1900, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    x_user_id: str | None = Header(default=None),
) -> SystemBudgetReport:
    user_id = _user(x_user_id)
    y, m = _period(year, month)
    synchronizer.reconcile(user_id, y, m)
    window = month_boundaries(y, m)
    transactions = persistence.list_entities(EntityType.transactions, user_id)
    categories = persistence.list_entities(EntityType.categories, user_id)
    custom_budgets = persistence.list_entities(EntityType.custom_budgets, user_id)
    system_budgets = [
        row for row in persistence.filter_entities(
            EntityType.system_budgets, user_id, {"startDate": window.start, "endDate": window.end}
        )
        if row.get("systemBudgetType") in {p.value for p in Priority}
    ]
    goals = goals_by_priority(persistence.list_entities(EntityType.goals, user_id))
    user_settings = persistence.get_user_settings(user_id)
    income = monthly_income(transactions, window.start, window.end)
    average = historical_average_income(transactions, y, m, settings.history_lookback_months)

    stats = [
        system_budget_stats(
            budget, transactions, categories, custom_budgets, window.start, window.end,
            income, user_settings, average, goal=goals.get(budget["systemBudgetType"]),
        )
        for budget in system_budgets
    ]
    potential = bonus_savings_potential(
        system_budgets, transactions, categories, custom_budgets, window.start, window.end,
        income, user_settings, average, goals=goals,
    )
    return SystemBudgetReport(
        startDate=window.start,
        endDate=window.end,
        income=income,
        budgets=stats,
        bonusSavingsPotential=potential,
    )


@app.get("/api/v1/reports/health", response_model=HealthScore)
async def health_report(
    year: int | None = Query(default=None, ge=1900, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    x_user_id: str | None = Header(default=None),
) -> HealthScore:
    y, m = _period(year, month)
    current = month_boundaries(y, m)
    previous = month_boundaries(*shift_month(y, m, -1))
    transactions = persistence.list_entities(EntityType.transactions, _user(x_user_id))
    return score_health(
        monthly_income(transactions, current.start, current.end),
        monthly_paid_expenses(transactions, current.start, current.end),
        monthly_income(transactions, previous.start, previous.end),
        monthly_paid_expenses(transactions, previous.start, previous.end),
    )


@app.get("/api/v1/reports/projection", response_model=ProjectionReport)
async def projection_report(
    lookbackMonths: int = Query(default=settings.projection_lookback_months, ge=1, le=36),
    x_user_id: str | None = Header(default=None),
) -> ProjectionReport:
    user_id = _user(x_user_id)
    today = date.today()
    transactions = persistence.list_entities(EntityType.transactions, user_id)
    projection = project_monthly(
        transactions,
        persistence.list_entities(EntityType.categories, user_id),
        lookbackMonths,
        today=today,
    )
    window = month_boundaries(today.year, today.month)
    this_month = [t for t in transactions if in_window(t, window.start, window.end)]
    return ProjectionReport(
        projection=projection,
        currentMonth=estimate_current_month(this_month, projection.totalProjectedMonthly, today=today),
    )
