import datetime
from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Priority(str, Enum):
    needs = "needs"
    wants = "wants"
    savings = "savings"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class GoalMode(str, Enum):
    percentage = "percentage"
    absolute = "absolute"


class CustomBudgetStatus(str, Enum):
    active = "active"
    planned = "planned"
    completed = "completed"
    archived = "archived"


class HealthLabel(str, Enum):
    excellent = "excellent"
    good = "good"
    fair = "fair"
    needs_work = "needs_work"


class ApiErrorDetail(BaseModel):
    field: str
    message: str


class ApiErrorPayload(BaseModel):
    code: str
    message: str
    details: list[ApiErrorDetail] = Field(default_factory=list)


class ApiErrorResponse(BaseModel):
    error: ApiErrorPayload


class HealthResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    status: str


def _validate_currency(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    up = value.upper()
    if len(up) != 3:
        raise ValueError("must be 3-letter ISO code")
    return up


class UserSettings(BaseModel):
    goalMode: GoalMode = GoalMode.percentage
    fixedLifestyleMode: bool = False
    baseCurrency: str = "USD"

    @field_validator("baseCurrency")
    @classmethod
    def validate_currency(cls, value: str) -> str:
        return _validate_currency(value)


class UserSettingsUpdate(BaseModel):
    goalMode: Optional[GoalMode] = None
    fixedLifestyleMode: Optional[bool] = None
    baseCurrency: Optional[str] = None

    @field_validator("baseCurrency")
    @classmethod
    def validate_currency(cls, value: Optional[str]) -> Optional[str]:
        return _validate_currency(value)


class TransactionCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    type: TransactionType
    amount: float = Field(gt=0)
    date: date
    isPaid: bool = False
    paidDate: Optional[date] = None
    category_id: Optional[str] = None
    financial_priority: Optional[Priority] = None
    customBudgetId: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def settle_income(self) -> "TransactionCreate":
        # Income is always settled on its booking date.
        if self.type == TransactionType.income:
            self.isPaid = True
            self.paidDate = self.paidDate or self.date
        elif self.isPaid and self.paidDate is None:
            self.paidDate = self.date
        return self


class TransactionUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    type: Optional[TransactionType] = None
    amount: Optional[float] = Field(default=None, gt=0)
    date: Optional[datetime.date] = None
    paidDate: Optional[datetime.date] = None
    isPaid: Optional[bool] = None
    category_id: Optional[str] = None
    financial_priority: Optional[Priority] = None
    customBudgetId: Optional[str] = None
    notes: Optional[str] = None


class TransactionResponse(BaseModel):
    id: str
    title: str
    type: TransactionType
    amount: float
    date: date
    isPaid: bool
    paidDate: Optional[date] = None
    category_id: Optional[str] = None
    financial_priority: Optional[Priority] = None
    customBudgetId: Optional[str] = None
    notes: Optional[str] = None


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    priority: Priority
    color: Optional[str] = None
    icon: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    priority: Optional[Priority] = None
    color: Optional[str] = None
    icon: Optional[str] = None


class CategoryResponse(BaseModel):
    id: str
    name: str
    priority: Priority
    color: Optional[str] = None
    icon: Optional[str] = None


class GoalCreate(BaseModel):
    priority: Priority
    target_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    target_amount: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def validate_target(self) -> "GoalCreate":
        if self.target_percentage is None and self.target_amount is None:
            raise ValueError("either target_percentage or target_amount must be provided")
        return self


class GoalUpdate(BaseModel):
    target_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    target_amount: Optional[float] = Field(default=None, ge=0)


class GoalResponse(BaseModel):
    id: str
    priority: Priority
    target_percentage: Optional[float] = None
    target_amount: Optional[float] = None


class CustomBudgetCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    allocatedAmount: float = Field(ge=0)
    startDate: date
    endDate: date
    status: CustomBudgetStatus = CustomBudgetStatus.active
    color: Optional[str] = None

    @model_validator(mode="after")
    def validate_period(self) -> "CustomBudgetCreate":
        if self.endDate < self.startDate:
            raise ValueError("endDate must be >= startDate")
        return self


class CustomBudgetUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    allocatedAmount: Optional[float] = Field(default=None, ge=0)
    startDate: Optional[date] = None
    endDate: Optional[date] = None
    status: Optional[CustomBudgetStatus] = None
    color: Optional[str] = None


class CustomBudgetResponse(BaseModel):
    id: str
    name: str
    allocatedAmount: float
    startDate: date
    endDate: date
    status: CustomBudgetStatus
    isSystemBudget: bool = False
    color: Optional[str] = None


class SystemBudgetResponse(BaseModel):
    id: str
    name: str
    systemBudgetType: Priority
    startDate: date
    endDate: date
    budgetAmount: float
    color: Optional[str] = None


class NeedsBreakdown(BaseModel):
    paid: float = 0.0
    unpaid: float = 0.0
    total: float = 0.0


class WantsBreakdown(BaseModel):
    directPaid: float = 0.0
    directUnpaid: float = 0.0
    customPaid: float = 0.0
    customUnpaid: float = 0.0
    total: float = 0.0


class FinancialBreakdown(BaseModel):
    needs: NeedsBreakdown = Field(default_factory=NeedsBreakdown)
    wants: WantsBreakdown = Field(default_factory=WantsBreakdown)


class BreakdownReport(BaseModel):
    startDate: date
    endDate: date
    income: float
    savings: float
    breakdown: FinancialBreakdown


class SystemBudgetStats(BaseModel):
    systemBudgetId: Optional[str] = None
    systemBudgetType: Optional[Priority] = None
    budgetLimit: float
    paidAmount: float
    unpaidAmount: float
    totalSpent: float
    remaining: float
    percentageUsed: float


class SystemBudgetReport(BaseModel):
    startDate: date
    endDate: date
    income: float
    budgets: list[SystemBudgetStats] = Field(default_factory=list)
    bonusSavingsPotential: float = 0.0


class CustomBudgetStats(BaseModel):
    customBudgetId: Optional[str] = None
    allocated: float
    spent: float
    paid: float
    unpaid: float
    remaining: float
    transactionCount: int


class CategoryProjection(BaseModel):
    categoryId: str
    name: str
    color: str
    averageSpend: float
    history: list[float]


class ProjectionResult(BaseModel):
    totalProjectedMonthly: float
    categoryProjections: list[CategoryProjection] = Field(default_factory=list)


class CurrentMonthEstimate(BaseModel):
    actual: float
    remaining: float
    total: float


class ProjectionReport(BaseModel):
    projection: ProjectionResult
    currentMonth: CurrentMonthEstimate


class HealthScoreBreakdown(BaseModel):
    savings: int
    solvency: int
    trend: int


class HealthScoreMetrics(BaseModel):
    savingsRate: float
    expenseDiff: float


class HealthScore(BaseModel):
    score: int
    label: HealthLabel
    breakdown: HealthScoreBreakdown
    metrics: HealthScoreMetrics


class SyncStatsResponse(BaseModel):
    created: int
    updated: int
    unchanged: int
    skipped: int
    failed: int
