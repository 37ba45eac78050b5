from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import TransactionType


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: str = Field(default="#CCCCCC", pattern=r"^#[0-9A-Fa-f]{6}$")
    icon: str = Field(default="tag", min_length=1, max_length=50)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    color: str
    icon: str


class TransactionIn(BaseModel):
    category_id: Optional[int] = None
    amount_cents: int = Field(..., gt=0)
    description: Optional[str] = Field(default=None, max_length=255)
    transaction_date: date
    type: TransactionType


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    category_id: Optional[int]
    amount_cents: int
    description: Optional[str]
    transaction_date: date
    type: TransactionType
    created_at: datetime


class TransactionPage(BaseModel):
    items: list[TransactionOut]
    total: int
    page: int
    limit: int


class TransactionStatistics(BaseModel):
    total_income_cents: int = 0
    total_expense_cents: int = 0
    net_income_cents: int = 0
    transaction_count: int = 0


class CategoryBreakdownEntry(BaseModel):
    category_id: Optional[int]
    category_name: str
    type: TransactionType
    amount_cents: int
    percentage: Decimal
    color: str


class MonthlyTrendEntry(BaseModel):
    month: str
    income_cents: int = 0
    expense_cents: int = 0
    net_income_cents: int = 0


class CategoryTrendEntry(BaseModel):
    month: str
    amount_cents: int = 0
    transaction_count: int = 0


class AnalyticsSummary(BaseModel):
    total_income_cents: int
    total_expenses_cents: int
    net_income_cents: int
    transaction_count: int
    category_breakdown: list[CategoryBreakdownEntry]
    monthly_trends: list[MonthlyTrendEntry]


class BudgetCategoryComparison(BaseModel):
    category_id: int
    category_name: str
    budget_cents: int
    spent_cents: int
    remaining_cents: int
    percentage_used: Decimal


class BudgetComparison(BaseModel):
    total_budget_cents: int
    total_spent_cents: int
    remaining_budget_cents: int
    categories: list[BudgetCategoryComparison]


class Insight(BaseModel):
    type: Literal["warning", "info", "success"]
    title: str
    message: str
    action: Optional[str] = None


class Recommendation(BaseModel):
    category: str
    suggestion: str
    potential_savings_cents: int


class Insights(BaseModel):
    insights: list[Insight] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)


class CacheMetrics(BaseModel):
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    errors: int = 0
    total_requests: int = 0
    hit_rate: float = 0.0


class CacheEntryInfo(BaseModel):
    key: str
    exists: bool
    ttl_remaining: Optional[int] = None
    size: Optional[int] = None
    compressed: bool = False
    created_at: Optional[datetime] = None
