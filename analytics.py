from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from budgets import BudgetSource, StaticBudgetSource
from cache import CacheManager
from cache_keys import CacheKey, CacheKeys
from config import get_settings
from errors import DataAccessError, InvalidPeriodError
from ledger import LedgerStore
from models import TransactionType
from periods import Period, month_window, resolve_period
from schemas import (
    AnalyticsSummary,
    BudgetCategoryComparison,
    BudgetComparison,
    CategoryBreakdownEntry,
    CategoryTrendEntry,
    Insight,
    Insights,
    MonthlyTrendEntry,
    Recommendation,
    TransactionStatistics,
)
from services import CategoryService


logger = logging.getLogger(__name__)

UNCATEGORIZED_NAME = "Uncategorized"
UNCATEGORIZED_COLOR = "#CCCCCC"
SUMMARY_TREND_MONTHS = 12

# Business rules for recommendations.
HIGH_SHARE_PERCENT = 30
SUGGESTED_REDUCTION_PERCENT = 10

_CENT = Decimal("0.01")


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def percentage(part: int, whole: int) -> Decimal:
    """``100 * part / whole`` to two places, half up; 0 when whole is 0."""
    if not whole:
        return Decimal(0).quantize(_CENT)
    return (Decimal(part) * 100 / Decimal(whole)).quantize(_CENT, rounding=ROUND_HALF_UP)


def format_cents(cents: int) -> str:
    return f"{Decimal(cents).scaleb(-2):,.2f}"


def _check_range(start: Optional[date], end: Optional[date]) -> None:
    if start is not None and end is not None and end < start:
        raise InvalidPeriodError("End date must not be before start date")


def _breakdown_order(entry: CategoryBreakdownEntry) -> tuple:
    missing = entry.category_id is None
    return (-entry.amount_cents, missing, entry.category_id or 0)


class AnalyticsEngine:
    """Derived financial views computed straight from the ledger.

    Nothing here touches the cache. An empty ledger yields zero-valued
    results; ledger failures surface as DataAccessError.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        budgets: BudgetSource,
        *,
        today: Callable[[], date] = local_today,
    ) -> None:
        self.ledger = ledger
        self.budgets = budgets
        self.today = today

    async def compute_statistics(
        self,
        user_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> TransactionStatistics:
        _check_range(start, end)
        totals = await self.ledger.sum_amounts_by_type(user_id, start, end)
        return TransactionStatistics(
            total_income_cents=totals.income_cents,
            total_expense_cents=totals.expense_cents,
            net_income_cents=totals.income_cents - totals.expense_cents,
            transaction_count=totals.count,
        )

    async def compute_category_breakdown(
        self,
        user_id: int,
        txn_type: TransactionType,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[CategoryBreakdownEntry]:
        _check_range(start, end)
        rows = await self.ledger.sum_amounts_by_category(user_id, txn_type, start, end)
        period_total = sum(row.amount_cents for row in rows)
        entries = [
            CategoryBreakdownEntry(
                category_id=row.category_id,
                category_name=row.category_name or UNCATEGORIZED_NAME,
                type=txn_type,
                amount_cents=row.amount_cents,
                percentage=percentage(row.amount_cents, period_total),
                color=row.color or UNCATEGORIZED_COLOR,
            )
            for row in rows
        ]
        entries.sort(key=_breakdown_order)
        return entries

    async def compute_monthly_trends(
        self, user_id: int, months: int
    ) -> list[MonthlyTrendEntry]:
        today = self.today()
        window = month_window(months, today)
        totals = {
            row.month: row
            for row in await self.ledger.sum_amounts_by_month(user_id, months, today)
        }
        series = []
        for first_day in window:
            month = first_day.strftime("%Y-%m")
            row = totals.get(month)
            income = row.income_cents if row else 0
            expense = row.expense_cents if row else 0
            series.append(
                MonthlyTrendEntry(
                    month=month,
                    income_cents=income,
                    expense_cents=expense,
                    net_income_cents=income - expense,
                )
            )
        return series

    async def compute_category_trends(
        self, user_id: int, category_id: int, months: int
    ) -> list[CategoryTrendEntry]:
        today = self.today()
        window = month_window(months, today)
        totals = {
            row.month: row
            for row in await self.ledger.sum_category_by_month(
                user_id, category_id, months, today
            )
        }
        series = []
        for first_day in window:
            month = first_day.strftime("%Y-%m")
            row = totals.get(month)
            series.append(
                CategoryTrendEntry(
                    month=month,
                    amount_cents=row.amount_cents if row else 0,
                    transaction_count=row.count if row else 0,
                )
            )
        return series

    async def compute_budget_comparison(
        self, user_id: int, period: Period
    ) -> BudgetComparison:
        stats = await self.compute_statistics(user_id, period.start, period.end)
        breakdown = await self.compute_category_breakdown(
            user_id, TransactionType.expense, period.start, period.end
        )
        spent_by_category = {
            entry.category_id: entry.amount_cents
            for entry in breakdown
            if entry.category_id is not None
        }
        lines = await self.budgets.budgets_for(user_id, period)

        categories = []
        for line in lines:
            spent = spent_by_category.get(line.category_id, 0)
            categories.append(
                BudgetCategoryComparison(
                    category_id=line.category_id,
                    category_name=line.category_name,
                    budget_cents=line.budget_cents,
                    spent_cents=spent,
                    remaining_cents=line.budget_cents - spent,
                    percentage_used=percentage(spent, line.budget_cents),
                )
            )
        total_budget = sum(line.budget_cents for line in lines)
        return BudgetComparison(
            total_budget_cents=total_budget,
            total_spent_cents=stats.total_expense_cents,
            remaining_budget_cents=total_budget - stats.total_expense_cents,
            categories=categories,
        )

    async def compute_insights(self, user_id: int) -> Insights:
        today = self.today()
        current = resolve_period("month", today=today)
        previous = resolve_period("lastMonth", today=today)
        now = await self.compute_statistics(user_id, current.start, current.end)
        before = await self.compute_statistics(user_id, previous.start, previous.end)

        insights: list[Insight] = []
        if now.total_expense_cents > before.total_expense_cents:
            if before.total_expense_cents:
                increase = (
                    Decimal(now.total_expense_cents - before.total_expense_cents)
                    * 100
                    / Decimal(before.total_expense_cents)
                ).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
                message = (
                    f"Your spending increased by {increase}% compared to last month."
                )
            else:
                message = "Your spending increased compared to last month."
            insights.append(
                Insight(
                    type="warning",
                    title="Increased Spending",
                    message=message,
                    action="Review your recent transactions",
                )
            )

        if now.net_income_cents < 0:
            insights.append(
                Insight(
                    type="warning",
                    title="Negative Cash Flow",
                    message="You spent more than you earned this month.",
                    action="Consider reducing expenses or increasing income",
                )
            )
        else:
            insights.append(
                Insight(
                    type="success",
                    title="Positive Cash Flow",
                    message=f"You saved ${format_cents(now.net_income_cents)} this month.",
                )
            )

        breakdown = await self.compute_category_breakdown(
            user_id, TransactionType.expense, current.start, current.end
        )
        period_total = sum(entry.amount_cents for entry in breakdown)
        recommendations = []
        # Only the largest category is considered; breakdown is amount-descending.
        top = breakdown[0] if breakdown else None
        if top is not None and top.amount_cents * 100 > period_total * HIGH_SHARE_PERCENT:
            savings = (
                Decimal(top.amount_cents) * SUGGESTED_REDUCTION_PERCENT / 100
            ).quantize(Decimal(1), rounding=ROUND_HALF_UP)
            recommendations.append(
                Recommendation(
                    category=top.category_name,
                    suggestion=(
                        f"Consider reducing spending in {top.category_name} category"
                    ),
                    potential_savings_cents=int(savings),
                )
            )
        return Insights(insights=insights, recommendations=recommendations)


class AnalyticsService:
    """Cache-aside reads over the analytics engine for one request."""

    def __init__(
        self,
        session: AsyncSession,
        cache: CacheManager,
        *,
        budgets: Optional[BudgetSource] = None,
        keys: Optional[CacheKeys] = None,
        today: Callable[[], date] = local_today,
    ) -> None:
        self.session = session
        self.cache = cache
        self.keys = keys or CacheKeys(get_settings().cache_schema_version)
        self.today = today
        self.engine = AnalyticsEngine(
            LedgerStore(session), budgets or StaticBudgetSource(), today=today
        )

    async def _cached(
        self, key: CacheKey, type_: Any, compute: Callable[[], Awaitable[Any]]
    ) -> Any:
        cached = await self.cache.get(key, type_)
        if cached is not None:
            return cached
        value = await compute()
        await self.cache.set(key, value, type_)
        return value

    def resolve(self, period: str, start: Optional[str] = None, end: Optional[str] = None) -> Period:
        return resolve_period(period, start, end, today=self.today())

    async def _summary(self, user_id: int, period: Period) -> AnalyticsSummary:
        stats = await self.engine.compute_statistics(user_id, period.start, period.end)
        expense = await self.engine.compute_category_breakdown(
            user_id, TransactionType.expense, period.start, period.end
        )
        income = await self.engine.compute_category_breakdown(
            user_id, TransactionType.income, period.start, period.end
        )
        trends = await self.engine.compute_monthly_trends(user_id, SUMMARY_TREND_MONTHS)
        return AnalyticsSummary(
            total_income_cents=stats.total_income_cents,
            total_expenses_cents=stats.total_expense_cents,
            net_income_cents=stats.net_income_cents,
            transaction_count=stats.transaction_count,
            category_breakdown=expense + income,
            monthly_trends=trends,
        )

    async def get_analytics_summary(self, user_id: int, period: Period) -> AnalyticsSummary:
        return await self._cached(
            self.keys.analytics_summary(user_id, period.cache_discriminator),
            AnalyticsSummary,
            lambda: self._summary(user_id, period),
        )

    async def get_statistics(self, user_id: int, period: Period) -> TransactionStatistics:
        return await self._cached(
            self.keys.statistics(user_id, period.cache_discriminator),
            TransactionStatistics,
            lambda: self.engine.compute_statistics(user_id, period.start, period.end),
        )

    async def get_category_breakdown(
        self, user_id: int, txn_type: TransactionType, period: Period
    ) -> list[CategoryBreakdownEntry]:
        return await self._cached(
            self.keys.category_breakdown(user_id, txn_type, period.cache_discriminator),
            list[CategoryBreakdownEntry],
            lambda: self.engine.compute_category_breakdown(
                user_id, txn_type, period.start, period.end
            ),
        )

    async def get_monthly_trends(self, user_id: int, months: int) -> list[MonthlyTrendEntry]:
        if months < 1:
            raise InvalidPeriodError("months must be at least 1")
        return await self._cached(
            self.keys.monthly_trends(user_id, months),
            list[MonthlyTrendEntry],
            lambda: self.engine.compute_monthly_trends(user_id, months),
        )

    async def get_category_trends(
        self, user_id: int, category_id: int, months: int
    ) -> list[CategoryTrendEntry]:
        if months < 1:
            raise InvalidPeriodError("months must be at least 1")
        return await self._cached(
            self.keys.category_trends(user_id, category_id, months),
            list[CategoryTrendEntry],
            lambda: self.engine.compute_category_trends(user_id, category_id, months),
        )

    async def get_budget_comparison(self, user_id: int, period: Period) -> BudgetComparison:
        return await self._cached(
            self.keys.budget(user_id, period.cache_discriminator),
            BudgetComparison,
            lambda: self.engine.compute_budget_comparison(user_id, period),
        )

    async def get_financial_insights(self, user_id: int) -> Insights:
        return await self._cached(
            self.keys.insights(user_id),
            Insights,
            lambda: self.engine.compute_insights(user_id),
        )

    async def warm_cache(self, user_id: int) -> None:
        """Populate the shared category list and this month's summary.

        Purely a latency optimisation: a ledger failure here is logged and
        dropped, since the next real read recomputes anyway.
        """
        logger.info(f"cache_warm: user_id={user_id}")
        try:
            await CategoryService(self.session, self.cache, keys=self.keys).list_all()
            await self.get_analytics_summary(user_id, self.resolve("month"))
        except DataAccessError:
            logger.exception(f"cache_warm_failed: user_id={user_id}")
