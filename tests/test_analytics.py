from datetime import date
from decimal import Decimal

import pytest

from analytics import AnalyticsEngine, AnalyticsService, percentage
from budgets import BudgetLine, StaticBudgetSource
from database import Base
from errors import DataAccessError, InvalidPeriodError
from ledger import LedgerStore
from models import TransactionType
from periods import resolve_period

from conftest import TODAY, add_category, add_txn


def make_engine(session, budgets=None) -> AnalyticsEngine:
    return AnalyticsEngine(
        LedgerStore(session), budgets or StaticBudgetSource(), today=lambda: TODAY
    )


def test_percentage_rounds_half_up_and_never_divides_by_zero() -> None:
    assert percentage(1, 3) == Decimal("33.33")
    assert percentage(2, 3) == Decimal("66.67")
    assert percentage(1, 8) == Decimal("12.50")
    assert percentage(5, 0) == Decimal("0")


@pytest.mark.asyncio
async def test_statistics_net_income_is_exact(session) -> None:
    await add_txn(session, 250_001, date(2025, 3, 1), TransactionType.income)
    await add_txn(session, 1_999, date(2025, 3, 2))
    await add_txn(session, 333, date(2025, 3, 15))
    await add_txn(session, 10_000, date(2025, 3, 16))  # after the range
    await add_txn(session, 500, date(2025, 3, 2), user_id=2)

    stats = await make_engine(session).compute_statistics(
        1, date(2025, 3, 1), date(2025, 3, 15)
    )
    assert stats.total_income_cents == 250_001
    assert stats.total_expense_cents == 2_332
    assert stats.net_income_cents == 250_001 - 2_332
    assert stats.transaction_count == 3


@pytest.mark.asyncio
async def test_statistics_for_empty_ledger_are_zero(session) -> None:
    stats = await make_engine(session).compute_statistics(1)
    assert stats.model_dump() == {
        "total_income_cents": 0,
        "total_expense_cents": 0,
        "net_income_cents": 0,
        "transaction_count": 0,
    }


@pytest.mark.asyncio
async def test_statistics_reject_inverted_range(session) -> None:
    with pytest.raises(InvalidPeriodError):
        await make_engine(session).compute_statistics(
            1, date(2025, 3, 10), date(2025, 3, 1)
        )


@pytest.mark.asyncio
async def test_category_breakdown_sorted_with_uncategorized_bucket(session) -> None:
    x = await add_category(session, "X", color="#ff0000")
    y = await add_category(session, "Y", color="#00ff00")
    await add_txn(session, 3_000, date(2025, 3, 2), category_id=x.id)
    await add_txn(session, 1_000, date(2025, 3, 3))
    await add_txn(session, 1_000, date(2025, 3, 4), category_id=y.id)

    breakdown = await make_engine(session).compute_category_breakdown(
        1, TransactionType.expense
    )

    assert [(e.category_id, e.amount_cents, e.percentage) for e in breakdown] == [
        (x.id, 3_000, Decimal("60.00")),
        (y.id, 1_000, Decimal("20.00")),
        (None, 1_000, Decimal("20.00")),
    ]
    assert breakdown[0].color == "#ff0000"
    assert breakdown[2].category_name == "Uncategorized"
    assert breakdown[2].color == "#CCCCCC"


@pytest.mark.asyncio
async def test_breakdown_amounts_add_up_to_period_total(session) -> None:
    cats = [await add_category(session, name) for name in ("A", "B", "C")]
    for cat in cats:
        await add_txn(session, 1_000, date(2025, 3, 5), category_id=cat.id)

    engine = make_engine(session)
    breakdown = await engine.compute_category_breakdown(1, TransactionType.expense)
    stats = await engine.compute_statistics(1)

    assert sum(e.amount_cents for e in breakdown) == stats.total_expense_cents
    assert abs(sum(e.percentage for e in breakdown) - 100) <= Decimal("0.01") * len(
        breakdown
    )
    assert [e.category_id for e in breakdown] == [c.id for c in cats]


@pytest.mark.asyncio
async def test_breakdown_for_other_type_is_empty(session) -> None:
    await add_txn(session, 1_000, date(2025, 3, 5))
    assert (
        await make_engine(session).compute_category_breakdown(1, TransactionType.income)
        == []
    )


@pytest.mark.asyncio
async def test_monthly_trends_are_zero_filled(session) -> None:
    await add_txn(session, 5_000, date(2025, 1, 20), TransactionType.income)
    await add_txn(session, 2_000, date(2025, 1, 21))
    await add_txn(session, 700, date(2025, 3, 31))
    await add_txn(session, 900, date(2024, 9, 30))  # outside a 6 month window

    trends = await make_engine(session).compute_monthly_trends(1, 6)

    assert [t.month for t in trends] == [
        "2024-10",
        "2024-11",
        "2024-12",
        "2025-01",
        "2025-02",
        "2025-03",
    ]
    january = trends[3]
    assert (january.income_cents, january.expense_cents, january.net_income_cents) == (
        5_000,
        2_000,
        3_000,
    )
    assert trends[-1].expense_cents == 700
    assert all(t.income_cents == t.expense_cents == 0 for t in trends[:3])


@pytest.mark.asyncio
async def test_monthly_trends_for_new_user(session) -> None:
    trends = await make_engine(session).compute_monthly_trends(99, 6)
    assert len(trends) == 6
    assert all(t.net_income_cents == 0 for t in trends)


@pytest.mark.asyncio
async def test_monthly_trends_reject_non_positive_months(session) -> None:
    with pytest.raises(InvalidPeriodError):
        await make_engine(session).compute_monthly_trends(1, 0)


@pytest.mark.asyncio
async def test_category_trends_count_only_that_category(session) -> None:
    food = await add_category(session, "Food")
    rent = await add_category(session, "Rent")
    await add_txn(session, 1_200, date(2025, 2, 3), category_id=food.id)
    await add_txn(session, 800, date(2025, 2, 9), category_id=food.id)
    await add_txn(session, 90_000, date(2025, 2, 1), category_id=rent.id)

    trends = await make_engine(session).compute_category_trends(1, food.id, 3)

    assert [(t.month, t.amount_cents, t.transaction_count) for t in trends] == [
        ("2025-01", 0, 0),
        ("2025-02", 2_000, 2),
        ("2025-03", 0, 0),
    ]


@pytest.mark.asyncio
async def test_budget_comparison(session) -> None:
    food = await add_category(session, "Food")
    await add_txn(session, 12_345, date(2025, 3, 3), category_id=food.id)
    await add_txn(session, 5_000, date(2025, 3, 4))
    budgets = StaticBudgetSource(
        [
            BudgetLine(category_id=food.id, category_name="Food", budget_cents=50_000),
            BudgetLine(category_id=999, category_name="Travel", budget_cents=0),
        ]
    )

    result = await make_engine(session, budgets).compute_budget_comparison(
        1, resolve_period("month", today=TODAY)
    )

    assert result.total_budget_cents == 50_000
    assert result.total_spent_cents == 17_345
    assert result.remaining_budget_cents == 50_000 - 17_345
    food_line, travel_line = result.categories
    assert food_line.spent_cents == 12_345
    assert food_line.remaining_cents == 37_655
    assert food_line.percentage_used == Decimal("24.69")
    assert travel_line.percentage_used == 0


@pytest.mark.asyncio
async def test_insights_warn_on_rising_spend_and_negative_cash_flow(session) -> None:
    rent = await add_category(session, "Rent")
    food = await add_category(session, "Food")
    await add_txn(session, 10_000, date(2025, 2, 10))
    await add_txn(session, 10_000, date(2025, 3, 1), TransactionType.income)
    await add_txn(session, 12_000, date(2025, 3, 2), category_id=rent.id)
    await add_txn(session, 3_000, date(2025, 3, 3), category_id=food.id)

    result = await make_engine(session).compute_insights(1)

    titles = [i.title for i in result.insights]
    assert titles == ["Increased Spending", "Negative Cash Flow"]
    assert "50.0%" in result.insights[0].message
    assert all(i.type == "warning" for i in result.insights)
    assert len(result.recommendations) == 1
    assert result.recommendations[0].category == "Rent"
    assert result.recommendations[0].potential_savings_cents == 1_200


@pytest.mark.asyncio
async def test_insights_report_savings(session) -> None:
    for name in ("A", "B", "C", "D"):
        cat = await add_category(session, name)
        await add_txn(session, 5_000, date(2025, 3, 5), category_id=cat.id)
    await add_txn(session, 50_000, date(2025, 3, 1), TransactionType.income)
    await add_txn(session, 30_000, date(2025, 2, 10))

    result = await make_engine(session).compute_insights(1)

    assert [i.type for i in result.insights] == ["success"]
    assert result.insights[0].message == "You saved $300.00 this month."
    # 25% each stays under the single-category threshold
    assert result.recommendations == []


@pytest.mark.asyncio
async def test_only_the_largest_category_gets_a_recommendation(session) -> None:
    for name, amount in (("A", 4_000), ("B", 3_500), ("C", 2_500)):
        cat = await add_category(session, name)
        await add_txn(session, amount, date(2025, 3, 5), category_id=cat.id)

    result = await make_engine(session).compute_insights(1)

    # A and B are both above 30% of spending
    assert [(r.category, r.potential_savings_cents) for r in result.recommendations] == [
        ("A", 400)
    ]


@pytest.mark.asyncio
async def test_insights_when_last_month_was_empty(session) -> None:
    await add_txn(session, 4_000, date(2025, 3, 5))
    result = await make_engine(session).compute_insights(1)
    assert result.insights[0].message == (
        "Your spending increased compared to last month."
    )


@pytest.mark.asyncio
async def test_empty_ledger_summary(session, cache, keys) -> None:
    service = AnalyticsService(session, cache, keys=keys, today=lambda: TODAY)
    summary = await service.get_analytics_summary(1, resolve_period("all", today=TODAY))

    assert summary.total_income_cents == 0
    assert summary.total_expenses_cents == 0
    assert summary.net_income_cents == 0
    assert summary.transaction_count == 0
    assert summary.category_breakdown == []
    assert len(summary.monthly_trends) == 12
    assert summary.monthly_trends[-1].month == "2025-03"
    assert all(t.income_cents == t.expense_cents == 0 for t in summary.monthly_trends)


@pytest.mark.asyncio
async def test_summary_combines_expense_then_income_breakdowns(session, cache, keys) -> None:
    salary = await add_category(session, "Salary", TransactionType.income)
    food = await add_category(session, "Food")
    await add_txn(session, 300_000, date(2025, 3, 1), TransactionType.income, salary.id)
    await add_txn(session, 4_500, date(2025, 3, 2), category_id=food.id)

    service = AnalyticsService(session, cache, keys=keys, today=lambda: TODAY)
    summary = await service.get_analytics_summary(1, resolve_period("month", today=TODAY))

    assert [(e.category_name, e.type) for e in summary.category_breakdown] == [
        ("Food", TransactionType.expense),
        ("Salary", TransactionType.income),
    ]
    assert all(e.percentage == 100 for e in summary.category_breakdown)
    assert summary.net_income_cents == 295_500


@pytest.mark.asyncio
async def test_summary_is_served_from_cache_until_invalidated(session, cache, keys) -> None:
    service = AnalyticsService(session, cache, keys=keys, today=lambda: TODAY)
    calls = []
    original = service.engine.compute_statistics

    async def counting(*args, **kwargs):
        calls.append(args)
        return await original(*args, **kwargs)

    service.engine.compute_statistics = counting
    period = resolve_period("month", today=TODAY)

    first = await service.get_analytics_summary(1, period)
    second = await service.get_analytics_summary(1, period)

    assert first == second
    assert len(calls) == 1
    assert cache.get_metrics().hits == 1


@pytest.mark.asyncio
async def test_monthly_trends_service_rejects_zero_months(session, cache, keys) -> None:
    service = AnalyticsService(session, cache, keys=keys, today=lambda: TODAY)
    with pytest.raises(InvalidPeriodError):
        await service.get_monthly_trends(1, 0)


@pytest.mark.asyncio
async def test_ledger_failure_is_data_access_error_and_nothing_is_cached(
    engine, session, cache, keys
) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    service = AnalyticsService(session, cache, keys=keys, today=lambda: TODAY)
    with pytest.raises(DataAccessError):
        await service.get_analytics_summary(1, resolve_period("all", today=TODAY))

    assert cache.get_metrics().sets == 0


@pytest.mark.asyncio
async def test_warm_cache_populates_categories_and_current_month(
    session, cache, keys
) -> None:
    await add_category(session, "Food")
    service = AnalyticsService(session, cache, keys=keys, today=lambda: TODAY)

    await service.warm_cache(5)

    assert await cache.store.get(keys.categories().key) is not None
    assert await cache.store.get(keys.analytics_summary(5, "month").key) is not None
