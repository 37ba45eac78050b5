import logging
from datetime import date
from typing import AsyncIterator, Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from analytics import AnalyticsService, local_today
from cache import CacheManager, InMemoryCacheStore, RedisCacheStore
from cache_keys import CacheKeys
from config import get_settings
from database import init_db, session_scope
from errors import DataAccessError, InvalidPeriodError, NotFoundError
from invalidation import CacheInvalidator
from models import TransactionType
from periods import Period, resolve_period
from scheduler import SchedulerManager
from schemas import (
    AnalyticsSummary,
    BudgetComparison,
    CacheEntryInfo,
    CacheMetrics,
    CategoryBreakdownEntry,
    CategoryIn,
    CategoryOut,
    CategoryTrendEntry,
    Insights,
    MonthlyTrendEntry,
    TransactionIn,
    TransactionOut,
    TransactionPage,
    TransactionStatistics,
)
from services import (
    CategoryService,
    TransactionFilters,
    TransactionService,
    get_current_user_id,
)


logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger Analytics")


def _build_cache() -> CacheManager:
    settings = get_settings()
    if settings.redis_url:
        store = RedisCacheStore.from_url(
            settings.redis_url, scan_count=settings.cache_delete_batch_size
        )
    else:
        store = InMemoryCacheStore()
    return CacheManager(
        store,
        timeout_secs=settings.cache_timeout_secs,
        delete_batch_size=settings.cache_delete_batch_size,
        compress_min_bytes=settings.cache_compress_min_bytes,
    )


cache_manager = _build_cache()
scheduler_manager = SchedulerManager(cache_manager)


@app.on_event("startup")
async def startup_event():
    await init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
async def shutdown_event():
    scheduler_manager.stop()
    if isinstance(cache_manager.store, RedisCacheStore):
        await cache_manager.store.close()


@app.exception_handler(DataAccessError)
async def data_access_error_handler(request: Request, exc: DataAccessError):
    logger.error(f"request_failed: path={request.url.path} error={exc}")
    return JSONResponse(status_code=500, content={"detail": "Ledger unavailable"})


async def get_db() -> AsyncIterator[AsyncSession]:
    async with session_scope() as session:
        yield session


def get_cache() -> CacheManager:
    return cache_manager


def get_keys() -> CacheKeys:
    return CacheKeys(get_settings().cache_schema_version)


def get_today() -> date:
    return local_today()


def current_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    return x_user_id or get_current_user_id()


def period_from_request(
    period: Literal["month", "lastMonth", "year", "all", "custom"] = "month",
    start: Optional[str] = None,
    end: Optional[str] = None,
    today: date = Depends(get_today),
) -> Period:
    try:
        return resolve_period(period, start, end, today=today)
    except InvalidPeriodError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def get_analytics(
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
    keys: CacheKeys = Depends(get_keys),
    today: date = Depends(get_today),
) -> AnalyticsService:
    return AnalyticsService(db, cache, keys=keys, today=lambda: today)


def get_categories(
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
    keys: CacheKeys = Depends(get_keys),
) -> CategoryService:
    return CategoryService(db, cache, keys=keys)


def get_transactions(
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
    keys: CacheKeys = Depends(get_keys),
    user_id: int = Depends(current_user_id),
) -> TransactionService:
    return TransactionService(db, cache, user_id, keys=keys)


# Analytics


@app.get("/api/v1/analytics/summary", response_model=AnalyticsSummary)
async def analytics_summary(
    period: Period = Depends(period_from_request),
    user_id: int = Depends(current_user_id),
    analytics: AnalyticsService = Depends(get_analytics),
):
    return await analytics.get_analytics_summary(user_id, period)


@app.get("/api/v1/analytics/statistics", response_model=TransactionStatistics)
async def analytics_statistics(
    period: Period = Depends(period_from_request),
    user_id: int = Depends(current_user_id),
    analytics: AnalyticsService = Depends(get_analytics),
):
    return await analytics.get_statistics(user_id, period)


@app.get(
    "/api/v1/analytics/trends/monthly", response_model=list[MonthlyTrendEntry]
)
async def analytics_monthly_trends(
    months: int = Query(12, ge=1, le=24),
    user_id: int = Depends(current_user_id),
    analytics: AnalyticsService = Depends(get_analytics),
):
    return await analytics.get_monthly_trends(user_id, months)


@app.get(
    "/api/v1/analytics/trends/category/{category_id}",
    response_model=list[CategoryTrendEntry],
)
async def analytics_category_trends(
    category_id: int,
    months: int = Query(6, ge=1, le=24),
    user_id: int = Depends(current_user_id),
    analytics: AnalyticsService = Depends(get_analytics),
):
    return await analytics.get_category_trends(user_id, category_id, months)


@app.get(
    "/api/v1/analytics/breakdown/{txn_type}",
    response_model=list[CategoryBreakdownEntry],
)
async def analytics_breakdown(
    txn_type: TransactionType,
    period: Period = Depends(period_from_request),
    user_id: int = Depends(current_user_id),
    analytics: AnalyticsService = Depends(get_analytics),
):
    return await analytics.get_category_breakdown(user_id, txn_type, period)


@app.get("/api/v1/analytics/budget", response_model=BudgetComparison)
async def analytics_budget(
    period: Period = Depends(period_from_request),
    user_id: int = Depends(current_user_id),
    analytics: AnalyticsService = Depends(get_analytics),
):
    return await analytics.get_budget_comparison(user_id, period)


@app.get("/api/v1/analytics/insights", response_model=Insights)
async def analytics_insights(
    user_id: int = Depends(current_user_id),
    analytics: AnalyticsService = Depends(get_analytics),
):
    return await analytics.get_financial_insights(user_id)


# Categories


@app.get("/api/v1/categories", response_model=list[CategoryOut])
async def list_categories(
    type: Optional[TransactionType] = None,
    categories: CategoryService = Depends(get_categories),
):
    return await categories.list_all(type)


@app.post("/api/v1/categories", response_model=CategoryOut, status_code=201)
async def create_category(
    payload: CategoryIn, categories: CategoryService = Depends(get_categories)
):
    try:
        return await categories.create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.put("/api/v1/categories/{category_id}", response_model=CategoryOut)
async def update_category(
    category_id: int,
    payload: CategoryIn,
    categories: CategoryService = Depends(get_categories),
):
    try:
        return await categories.update(category_id, payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/v1/categories/{category_id}", status_code=204)
async def delete_category(
    category_id: int, categories: CategoryService = Depends(get_categories)
):
    try:
        await categories.delete(category_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


# Transactions


@app.get("/api/v1/transactions", response_model=TransactionPage)
async def list_transactions(
    type: Optional[TransactionType] = None,
    category_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = Query(None, max_length=100),
    min_amount_cents: Optional[int] = Query(None, ge=0),
    max_amount_cents: Optional[int] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    transactions: TransactionService = Depends(get_transactions),
):
    filters = TransactionFilters(
        type=type,
        category_id=category_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
        min_amount_cents=min_amount_cents,
        max_amount_cents=max_amount_cents,
    )
    return await transactions.list(filters, page=page, limit=limit)


@app.get("/api/v1/transactions/{transaction_id}", response_model=TransactionOut)
async def get_transaction(
    transaction_id: int,
    transactions: TransactionService = Depends(get_transactions),
):
    try:
        return await transactions.get(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/v1/transactions", response_model=TransactionOut, status_code=201)
async def create_transaction(
    payload: TransactionIn,
    transactions: TransactionService = Depends(get_transactions),
):
    try:
        return await transactions.create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.put("/api/v1/transactions/{transaction_id}", response_model=TransactionOut)
async def update_transaction(
    transaction_id: int,
    payload: TransactionIn,
    transactions: TransactionService = Depends(get_transactions),
):
    try:
        return await transactions.update(transaction_id, payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/v1/transactions/{transaction_id}", status_code=204)
async def delete_transaction(
    transaction_id: int,
    transactions: TransactionService = Depends(get_transactions),
):
    try:
        await transactions.delete(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


# Cache operations


@app.get("/api/v1/cache/metrics", response_model=CacheMetrics)
def cache_metrics(cache: CacheManager = Depends(get_cache)):
    return cache.get_metrics()


@app.post("/api/v1/cache/metrics/reset", response_model=CacheMetrics)
def reset_cache_metrics(cache: CacheManager = Depends(get_cache)):
    cache.reset_metrics()
    return cache.get_metrics()


@app.post("/api/v1/cache/warm/{user_id}", status_code=202)
async def warm_cache(
    user_id: int, analytics: AnalyticsService = Depends(get_analytics)
):
    await analytics.warm_cache(user_id)
    return {"detail": f"Cache warmed for user {user_id}"}


@app.get("/api/v1/cache/info/{key:path}", response_model=CacheEntryInfo)
async def cache_info(key: str, cache: CacheManager = Depends(get_cache)):
    return await cache.info(key)


@app.delete("/api/v1/cache/user/{user_id}")
async def invalidate_user_cache(
    user_id: int, cache: CacheManager = Depends(get_cache)
):
    result = await CacheInvalidator(cache).invalidate_user_cache(user_id)
    return {"deleted": result.deleted, "complete": result.complete}
