from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cache import CacheManager
from cache_keys import CacheKeys
from config import get_settings
from errors import NotFoundError
from invalidation import Action, CacheInvalidator, Entity, LedgerMutation
from ledger import ledger_errors
from models import Category, Transaction, TransactionType
from schemas import CategoryIn, CategoryOut, TransactionIn, TransactionOut, TransactionPage


def get_current_user_id() -> int:
    return 1


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search: Optional[str] = None
    min_amount_cents: Optional[int] = None
    max_amount_cents: Optional[int] = None

    @property
    def cacheable(self) -> bool:
        # Free-text and amount-range queries are too varied to be worth caching.
        return (
            not self.search
            and self.min_amount_cents is None
            and self.max_amount_cents is None
        )

    def as_dict(self) -> dict[str, object]:
        data = asdict(self)
        if self.type is not None:
            data["type"] = self.type.value
        return data


class CategoryService:
    def __init__(
        self,
        session: AsyncSession,
        cache: CacheManager,
        *,
        keys: Optional[CacheKeys] = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self.keys = keys or CacheKeys(get_settings().cache_schema_version)
        self.invalidator = CacheInvalidator(cache)

    async def list_all(
        self, txn_type: Optional[TransactionType] = None
    ) -> list[CategoryOut]:
        key = self.keys.categories(txn_type)
        cached = await self.cache.get(key, list[CategoryOut])
        if cached is not None:
            return cached

        stmt = select(Category).order_by(Category.type, Category.name)
        if txn_type is not None:
            stmt = stmt.where(Category.type == txn_type)
        with ledger_errors("list_categories"):
            rows = (await self.session.scalars(stmt)).all()
        categories = [CategoryOut.model_validate(row) for row in rows]
        await self.cache.set(key, categories, list[CategoryOut])
        return categories

    async def get(self, category_id: int) -> Category:
        with ledger_errors("get_category"):
            category = await self.session.get(Category, category_id)
        if not category:
            raise NotFoundError("Category not found")
        return category

    async def _ensure_unique(
        self, name: str, txn_type: TransactionType, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Category.id).where(
            Category.type == txn_type,
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        with ledger_errors("check_category_name"):
            existing = await self.session.scalar(stmt)
        if existing:
            raise ValueError("Category with this name already exists")

    async def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        await self._ensure_unique(name, data.type)
        category = Category(name=name, type=data.type, color=data.color, icon=data.icon)
        self.session.add(category)
        with ledger_errors("create_category"):
            await self.session.commit()
        await self.invalidator.apply(LedgerMutation(Entity.category, Action.create))
        with ledger_errors("refresh_category"):
            await self.session.refresh(category)
        return category

    async def update(self, category_id: int, data: CategoryIn) -> Category:
        category = await self.get(category_id)
        if data.type != category.type:
            raise ValueError("Category type cannot be changed")
        name = data.name.strip()
        await self._ensure_unique(name, category.type, exclude_id=category.id)
        category.name = name
        category.color = data.color
        category.icon = data.icon
        with ledger_errors("update_category"):
            await self.session.commit()
        await self.invalidator.apply(LedgerMutation(Entity.category, Action.update))
        with ledger_errors("refresh_category"):
            await self.session.refresh(category)
        return category

    async def delete(self, category_id: int) -> None:
        category = await self.get(category_id)
        with ledger_errors("delete_category"):
            await self.session.execute(
                update(Transaction)
                .where(Transaction.category_id == category.id)
                .values(category_id=None)
            )
            await self.session.delete(category)
            await self.session.commit()
        await self.invalidator.apply(LedgerMutation(Entity.category, Action.delete))


class TransactionService:
    def __init__(
        self,
        session: AsyncSession,
        cache: CacheManager,
        user_id: Optional[int] = None,
        *,
        keys: Optional[CacheKeys] = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self.user_id = user_id or get_current_user_id()
        self.keys = keys or CacheKeys(get_settings().cache_schema_version)
        self.invalidator = CacheInvalidator(cache)

    async def _query_page(
        self, filters: TransactionFilters, page: int, limit: int
    ) -> TransactionPage:
        conditions = [Transaction.user_id == self.user_id]
        if filters.type is not None:
            conditions.append(Transaction.type == filters.type)
        if filters.category_id is not None:
            conditions.append(Transaction.category_id == filters.category_id)
        if filters.start_date is not None:
            conditions.append(Transaction.transaction_date >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(Transaction.transaction_date <= filters.end_date)
        if filters.search:
            conditions.append(Transaction.description.ilike(f"%{filters.search}%"))
        if filters.min_amount_cents is not None:
            conditions.append(Transaction.amount_cents >= filters.min_amount_cents)
        if filters.max_amount_cents is not None:
            conditions.append(Transaction.amount_cents <= filters.max_amount_cents)

        stmt = (
            select(Transaction)
            .where(*conditions)
            .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        count_stmt = select(func.count(Transaction.id)).where(*conditions)
        with ledger_errors("list_transactions"):
            rows = (await self.session.scalars(stmt)).all()
            total = int((await self.session.execute(count_stmt)).scalar_one() or 0)
        return TransactionPage(
            items=[TransactionOut.model_validate(row) for row in rows],
            total=total,
            page=page,
            limit=limit,
        )

    async def list(
        self,
        filters: Optional[TransactionFilters] = None,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> TransactionPage:
        filters = filters or TransactionFilters()
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")
        if not filters.cacheable:
            return await self._query_page(filters, page, limit)

        key = self.keys.transactions(
            self.user_id, {**filters.as_dict(), "page": page, "limit": limit}
        )
        cached = await self.cache.get(key, TransactionPage)
        if cached is not None:
            return cached
        result = await self._query_page(filters, page, limit)
        await self.cache.set(key, result, TransactionPage)
        return result

    async def get(self, transaction_id: int) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id, Transaction.id == transaction_id
        )
        with ledger_errors("get_transaction"):
            txn = await self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    async def _check_category(self, data: TransactionIn) -> None:
        if data.category_id is None:
            return
        with ledger_errors("get_category"):
            category = await self.session.get(Category, data.category_id)
        if not category:
            raise ValueError("Category not found")
        if category.type != data.type:
            raise ValueError("Category type mismatch")

    async def _invalidate(self, action: Action) -> None:
        await self.invalidator.apply(
            LedgerMutation(Entity.transaction, action, user_id=self.user_id)
        )

    async def create(self, data: TransactionIn) -> Transaction:
        await self._check_category(data)
        txn = Transaction(
            user_id=self.user_id,
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            description=data.description,
            transaction_date=data.transaction_date,
            type=data.type,
        )
        self.session.add(txn)
        with ledger_errors("create_transaction"):
            await self.session.commit()
        await self._invalidate(Action.create)
        with ledger_errors("refresh_transaction"):
            await self.session.refresh(txn)
        return txn

    async def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = await self.get(transaction_id)
        await self._check_category(data)
        txn.category_id = data.category_id
        txn.amount_cents = data.amount_cents
        txn.description = data.description
        txn.transaction_date = data.transaction_date
        txn.type = data.type
        with ledger_errors("update_transaction"):
            await self.session.commit()
        await self._invalidate(Action.update)
        with ledger_errors("refresh_transaction"):
            await self.session.refresh(txn)
        return txn

    async def delete(self, transaction_id: int) -> None:
        txn = await self.get(transaction_id)
        with ledger_errors("delete_transaction"):
            await self.session.delete(txn)
            await self.session.commit()
        await self._invalidate(Action.delete)
