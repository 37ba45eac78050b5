import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Iterator, Optional

from sqlalchemy import case, extract, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import DataAccessError
from models import Category, Transaction, TransactionType
from periods import month_end, month_window


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TypeTotals:
    income_cents: int
    expense_cents: int
    count: int


@dataclass(frozen=True)
class CategoryTotal:
    category_id: Optional[int]
    category_name: Optional[str]
    color: Optional[str]
    icon: Optional[str]
    amount_cents: int


@dataclass(frozen=True)
class MonthTotal:
    month: str
    income_cents: int
    expense_cents: int


@dataclass(frozen=True)
class CategoryMonthTotal:
    month: str
    amount_cents: int
    count: int


@contextmanager
def ledger_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (SQLAlchemyError, OSError) as exc:
        logger.exception(f"ledger_query_failed: operation={operation}")
        raise DataAccessError(f"Ledger query failed: {operation}") from exc


def _month_key(year: object, month: object) -> str:
    return f"{int(year):04d}-{int(month):02d}"


class LedgerStore:
    """Aggregate queries over the transactions table for one session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _in_range(stmt, start: Optional[date], end: Optional[date]):
        if start is not None:
            stmt = stmt.where(Transaction.transaction_date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.transaction_date <= end)
        return stmt

    async def sum_amounts_by_type(
        self, user_id: int, start: Optional[date] = None, end: Optional[date] = None
    ) -> TypeTotals:
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.income,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.expense,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("expense"),
            func.count(Transaction.id).label("txn_count"),
        ).where(Transaction.user_id == user_id)
        stmt = self._in_range(stmt, start, end)

        with ledger_errors("sum_amounts_by_type"):
            row = (await self.session.execute(stmt)).one()
        return TypeTotals(
            income_cents=int(row.income or 0),
            expense_cents=int(row.expense or 0),
            count=int(row.txn_count or 0),
        )

    async def sum_amounts_by_category(
        self,
        user_id: int,
        txn_type: TransactionType,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[CategoryTotal]:
        total = func.sum(Transaction.amount_cents).label("total")
        stmt = (
            select(
                Transaction.category_id.label("category_id"),
                Category.name.label("name"),
                Category.color.label("color"),
                Category.icon.label("icon"),
                total,
            )
            .select_from(Transaction)
            .outerjoin(Category, Category.id == Transaction.category_id)
            .where(Transaction.user_id == user_id, Transaction.type == txn_type)
            .group_by(
                Transaction.category_id, Category.name, Category.color, Category.icon
            )
        )
        stmt = self._in_range(stmt, start, end)

        with ledger_errors("sum_amounts_by_category"):
            rows = (await self.session.execute(stmt)).all()
        return [
            CategoryTotal(
                category_id=row.category_id,
                category_name=row.name,
                color=row.color,
                icon=row.icon,
                amount_cents=int(row.total or 0),
            )
            for row in rows
        ]

    async def sum_amounts_by_month(
        self, user_id: int, month_count: int, today: date
    ) -> list[MonthTotal]:
        """Per-month totals inside the window; months without rows are absent."""
        window = month_window(month_count, today)
        year = extract("year", Transaction.transaction_date).label("year")
        month = extract("month", Transaction.transaction_date).label("month")
        stmt = (
            select(
                year,
                month,
                func.coalesce(
                    func.sum(
                        case(
                            (
                                Transaction.type == TransactionType.income,
                                Transaction.amount_cents,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ).label("income"),
                func.coalesce(
                    func.sum(
                        case(
                            (
                                Transaction.type == TransactionType.expense,
                                Transaction.amount_cents,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ).label("expense"),
            )
            .where(Transaction.user_id == user_id)
            .group_by(year, month)
        )
        stmt = self._in_range(stmt, window[0], month_end(window[-1]))

        with ledger_errors("sum_amounts_by_month"):
            rows = (await self.session.execute(stmt)).all()
        return [
            MonthTotal(
                month=_month_key(row.year, row.month),
                income_cents=int(row.income or 0),
                expense_cents=int(row.expense or 0),
            )
            for row in rows
        ]

    async def sum_category_by_month(
        self, user_id: int, category_id: int, month_count: int, today: date
    ) -> list[CategoryMonthTotal]:
        window = month_window(month_count, today)
        year = extract("year", Transaction.transaction_date).label("year")
        month = extract("month", Transaction.transaction_date).label("month")
        stmt = (
            select(
                year,
                month,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
                func.count(Transaction.id).label("txn_count"),
            )
            .where(
                Transaction.user_id == user_id,
                Transaction.category_id == category_id,
            )
            .group_by(year, month)
        )
        stmt = self._in_range(stmt, window[0], month_end(window[-1]))

        with ledger_errors("sum_category_by_month"):
            rows = (await self.session.execute(stmt)).all()
        return [
            CategoryMonthTotal(
                month=_month_key(row.year, row.month),
                amount_cents=int(row.total or 0),
                count=int(row.txn_count or 0),
            )
            for row in rows
        ]
