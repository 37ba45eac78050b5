import os
import tempfile

os.environ.setdefault("LEDGER_DATA_DIR", tempfile.mkdtemp(prefix="ledger-tests-"))
os.environ.setdefault("LEDGER_REDIS_URL", "")

from datetime import date
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cache import CacheManager, InMemoryCacheStore
from cache_keys import CacheKeys
from database import Base
from models import Category, Transaction, TransactionType


TODAY = date(2025, 3, 15)


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session(engine):
    SessionLocal = async_sessionmaker(
        bind=engine, autoflush=False, expire_on_commit=False
    )
    async with SessionLocal() as s:
        yield s


@pytest.fixture
def cache() -> CacheManager:
    return CacheManager(InMemoryCacheStore())


@pytest.fixture
def keys() -> CacheKeys:
    return CacheKeys("v1")


async def add_category(
    session, name: str, txn_type: TransactionType = TransactionType.expense, color: str = "#112233"
) -> Category:
    category = Category(name=name, type=txn_type, color=color, icon="tag")
    session.add(category)
    await session.commit()
    await session.refresh(category)
    return category


async def add_txn(
    session,
    amount_cents: int,
    on: date,
    txn_type: TransactionType = TransactionType.expense,
    category_id: Optional[int] = None,
    user_id: int = 1,
) -> Transaction:
    txn = Transaction(
        user_id=user_id,
        category_id=category_id,
        amount_cents=amount_cents,
        description="test",
        transaction_date=on,
        type=txn_type,
    )
    session.add(txn)
    await session.commit()
    return txn
