from dataclasses import dataclass
from typing import Protocol, Sequence

from periods import Period


@dataclass(frozen=True)
class BudgetLine:
    category_id: int
    category_name: str
    budget_cents: int


class BudgetSource(Protocol):
    async def budgets_for(self, user_id: int, period: Period) -> list[BudgetLine]: ...


# Fixed reference table until budgets are persisted per user.
REFERENCE_BUDGETS: tuple[BudgetLine, ...] = (
    BudgetLine(category_id=1, category_name="Food", budget_cents=50_000),
    BudgetLine(category_id=2, category_name="Transportation", budget_cents=30_000),
    BudgetLine(category_id=3, category_name="Entertainment", budget_cents=20_000),
    BudgetLine(category_id=4, category_name="Utilities", budget_cents=15_000),
)


class StaticBudgetSource:
    def __init__(self, lines: Sequence[BudgetLine] = REFERENCE_BUDGETS) -> None:
        self.lines = tuple(lines)

    async def budgets_for(self, user_id: int, period: Period) -> list[BudgetLine]:
        return list(self.lines)
