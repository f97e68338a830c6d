"""
In-Memory Storage Implementation

Used for local runs without Google Sheets and as the backing store in tests.
Records are copied on the way in and out so callers never share mutable
state with the store.
"""

from datetime import datetime, timezone
from typing import Optional

from ledger_io.models.ledger import Category, Expense
from ledger_io.services.storage.interface import (
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Ledger storage held in process memory."""

    def __init__(
        self,
        categories: Optional[list[Category]] = None,
        expenses: Optional[list[Expense]] = None,
    ):
        self._categories: dict[str, Category] = {}
        self._expenses: dict[str, Expense] = {}
        for category in categories or []:
            self._categories[category.id] = category.model_copy()
        for expense in expenses or []:
            self._expenses[expense.id] = expense.model_copy()

    async def check_connection(self) -> bool:
        return True

    async def list_categories(self, user_id: str) -> list[Category]:
        return [
            c.model_copy() for c in self._categories.values() if c.user_id == user_id
        ]

    async def create_category(self, category: Category) -> Category:
        wanted = category.name.strip().casefold()
        for existing in self._categories.values():
            if (
                existing.user_id == category.user_id
                and existing.name.strip().casefold() == wanted
            ):
                raise DuplicateError(f"Category already exists: {category.name}")
        if category.id in self._categories:
            raise DuplicateError(f"Category ID already exists: {category.id}")

        self._categories[category.id] = category.model_copy()
        return category.model_copy()

    async def list_expenses(self, user_id: str) -> list[Expense]:
        return [
            e.model_copy() for e in self._expenses.values() if e.user_id == user_id
        ]

    async def create_expense(self, expense: Expense) -> Expense:
        if expense.id in self._expenses:
            raise DuplicateError(f"Expense ID already exists: {expense.id}")
        self._expenses[expense.id] = expense.model_copy()
        return expense.model_copy()

    async def update_expense(self, expense: Expense) -> Expense:
        current = self._expenses.get(expense.id)
        if current is None or current.user_id != expense.user_id:
            raise NotFoundError(f"Expense not found: {expense.id}")

        updated = expense.model_copy(
            update={
                "created_at": current.created_at,
                "updated_at": datetime.now(timezone.utc),
            }
        )
        self._expenses[expense.id] = updated
        return updated.model_copy()
