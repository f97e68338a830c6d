"""
Shared fixtures for Ledger IO tests.

No test talks to Google Sheets: the ledger is an InMemoryLedgerStorage,
optionally wrapped to fail or stall on chosen records.
"""

import asyncio
import io
from decimal import Decimal
from typing import Optional

import pytest
from openpyxl import Workbook

from ledger_io.config import ImportSettings
from ledger_io.models.ledger import Category, RawExpenseRow
from ledger_io.services.storage import InMemoryLedgerStorage, StorageError

USER_ID = "user-1"

EXPENSE_HEADER = ["id", "date", "description", "category", "amount", "notes"]


class FlakyLedgerStorage(InMemoryLedgerStorage):
    """In-memory ledger that fails or stalls on selected writes."""

    def __init__(
        self,
        *args,
        fail_descriptions=(),
        fail_category_names=(),
        slow_descriptions=(),
        unavailable=False,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.fail_descriptions = set(fail_descriptions)
        self.fail_category_names = set(fail_category_names)
        self.slow_descriptions = set(slow_descriptions)
        self.unavailable = unavailable
        self.category_create_calls = 0
        self.expense_write_calls = 0

    async def check_connection(self) -> bool:
        if self.unavailable:
            raise StorageError("Sheets API unreachable")
        return True

    async def create_category(self, category: Category) -> Category:
        self.category_create_calls += 1
        if category.name in self.fail_category_names:
            raise StorageError("quota exceeded")
        return await super().create_category(category)

    async def create_expense(self, expense):
        self.expense_write_calls += 1
        if expense.description in self.slow_descriptions:
            await asyncio.sleep(5)
        if expense.description in self.fail_descriptions:
            raise StorageError("write rejected")
        return await super().create_expense(expense)


@pytest.fixture
def import_settings() -> ImportSettings:
    return ImportSettings(
        row_write_timeout_seconds=1.0,
        progress_batch_size=25,
        progress_every_row_limit=500,
    )


@pytest.fixture
def food_category() -> Category:
    return Category(user_id=USER_ID, name="Food & Dining", color="#FF6B6B")


@pytest.fixture
def storage(food_category) -> FlakyLedgerStorage:
    return FlakyLedgerStorage(categories=[food_category])


@pytest.fixture
def make_row():
    """Factory for RawExpenseRow values as the parser would produce them."""

    def _make_row(
        row_number: int,
        date: str = "2024-01-15",
        description: str = "Coffee",
        category: str = "Food & Dining",
        amount: Optional[str] = "4.50",
        notes: Optional[str] = None,
        id: Optional[str] = None,
    ) -> RawExpenseRow:
        return RawExpenseRow(
            row_number=row_number,
            id=id,
            date=date,
            description=description,
            category=category,
            amount=Decimal(amount) if amount is not None else None,
            amount_text=amount or "",
            notes=notes,
        )

    return _make_row


@pytest.fixture
def make_workbook():
    """Factory building .xlsx bytes from {sheet_name: rows}."""

    def _make_workbook(sheets: dict) -> bytes:
        workbook = Workbook()
        workbook.remove(workbook.active)
        for name, rows in sheets.items():
            worksheet = workbook.create_sheet(name)
            for row in rows:
                worksheet.append(row)
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return _make_workbook


@pytest.fixture
def make_csv():
    """Factory building UTF-8 CSV bytes from rows of cells."""

    def _make_csv(rows: list) -> bytes:
        lines = [",".join("" if cell is None else str(cell) for cell in row) for row in rows]
        return ("\n".join(lines) + "\n").encode("utf-8")

    return _make_csv
