"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the remote ledger backend:
1. Users can view their imported data directly in Sheets
2. No database setup required
3. Easy to export/migrate later

TRADEOFFS:
- No transactions: an import commits row by row, and each append is
  independent of the others
- Limited query capabilities (we filter by user in Python)

Connection setup and whole-sheet reads are retried with tenacity.
Single-row writes are NOT retried; a failed write is reported to the
importer, which records it against that row.

gspread is synchronous, so every call runs in a worker thread via
asyncio.to_thread. That keeps the event loop free for the importer's
per-row timeout, and the client-side HTTP timeout bounds the thread itself.
"""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from ledger_io.config import get_settings
from ledger_io.models.audit import AuditEvent
from ledger_io.models.ledger import Category, Expense
from ledger_io.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)

logger = structlog.get_logger(__name__)


# Column mappings for Expenses sheet
EXPENSE_COLUMNS = [
    "id",
    "user_id",
    "date",
    "description",
    "category",
    "amount",
    "notes",
    "created_at",
    "updated_at",
]

LAST_EXPENSE_COLUMN = chr(ord("A") + len(EXPENSE_COLUMNS) - 1)

# Column mappings for Categories sheet
CATEGORY_COLUMNS = [
    "id",
    "user_id",
    "name",
    "color",
    "icon",
    "is_default",
    "created_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


def _safe_getter(row: list):
    """Build an accessor that tolerates short or blank rows."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
                self._client.set_timeout(self._settings.request_timeout_seconds)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_expenses_sheet(self) -> gspread.Worksheet:
        """Get or create the Expenses worksheet."""
        return self._get_or_create_sheet(
            self._settings.expenses_sheet_name, EXPENSE_COLUMNS, rows=5000
        )

    def get_categories_sheet(self) -> gspread.Worksheet:
        """Get or create the Categories worksheet."""
        return self._get_or_create_sheet(
            self._settings.categories_sheet_name, CATEGORY_COLUMNS, rows=500
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    Expenses and categories live in separate worksheets, one record per row,
    with a user_id column scoping every record to its owner.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _expense_to_row(self, expense: Expense) -> list:
        """Convert an Expense to a spreadsheet row."""
        return [
            expense.id,
            expense.user_id,
            expense.date.isoformat(),
            expense.description,
            expense.category,
            str(expense.amount),
            expense.notes or "",
            expense.created_at.isoformat(),
            expense.updated_at.isoformat(),
        ]

    def _row_to_expense(self, row: list) -> Expense:
        """Convert a spreadsheet row to an Expense."""
        safe_get = _safe_getter(row)
        return Expense(
            id=safe_get(0),
            user_id=safe_get(1),
            date=date.fromisoformat(safe_get(2)),
            description=safe_get(3),
            category=safe_get(4),
            amount=Decimal(safe_get(5)),
            notes=safe_get(6) or None,
            created_at=datetime.fromisoformat(safe_get(7)),
            updated_at=datetime.fromisoformat(safe_get(8)),
        )

    def _category_to_row(self, category: Category) -> list:
        """Convert a Category to a spreadsheet row."""
        return [
            category.id,
            category.user_id,
            category.name,
            category.color,
            category.icon,
            str(category.is_default),
            category.created_at.isoformat(),
        ]

    def _row_to_category(self, row: list) -> Category:
        """Convert a spreadsheet row to a Category."""
        safe_get = _safe_getter(row)
        return Category(
            id=safe_get(0),
            user_id=safe_get(1),
            name=safe_get(2),
            color=safe_get(3, "#95A5A6"),
            icon=safe_get(4, "📦"),
            is_default=safe_get(5).lower() == "true",
            created_at=datetime.fromisoformat(safe_get(6)),
        )

    async def check_connection(self) -> bool:
        """Verify the spreadsheet can be opened."""
        try:
            await asyncio.to_thread(self._client.get_spreadsheet)
            return True
        except ConnectionError:
            raise
        except Exception as e:
            raise ConnectionError(f"Google Sheets unreachable: {e}")

    def _read_categories(self, user_id: str) -> list[Category]:
        sheet = self._client.get_categories_sheet()
        all_rows = sheet.get_all_values()[1:]  # Skip header

        categories = []
        for row in all_rows:
            if len(row) < 3 or row[1] != user_id:
                continue
            try:
                categories.append(self._row_to_category(row))
            except Exception:
                logger.warning("malformed_category_row", category_id=row[0])
        return categories

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def list_categories(self, user_id: str) -> list[Category]:
        """List a user's categories."""
        try:
            return await asyncio.to_thread(self._read_categories, user_id)
        except Exception as e:
            raise StorageError(f"Failed to list categories: {e}")

    async def create_category(self, category: Category) -> Category:
        """Append a category unless the user already has one with that name."""
        existing = await self.list_categories(category.user_id)
        wanted = category.name.strip().casefold()
        if any(c.name.strip().casefold() == wanted for c in existing):
            raise DuplicateError(f"Category already exists: {category.name}")

        def append() -> None:
            sheet = self._client.get_categories_sheet()
            sheet.append_row(self._category_to_row(category), value_input_option="RAW")

        try:
            await asyncio.to_thread(append)
            return category
        except Exception as e:
            raise StorageError(f"Failed to create category: {e}")

    def _read_expenses(self, user_id: str) -> list[Expense]:
        sheet = self._client.get_expenses_sheet()
        all_rows = sheet.get_all_values()[1:]  # Skip header

        expenses = []
        for row in all_rows:
            if len(row) < 2 or row[1] != user_id:
                continue
            try:
                expenses.append(self._row_to_expense(row))
            except Exception:
                logger.warning("malformed_expense_row", expense_id=row[0])
        return expenses

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def list_expenses(self, user_id: str) -> list[Expense]:
        """List a user's expenses."""
        try:
            return await asyncio.to_thread(self._read_expenses, user_id)
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")

    async def create_expense(self, expense: Expense) -> Expense:
        """Append an expense. IDs are not re-checked against the sheet."""

        def append() -> None:
            sheet = self._client.get_expenses_sheet()
            sheet.append_row(self._expense_to_row(expense), value_input_option="RAW")

        try:
            await asyncio.to_thread(append)
            return expense
        except Exception as e:
            raise StorageError(f"Failed to save expense: {e}")

    def _rewrite_expense(self, expense: Expense) -> Expense:
        sheet = self._client.get_expenses_sheet()
        all_rows = sheet.get_all_values()

        # Row 1 is the header
        for idx, row in enumerate(all_rows[1:], start=2):
            if row and row[0] == expense.id and len(row) > 1 and row[1] == expense.user_id:
                updated = expense.model_copy(
                    update={"updated_at": datetime.now(timezone.utc)}
                )
                # One range write, so the row is replaced whole or not at all
                sheet.update(
                    range_name=f"A{idx}:{LAST_EXPENSE_COLUMN}{idx}",
                    values=[self._expense_to_row(updated)],
                    value_input_option="RAW",
                )
                return updated

        raise NotFoundError(f"Expense not found: {expense.id}")

    async def update_expense(self, expense: Expense) -> Expense:
        """Rewrite the row holding this expense."""
        try:
            return await asyncio.to_thread(self._rewrite_expense, expense)
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update expense: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""

        def append() -> None:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")

        try:
            await asyncio.to_thread(append)
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning("audit_append_failed", error=str(e), event_id=str(event.event_id))
            return False
