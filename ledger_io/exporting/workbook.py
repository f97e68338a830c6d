"""
Ledger Export

Produces the workbooks and CSV files users download:
- a backup workbook of the whole ledger
- an import template with sample rows and the default categories
- a flat CSV of expenses for use in other tools

DESIGN DECISION: The backup workbook uses exactly the column layout the
parser reads (`expenses` and `categories` sheets, canonical lowercase
headers, ISO dates). A backup can be re-imported as-is, and with
preserve_ids the ids it carries let a re-import recognise its own records.
"""

import io
from datetime import date
from typing import Iterable, Optional

import pandas as pd
import structlog

from ledger_io.exporting.errors import ExportError
from ledger_io.importing.parser import (
    CATEGORIES_SHEET,
    CATEGORY_COLUMNS,
    EXPENSE_COLUMNS,
    EXPENSES_SHEET,
)
from ledger_io.models.ledger import Category, Expense

logger = structlog.get_logger(__name__)

CSV_EXPORT_COLUMNS = ["Date", "Description", "Category", "Amount", "Notes"]

TEMPLATE_EXPENSES = [
    {
        "date": "2024-01-15",
        "description": "Sample expense",
        "category": "Food & Dining",
        "amount": 25.50,
        "notes": "Lunch with team",
    },
    {
        "date": "2024-01-16",
        "description": "Grocery shopping",
        "category": "Food & Dining",
        "amount": 120.00,
        "notes": "",
    },
]

DEFAULT_CATEGORIES = [
    ("Food & Dining", "#FF6B6B"),
    ("Transportation", "#4ECDC4"),
    ("Shopping", "#45B7D1"),
    ("Entertainment", "#FFA07A"),
    ("Bills & Utilities", "#98D8C8"),
    ("Healthcare", "#F7DC6F"),
    ("Education", "#BB8FCE"),
    ("Other", "#95A5A6"),
]


def backup_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"expense-manager-backup-{today.strftime('%Y%m%d')}.xlsx"


def template_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"expenses-template-{today.strftime('%Y%m%d')}.xlsx"


def expenses_csv_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"expenses-{today.strftime('%Y-%m-%d')}.csv"


def _expense_record(expense: Expense) -> dict:
    return {
        "id": expense.id,
        "date": expense.date.isoformat(),
        "description": expense.description,
        "category": expense.category,
        "amount": float(expense.amount),
        "notes": expense.notes or "",
    }


def _category_record(category: Category) -> dict:
    return {"id": category.id, "name": category.name, "color": category.color}


def _write_workbook(sheets: dict[str, pd.DataFrame]) -> bytes:
    """Write named frames to an in-memory .xlsx file."""
    buffer = io.BytesIO()
    try:
        with pd.ExcelWriter(buffer, engine="xlsxwriter") as writer:
            for sheet_name, frame in sheets.items():
                frame.to_excel(writer, sheet_name=sheet_name, index=False)

                workbook = writer.book
                worksheet = writer.sheets[sheet_name]
                header_format = workbook.add_format({"bold": True})
                for idx, column in enumerate(frame.columns):
                    worksheet.write(0, idx, column, header_format)
                    longest = frame[column].astype(str).map(len).max() if len(frame) else 0
                    worksheet.set_column(idx, idx, min(max(longest, len(column)) + 2, 50))
    except Exception as e:
        logger.error("workbook_export_failed", error=str(e))
        raise ExportError(
            "Failed to build the Excel workbook",
            details={"sheets": list(sheets), "error": str(e)},
        )
    return buffer.getvalue()


def export_ledger_to_excel(
    expenses: Iterable[Expense],
    categories: Iterable[Category],
) -> bytes:
    """
    Build a backup workbook of the ledger.

    Args:
        expenses: Expenses to include, written in date order
        categories: Categories to include, written in name order

    Returns:
        .xlsx bytes with `expenses` and `categories` sheets
    """
    expenses = sorted(expenses, key=lambda e: e.date)
    categories = sorted(categories, key=lambda c: c.name.casefold())

    expense_frame = pd.DataFrame(
        [_expense_record(e) for e in expenses], columns=list(EXPENSE_COLUMNS)
    )
    category_frame = pd.DataFrame(
        [_category_record(c) for c in categories], columns=list(CATEGORY_COLUMNS)
    )

    logger.info("ledger_exported", expenses=len(expenses), categories=len(categories))
    return _write_workbook({EXPENSES_SHEET: expense_frame, CATEGORIES_SHEET: category_frame})


def build_import_template() -> bytes:
    """Build an import template with sample expenses and default categories."""
    expense_frame = pd.DataFrame(TEMPLATE_EXPENSES, columns=[c for c in EXPENSE_COLUMNS if c != "id"])
    category_frame = pd.DataFrame(
        [{"name": name, "color": color} for name, color in DEFAULT_CATEGORIES],
        columns=["name", "color"],
    )
    return _write_workbook({EXPENSES_SHEET: expense_frame, CATEGORIES_SHEET: category_frame})


def export_expenses_to_csv(expenses: Iterable[Expense]) -> bytes:
    """
    Flat CSV of expenses for spreadsheets and other tools.

    Amounts are written with two decimals.
    """
    frame = pd.DataFrame(
        [
            {
                "Date": e.date.isoformat(),
                "Description": e.description,
                "Category": e.category,
                "Amount": f"{e.amount:.2f}",
                "Notes": e.notes or "",
            }
            for e in sorted(expenses, key=lambda e: e.date)
        ],
        columns=CSV_EXPORT_COLUMNS,
    )
    return frame.to_csv(index=False, lineterminator="\n").encode("utf-8")
