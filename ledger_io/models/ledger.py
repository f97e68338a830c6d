"""
Core Data Models for Ledger IO

These models define the strict schemas for all data flowing through the
import/export pipeline. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Keep parse-time and import-time outputs immutable

DESIGN DECISION: Everything the parser and matcher produce (RawExpenseRow,
ParsedData, CategoryMapping) and everything an import run reports
(ImportResult, ProgressEvent) is a frozen model. Recomputing them from the
same inputs yields equal values, and nothing downstream can edit them.
"""

import datetime as dt
import re
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


def new_record_id() -> str:
    """Generate an ID for a new ledger record."""
    return uuid4().hex


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# The only date text the parser emits for a cell it accepted
_CANONICAL_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class FileKind(str, Enum):
    """Upload formats the parser understands."""
    XLSX = "xlsx"
    CSV = "csv"


class ConflictStrategy(str, Enum):
    """
    How a row that duplicates an existing or already-imported record is handled.
    """
    IMPORT_AS_NEW = "import-as-new"      # Always write a new record
    SKIP_DUPLICATES = "skip-duplicates"  # Count duplicates as skipped
    OVERWRITE = "overwrite"              # Replace the existing record's fields

    @property
    def detects_duplicates(self) -> bool:
        return self is not ConflictStrategy.IMPORT_AS_NEW


class IssueKind(str, Enum):
    """Row-level problem categories. None of these stop an import."""
    PARSE = "parse"
    VALIDATION = "validation"
    CATEGORY_RESOLUTION = "category_resolution"
    STORAGE = "storage"


class ProgressPhase(str, Enum):
    """Phase an import run is in when it reports progress."""
    CATEGORIES = "categories"
    EXPENSES = "expenses"
    COMPLETE = "complete"


class ImportSessionState(str, Enum):
    """
    Lifecycle of one import session.

    idle -> preview -> importing -> complete
    Any fatal error moves the session to failed.
    """
    IDLE = "idle"
    PREVIEW = "preview"
    IMPORTING = "importing"
    COMPLETE = "complete"
    FAILED = "failed"


# =============================================================================
# LEDGER ENTITIES
# =============================================================================

class Category(BaseModel):
    """
    A category in the user's ledger.

    Names are unique per user (compared trimmed and case-insensitively).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_record_id,
        description="Unique category ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of the category"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name, unique per user"
    )
    color: str = Field(
        default="#95A5A6",
        max_length=20,
        description="Display color"
    )
    icon: str = Field(
        default="📦",
        max_length=10,
        description="Display icon"
    )
    is_default: bool = False
    created_at: dt.datetime = Field(default_factory=_utcnow)


class Expense(BaseModel):
    """
    An expense stored in the user's ledger.

    The category is stored by display name, matching how the rest of the
    application filters and groups expenses.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_record_id,
        description="Unique expense ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of the expense"
    )
    date: dt.date = Field(
        ...,
        description="Calendar date of the expense"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="What the money was spent on"
    )
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Category display name"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Amount in user-currency units"
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=1000,
        description="Free-text notes"
    )
    created_at: dt.datetime = Field(default_factory=_utcnow)
    updated_at: dt.datetime = Field(default_factory=_utcnow)


# =============================================================================
# PARSER OUTPUT
# =============================================================================

class RowError(BaseModel):
    """
    A problem tied to one row of the uploaded file.

    Row numbers are 1-based with the header counted as row 1, so they point
    at the exact line the user sees in their spreadsheet.
    """
    model_config = ConfigDict(frozen=True)

    row: int = Field(
        ...,
        ge=1,
        description="1-based row number, header inclusive"
    )
    message: str = Field(
        ...,
        min_length=1,
        description="Human-readable description of the problem"
    )
    kind: IssueKind
    severity: str = Field(
        default="error",
        pattern="^(error|warning)$",
        description="Issue severity"
    )
    sheet: str = Field(
        default="expenses",
        description="Sheet the row belongs to"
    )

    @property
    def is_warning(self) -> bool:
        return self.severity == "warning"


class RawExpenseRow(BaseModel):
    """
    One expense row exactly as read from the uploaded file.

    CRITICAL: Rows with an unparseable date or amount are still produced so
    the preview can show them. `date` holds ISO text when the cell parsed,
    the raw cell text otherwise; `amount` is None when the cell did not parse.
    """
    model_config = ConfigDict(frozen=True)

    record_type: Literal["expense"] = "expense"
    row_number: int = Field(..., ge=2)
    id: Optional[str] = None
    date: str = ""
    description: str = ""
    category: str = ""
    amount: Optional[Decimal] = None
    amount_text: str = ""
    notes: Optional[str] = None
    read_error: Optional[str] = Field(
        default=None,
        description="Why the line could not be read as a record at all"
    )

    @property
    def parsed_date(self) -> Optional[dt.date]:
        """
        The row date as a calendar date, or None if it is not valid.

        Only canonical YYYY-MM-DD text counts. Anything else is raw text
        the parser already rejected, and must stay rejected here even where
        `date.fromisoformat` would accept it (20240115, 2024-W03-1).
        """
        if not _CANONICAL_DATE.fullmatch(self.date):
            return None
        try:
            return dt.date.fromisoformat(self.date)
        except ValueError:
            return None

    @property
    def has_blank_category(self) -> bool:
        return not self.category.strip()


class RawCategoryRow(BaseModel):
    """One row of the optional `categories` sheet."""
    model_config = ConfigDict(frozen=True)

    record_type: Literal["category"] = "category"
    row_number: int = Field(..., ge=2)
    id: Optional[str] = None
    name: str = ""
    color: Optional[str] = None


class ParsedData(BaseModel):
    """
    Everything parsed out of one uploaded file.

    Lives only for the preview step; an import run consumes it and the
    session drops it.
    """
    model_config = ConfigDict(frozen=True)

    filename: str
    file_kind: FileKind
    expenses: tuple[RawExpenseRow, ...] = ()
    categories: tuple[RawCategoryRow, ...] = ()
    errors: tuple[RowError, ...] = ()

    @property
    def category_labels(self) -> list[str]:
        """Distinct non-blank category labels in order of first appearance."""
        seen: dict[str, None] = {}
        for row in self.expenses:
            if not row.has_blank_category:
                seen.setdefault(row.category, None)
        return list(seen)

    @property
    def blank_category_rows(self) -> list[int]:
        return [
            row.row_number for row in self.expenses
            if row.has_blank_category and not row.read_error
        ]

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level parse issues."""
        return any(not error.is_warning for error in self.errors)

    def error_preview(self, limit: int) -> tuple[list[RowError], int]:
        """
        Cap the parse-error list for display.

        Returns:
            (errors_to_show, number_not_shown)
        """
        shown = list(self.errors[:limit])
        return shown, len(self.errors) - len(shown)


# =============================================================================
# MATCHING AND IMPORT
# =============================================================================

class CategoryMapping(BaseModel):
    """How one raw label from the file resolves against existing categories."""
    model_config = ConfigDict(frozen=True)

    original: str = Field(..., description="Label as it appears in the file")
    normalized: str = Field(..., description="Trimmed, case-folded label")
    matched: Optional[Category] = None

    @property
    def will_create(self) -> bool:
        """Unmatched labels are created on import when auto-create is on."""
        return self.matched is None


class ImportOptions(BaseModel):
    """
    User-selected import options.

    Editable only during preview; a run takes a copy and never changes it.
    """
    model_config = ConfigDict(frozen=True)

    auto_create_categories: bool = False
    conflict_strategy: ConflictStrategy = ConflictStrategy.IMPORT_AS_NEW
    preserve_ids: bool = False


class ImportResult(BaseModel):
    """
    Outcome of one completed import run. Created once, never mutated.

    success + skipped + failed always equals the number of expense rows.
    """
    model_config = ConfigDict(frozen=True)

    success: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    updated: int = Field(
        default=0,
        ge=0,
        description="Rows that overwrote an existing record (counted in success)"
    )
    errors: tuple[RowError, ...] = Field(
        default=(),
        description="One entry per failed expense row, in row order"
    )
    warnings: tuple[RowError, ...] = Field(
        default=(),
        description="Non-blocking issues such as blank categories"
    )
    categories_created: tuple[Category, ...] = ()
    started_at: dt.datetime = Field(default_factory=_utcnow)
    completed_at: dt.datetime = Field(default_factory=_utcnow)

    @field_validator('errors')
    @classmethod
    def sort_errors(cls, v: tuple[RowError, ...]) -> tuple[RowError, ...]:
        return tuple(sorted(v, key=lambda error: error.row))

    @property
    def total(self) -> int:
        return self.success + self.skipped + self.failed

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class ProgressEvent(BaseModel):
    """
    One progress report from an import run.

    The last event of a run has phase COMPLETE and carries the result.
    """
    model_config = ConfigDict(frozen=True)

    phase: ProgressPhase
    current: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    message: str
    result: Optional[ImportResult] = None

    @property
    def fraction(self) -> float:
        """Completion ratio for progress bars (1.0 for empty runs)."""
        if self.total == 0:
            return 1.0
        return min(1.0, self.current / self.total)


class ImportPreview(BaseModel):
    """What the preview step shows before the user starts an import."""
    model_config = ConfigDict(frozen=True)

    filename: str
    file_kind: FileKind
    total_rows: int = Field(..., ge=0)
    category_rows: int = Field(default=0, ge=0)
    parse_errors: tuple[RowError, ...] = ()
    more_parse_errors: int = Field(
        default=0,
        ge=0,
        description="Parse errors not listed in parse_errors"
    )
    blank_category_rows: tuple[int, ...] = ()
    mappings: dict[str, CategoryMapping] = Field(default_factory=dict)
    rows: tuple[RawExpenseRow, ...] = ()
    options: ImportOptions

    @property
    def unmatched_labels(self) -> list[str]:
        return [label for label, mapping in self.mappings.items() if mapping.will_create]

    @property
    def can_import_without_auto_create(self) -> bool:
        return not self.unmatched_labels
