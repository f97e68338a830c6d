"""
Importer

Writes parsed expense rows into the user's ledger.

Flow for one run:
1. Pre-flight: confirm the store is reachable and, when duplicates must be
   detected, load the user's existing expenses. A failure here is fatal and
   nothing is written.
2. Categories sheet (auto-create only): create the categories the file
   declares that the user does not have yet.
3. Expense rows, strictly one after another in file order:
   validate -> resolve category -> resolve conflicts -> write.
   A problem with one row is recorded against its row number and the run
   moves on to the next row.
4. Report progress as a stream of ProgressEvent values; the last event
   carries the ImportResult.

DESIGN DECISION: All bookkeeping of a run (categories created so far,
records seen so far, counters) lives in an ImportRunState created for that
run and passed explicitly through the loop. Two runs never share it.
"""

import asyncio
import datetime as dt
from decimal import Decimal
from typing import AsyncIterator, Callable, Iterable, Optional, Sequence
from uuid import UUID

import structlog
from pydantic import ValidationError

from ledger_io.audit import AuditLogger
from ledger_io.config import ImportSettings, get_settings
from ledger_io.importing.errors import StorageUnavailableError
from ledger_io.importing.matcher import index_categories, normalize_label
from ledger_io.models.ledger import (
    Category,
    ConflictStrategy,
    Expense,
    ImportOptions,
    ImportResult,
    IssueKind,
    ProgressEvent,
    ProgressPhase,
    RawCategoryRow,
    RawExpenseRow,
    RowError,
    new_record_id,
)
from ledger_io.services.storage import (
    DuplicateError,
    LedgerStorageInterface,
    StorageError,
)
from ledger_io.validation import ExpenseRowValidator

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int, int, str], None]

_CENT = Decimal("0.01")


class DuplicateComparator:
    """
    Builds the identity key used to decide that two expenses are the same.

    The default key is (date, description, amount). `notes` and `category`
    can be added through ImportSettings.duplicate_fields. Text is compared
    with whitespace collapsed and case folded; amounts are compared to the
    cent.
    """

    SUPPORTED_FIELDS = ("date", "description", "amount", "notes", "category")

    def __init__(self, fields: Sequence[str] = ("date", "description", "amount")):
        fields = tuple(field.strip().lower() for field in fields)
        unknown = [field for field in fields if field not in self.SUPPORTED_FIELDS]
        if not fields or unknown:
            raise ValueError(f"Unsupported duplicate fields: {unknown or 'none given'}")
        self.fields = fields

    @staticmethod
    def _text(value: Optional[str]) -> str:
        return " ".join((value or "").split()).casefold()

    def key(self, expense: Expense) -> tuple:
        parts = []
        for field in self.fields:
            if field == "date":
                parts.append(expense.date.isoformat())
            elif field == "amount":
                parts.append(expense.amount.quantize(_CENT))
            elif field == "category":
                parts.append(normalize_label(expense.category))
            else:
                parts.append(self._text(getattr(expense, field)))
        return tuple(parts)


class ImportRunState:
    """
    Bookkeeping for exactly one import run.

    Holds the category index (existing plus created this run), the records
    known to the ledger for duplicate detection, and the running counters.
    """

    def __init__(
        self,
        categories: Iterable[Category],
        existing_expenses: Iterable[Expense],
        comparator: DuplicateComparator,
    ):
        self.categories_by_key = index_categories(categories)
        self.created_categories: list[Category] = []
        self.failed_category_keys: dict[str, str] = {}

        self._comparator = comparator
        self._expenses_by_key: dict[tuple, Expense] = {}
        self._expenses_by_id: dict[str, Expense] = {}
        for expense in existing_expenses:
            self.remember(expense)

        self.success = 0
        self.skipped = 0
        self.failed = 0
        self.updated = 0
        self.errors: list[RowError] = []
        self.warnings: list[RowError] = []
        self.started_at = dt.datetime.now(dt.timezone.utc)

    def remember(self, expense: Expense) -> None:
        self._expenses_by_key.setdefault(self._comparator.key(expense), expense)
        self._expenses_by_id[expense.id] = expense

    def replace(self, previous: Expense, current: Expense) -> None:
        key = self._comparator.key(previous)
        if self._expenses_by_key.get(key) is previous:
            del self._expenses_by_key[key]
        self._expenses_by_id.pop(previous.id, None)
        self.remember(current)

    def find_duplicate(self, expense: Expense, match_id: bool) -> Optional[Expense]:
        if match_id and expense.id in self._expenses_by_id:
            return self._expenses_by_id[expense.id]
        return self._expenses_by_key.get(self._comparator.key(expense))

    def fail(self, row: RawExpenseRow, message: str, kind: IssueKind) -> None:
        self.failed += 1
        self.errors.append(RowError(row=row.row_number, message=message, kind=kind))
        logger.debug("import_row_failed", row=row.row_number, kind=kind.value, message=message)

    def to_result(self) -> ImportResult:
        return ImportResult(
            success=self.success,
            skipped=self.skipped,
            failed=self.failed,
            updated=self.updated,
            errors=self.errors,
            warnings=self.warnings,
            categories_created=self.created_categories,
            started_at=self.started_at,
        )


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        field = ".".join(str(loc) for loc in detail.get("loc", ())) or "value"
        parts.append(f"{field}: {detail.get('msg', 'invalid')}")
    return "; ".join(parts)


class ExpenseImporter:
    """
    Imports expense rows into one user's ledger.

    Rows are processed sequentially; duplicate detection and category
    auto-creation depend on what earlier rows of the same run did.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[ImportSettings] = None,
        validator: Optional[ExpenseRowValidator] = None,
        comparator: Optional[DuplicateComparator] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().importing
        self._validator = validator or ExpenseRowValidator()
        self._comparator = comparator or DuplicateComparator(
            self._settings.duplicate_fields_list
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def run(
        self,
        user_id: str,
        expense_rows: Sequence[RawExpenseRow],
        category_rows: Sequence[RawCategoryRow],
        existing_categories: Iterable[Category],
        options: ImportOptions,
        correlation_id: Optional[UUID] = None,
    ) -> AsyncIterator[ProgressEvent]:
        """
        Run an import, yielding progress as it goes.

        The final event has phase COMPLETE and carries the ImportResult.

        Raises:
            StorageUnavailableError: If the ledger cannot be reached before
                the first row is attempted
        """
        expense_rows = tuple(expense_rows)
        category_rows = tuple(category_rows)
        state = await self._prepare(user_id, existing_categories, options)

        logger.info(
            "import_started",
            user_id=user_id,
            total_rows=len(expense_rows),
            strategy=options.conflict_strategy.value,
        )
        if self._audit_logger:
            await self._audit_logger.log_import_started(
                user_id=user_id,
                total_rows=len(expense_rows),
                options=options.model_dump(mode="json"),
                correlation_id=correlation_id,
            )

        if options.auto_create_categories and category_rows:
            total_categories = len(category_rows)
            for position, category_row in enumerate(category_rows, start=1):
                await self._create_declared_category(user_id, category_row, state, correlation_id)
                yield ProgressEvent(
                    phase=ProgressPhase.CATEGORIES,
                    current=position,
                    total=total_categories,
                    message=f"Creating categories... ({position}/{total_categories})",
                )

        total = len(expense_rows)
        for position, row in enumerate(expense_rows, start=1):
            await self._process_row(user_id, row, options, state, correlation_id)
            if self._should_report(position, total):
                yield ProgressEvent(
                    phase=ProgressPhase.EXPENSES,
                    current=position,
                    total=total,
                    message=f"Importing expenses... ({position}/{total})",
                )

        result = state.to_result()
        logger.info(
            "import_completed",
            user_id=user_id,
            success=result.success,
            skipped=result.skipped,
            failed=result.failed,
        )
        if self._audit_logger:
            await self._audit_logger.log_import_completed(
                user_id=user_id,
                success=result.success,
                skipped=result.skipped,
                failed=result.failed,
                correlation_id=correlation_id,
            )

        yield ProgressEvent(
            phase=ProgressPhase.COMPLETE,
            current=total,
            total=total,
            message=f"Import complete ({total}/{total})",
            result=result,
        )

    async def import_data(
        self,
        user_id: str,
        expense_rows: Sequence[RawExpenseRow],
        category_rows: Sequence[RawCategoryRow],
        existing_categories: Iterable[Category],
        options: ImportOptions,
        on_progress: Optional[ProgressCallback] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ImportResult:
        """
        Run an import to completion.

        Args:
            on_progress: Called as on_progress(current, total, message)
                for expense-row and completion events. Categories-sheet
                events count a different total and are not forwarded, so
                `current / total` never moves backwards.

        Returns:
            The ImportResult of the run
        """
        result = None
        async for event in self.run(
            user_id,
            expense_rows,
            category_rows,
            existing_categories,
            options,
            correlation_id=correlation_id,
        ):
            if on_progress and event.phase is not ProgressPhase.CATEGORIES:
                on_progress(event.current, event.total, event.message)
            if event.result is not None:
                result = event.result
        return result

    # -------------------------------------------------------------------------
    # Run steps
    # -------------------------------------------------------------------------

    async def _prepare(
        self,
        user_id: str,
        existing_categories: Iterable[Category],
        options: ImportOptions,
    ) -> ImportRunState:
        try:
            await self._storage.check_connection()
            existing_expenses = []
            if options.conflict_strategy.detects_duplicates:
                existing_expenses = await self._storage.list_expenses(user_id)
        except StorageError as e:
            raise StorageUnavailableError(
                "The ledger could not be reached; nothing was imported",
                details={"user_id": user_id, "error": str(e)},
            )

        return ImportRunState(existing_categories, existing_expenses, self._comparator)

    def _should_report(self, position: int, total: int) -> bool:
        if total <= self._settings.progress_every_row_limit:
            return True
        return position % self._settings.progress_batch_size == 0 or position == total

    async def _process_row(
        self,
        user_id: str,
        row: RawExpenseRow,
        options: ImportOptions,
        state: ImportRunState,
        correlation_id: Optional[UUID],
    ) -> None:
        problems = self._validator.validate(row)
        if problems:
            state.fail(row, "; ".join(p.message for p in problems), IssueKind.VALIDATION)
            return

        category_name = await self._resolve_category(user_id, row, options, state, correlation_id)
        if category_name is None:
            return

        strategy = options.conflict_strategy
        keep_id = options.preserve_ids and strategy.detects_duplicates and bool(row.id)
        try:
            expense = Expense(
                id=row.id if keep_id else new_record_id(),
                user_id=user_id,
                date=row.parsed_date,
                description=row.description,
                category=category_name,
                amount=row.amount,
                notes=row.notes,
            )
        except ValidationError as e:
            state.fail(row, _describe_validation_error(e), IssueKind.VALIDATION)
            return

        if strategy.detects_duplicates:
            existing = state.find_duplicate(expense, match_id=keep_id)
            if existing is not None:
                if strategy is ConflictStrategy.SKIP_DUPLICATES:
                    state.skipped += 1
                    return
                replacement = expense.model_copy(
                    update={"id": existing.id, "created_at": existing.created_at}
                )
                written = await self._write(self._storage.update_expense, replacement, row, state)
                if written is not None:
                    state.success += 1
                    state.updated += 1
                    state.replace(existing, written)
                return

        written = await self._write(self._storage.create_expense, expense, row, state)
        if written is not None:
            state.success += 1
            if strategy.detects_duplicates:
                state.remember(written)

    async def _write(
        self,
        operation: Callable,
        expense: Expense,
        row: RawExpenseRow,
        state: ImportRunState,
    ) -> Optional[Expense]:
        """Attempt one write; a failure is recorded against the row."""
        timeout = self._settings.row_write_timeout_seconds
        try:
            return await asyncio.wait_for(operation(expense), timeout=timeout)
        except asyncio.TimeoutError:
            state.fail(row, f"Failed to import: storage write timed out after {timeout:g}s", IssueKind.STORAGE)
        except StorageError as e:
            state.fail(row, f"Failed to import: {e}", IssueKind.STORAGE)
        return None

    async def _resolve_category(
        self,
        user_id: str,
        row: RawExpenseRow,
        options: ImportOptions,
        state: ImportRunState,
        correlation_id: Optional[UUID],
    ) -> Optional[str]:
        """Category name to store for the row, or None if the row failed."""
        if row.has_blank_category:
            label = self._settings.uncategorized_label
            state.warnings.append(self._validator.blank_category_warning(row, label))
            existing = state.categories_by_key.get(normalize_label(label))
            return existing.name if existing else label

        label = row.category.strip()
        key = normalize_label(label)

        category = state.categories_by_key.get(key)
        if category is not None:
            return category.name

        if key in state.failed_category_keys:
            state.fail(row, state.failed_category_keys[key], IssueKind.STORAGE)
            return None

        if not options.auto_create_categories:
            state.fail(
                row,
                f'Category not found: "{label}". Enable auto-create or add this category first.',
                IssueKind.CATEGORY_RESOLUTION,
            )
            return None

        category, message = await self._create_category(user_id, label, None, state, correlation_id)
        if category is None:
            state.fail(row, message, IssueKind.STORAGE)
            return None
        return category.name

    async def _create_declared_category(
        self,
        user_id: str,
        category_row: RawCategoryRow,
        state: ImportRunState,
        correlation_id: Optional[UUID],
    ) -> None:
        name = category_row.name.strip()
        if not name or normalize_label(name) in state.categories_by_key:
            return

        _, message = await self._create_category(
            user_id, name, category_row.color, state, correlation_id
        )
        if message:
            state.warnings.append(RowError(
                row=category_row.row_number,
                message=message,
                kind=IssueKind.STORAGE,
                severity="warning",
                sheet="categories",
            ))

    async def _create_category(
        self,
        user_id: str,
        name: str,
        color: Optional[str],
        state: ImportRunState,
        correlation_id: Optional[UUID],
    ) -> tuple[Optional[Category], Optional[str]]:
        """
        Create a category at most once per normalized name per run.

        Returns:
            (category, None) on success, (None, message) on failure
        """
        key = normalize_label(name)
        timeout = self._settings.row_write_timeout_seconds

        try:
            candidate = Category(
                user_id=user_id,
                name=name,
                color=color or self._settings.default_category_color,
                icon=self._settings.default_category_icon,
            )
        except ValidationError as e:
            message = f'Invalid category "{name}": {_describe_validation_error(e)}'
            state.failed_category_keys[key] = message
            return None, message

        try:
            created = await asyncio.wait_for(
                self._storage.create_category(candidate), timeout=timeout
            )
        except DuplicateError:
            # Created outside this run after the category list was loaded
            found = None
            try:
                found = index_categories(await self._storage.list_categories(user_id)).get(key)
            except StorageError as e:
                logger.warning("category_refresh_failed", user_id=user_id, error=str(e))
            if found is not None:
                state.categories_by_key[key] = found
                return found, None
            message = f'Failed to create category "{name}": it already exists'
            state.failed_category_keys[key] = message
            return None, message
        except asyncio.TimeoutError:
            message = f'Failed to create category "{name}": timed out after {timeout:g}s'
            state.failed_category_keys[key] = message
            return None, message
        except StorageError as e:
            message = f'Failed to create category "{name}": {e}'
            state.failed_category_keys[key] = message
            return None, message

        state.categories_by_key[key] = created
        state.created_categories.append(created)
        logger.info("category_created", user_id=user_id, category_id=created.id, name=created.name)
        if self._audit_logger:
            await self._audit_logger.log_category_created(
                user_id=user_id,
                category_id=created.id,
                name=created.name,
                correlation_id=correlation_id,
            )
        return created, None
