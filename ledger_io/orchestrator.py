"""
Main Orchestrator for Ledger IO

This module ties the components together and defines the end-to-end flows
for:
1. Bulk import (upload -> parse -> preview -> options -> import -> report)
2. Ledger export (backup workbook, CSV, import template)

DESIGN DECISION: An import is driven by an ImportSession, a small state
machine:

    idle -> preview -> importing -> complete
    any fatal error -> failed

- Nothing is written to the ledger before the user starts the import
  from the preview
- Options can only change during preview; a run takes a frozen copy
- Parsed rows and mappings are dropped as soon as a run starts
- Every step is audited under one correlation ID per uploaded file
"""

import asyncio
from typing import Optional
from uuid import UUID

import structlog

from ledger_io.audit import AuditLogger, create_correlation_id
from ledger_io.config import ImportSettings, get_settings
from ledger_io.exporting import (
    backup_filename,
    build_import_template,
    error_report_filename,
    expenses_csv_filename,
    export_errors_to_csv,
    export_expenses_to_csv,
    export_ledger_to_excel,
    template_filename,
)
from ledger_io.importing import (
    ExpenseImporter,
    ImportFatalError,
    InvalidSessionStateError,
    StorageUnavailableError,
    match_categories,
    parse_uploaded_file,
)
from ledger_io.importing.importer import ProgressCallback
from ledger_io.models.ledger import (
    Category,
    ImportOptions,
    ImportPreview,
    ImportResult,
    ImportSessionState,
    ParsedData,
)
from ledger_io.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    StorageError,
)

logger = structlog.get_logger(__name__)


class ImportSession:
    """
    Orchestrates one user's bulk import.

    Flow:
    1. load_file  -> parse the upload, match categories, build the preview
    2. set_options -> adjust auto-create, conflict strategy, id handling
    3. run_import -> write the rows, reporting progress
    4. export_errors -> download the failed rows as CSV
    5. reset -> ready for the next file

    Only one run can be active per session.
    """

    def __init__(
        self,
        user_id: str,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[ImportSettings] = None,
        importer: Optional[ExpenseImporter] = None,
    ):
        self.user_id = user_id
        self._storage = storage
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().importing
        self._importer = importer or ExpenseImporter(
            storage, audit_logger=audit_logger, settings=self._settings
        )

        self._state = ImportSessionState.IDLE
        self._parsed: Optional[ParsedData] = None
        self._existing_categories: list[Category] = []
        self._preview: Optional[ImportPreview] = None
        self._options = ImportOptions()
        self._result: Optional[ImportResult] = None
        self._error: Optional[ImportFatalError] = None
        self._correlation_id: Optional[UUID] = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ImportSessionState:
        return self._state

    @property
    def preview(self) -> Optional[ImportPreview]:
        return self._preview

    @property
    def options(self) -> ImportOptions:
        return self._options

    @property
    def result(self) -> Optional[ImportResult]:
        return self._result

    @property
    def error(self) -> Optional[ImportFatalError]:
        """The fatal error that moved the session to failed, if any."""
        return self._error

    @property
    def correlation_id(self) -> Optional[UUID]:
        return self._correlation_id

    def _require(self, operation: str, *states: ImportSessionState) -> None:
        if self._state not in states:
            raise InvalidSessionStateError(
                f"Cannot {operation} while the session is {self._state.value}"
            )

    def _clear(self) -> None:
        self._parsed = None
        self._existing_categories = []
        self._preview = None
        self._options = ImportOptions()
        self._result = None
        self._error = None

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def load_file(self, filename: str, content: bytes) -> ImportPreview:
        """
        Parse an upload and build its preview.

        Raises:
            ImportFatalError: If the file is rejected or categories cannot
                be loaded. The session moves to failed.
        """
        self._require(
            "load a file",
            ImportSessionState.IDLE,
            ImportSessionState.COMPLETE,
            ImportSessionState.FAILED,
        )
        self._clear()
        self._correlation_id = create_correlation_id()

        if self._audit_logger:
            await self._audit_logger.log_file_uploaded(
                user_id=self.user_id,
                filename=filename,
                file_size=len(content),
                correlation_id=self._correlation_id,
            )

        try:
            parsed = parse_uploaded_file(filename, content, self._settings)
            try:
                existing = await self._storage.list_categories(self.user_id)
            except StorageError as e:
                if self._audit_logger:
                    await self._audit_logger.log_external_service_error(
                        service="ledger_storage",
                        error_message=str(e),
                        correlation_id=self._correlation_id,
                    )
                raise StorageUnavailableError(
                    "Your categories could not be loaded; try again shortly",
                    details={"error": str(e)},
                )
        except ImportFatalError as e:
            self._state = ImportSessionState.FAILED
            self._error = e
            logger.warning("file_rejected", filename=filename, reason=e.message, details=e.details)
            if self._audit_logger:
                await self._audit_logger.log_file_rejected(
                    user_id=self.user_id,
                    filename=filename,
                    reason=e.message,
                    correlation_id=self._correlation_id,
                )
            raise

        self._parsed = parsed
        self._existing_categories = existing
        self._preview = self._build_preview()
        self._state = ImportSessionState.PREVIEW

        if self._audit_logger:
            await self._audit_logger.log_file_parsed(
                user_id=self.user_id,
                filename=filename,
                expense_rows=len(parsed.expenses),
                category_rows=len(parsed.categories),
                parse_errors=len(parsed.errors),
                correlation_id=self._correlation_id,
            )
        return self._preview

    def set_options(self, **changes) -> ImportOptions:
        """
        Change import options. Only allowed during preview.

        Raises:
            InvalidSessionStateError: Outside preview
            ValueError: For unknown option names or invalid values
        """
        self._require("change options", ImportSessionState.PREVIEW)
        unknown = set(changes) - set(ImportOptions.model_fields)
        if unknown:
            raise ValueError(f"Unknown import options: {', '.join(sorted(unknown))}")

        self._options = ImportOptions(**{**self._options.model_dump(), **changes})
        self._preview = self._preview.model_copy(update={"options": self._options})
        return self._options

    def cancel(self) -> None:
        """Leave the preview without importing; parsed data is dropped."""
        self._require("cancel", ImportSessionState.PREVIEW)
        self._clear()
        self._state = ImportSessionState.IDLE

    async def run_import(self, on_progress: Optional[ProgressCallback] = None) -> ImportResult:
        """
        Import the previewed rows.

        Args:
            on_progress: Called as on_progress(current, total, message)

        Raises:
            InvalidSessionStateError: Outside preview
            ImportFatalError: If the ledger is unreachable before the first
                row. The session moves to failed.
        """
        parsed, existing, options = self._begin_import()
        return await self._execute(parsed, existing, options, on_progress)

    def start_background(self, on_progress: Optional[ProgressCallback] = None) -> asyncio.Task:
        """
        Start the import as a task on the running event loop.

        The session is in importing as soon as this returns.
        """
        parsed, existing, options = self._begin_import()
        return asyncio.get_running_loop().create_task(
            self._execute(parsed, existing, options, on_progress)
        )

    async def export_errors(self) -> tuple[str, bytes]:
        """
        Error report of the completed run.

        Returns:
            (filename, csv_bytes)
        """
        self._require("export errors", ImportSessionState.COMPLETE)
        filename = error_report_filename()
        content = export_errors_to_csv(self._result.errors)

        if self._audit_logger:
            await self._audit_logger.log_error_report_exported(
                user_id=self.user_id,
                filename=filename,
                error_count=len(self._result.errors),
                correlation_id=self._correlation_id,
            )
        return filename, content

    def reset(self) -> None:
        """Return to idle after a finished or failed run."""
        self._require("reset", ImportSessionState.COMPLETE, ImportSessionState.FAILED)
        self._clear()
        self._correlation_id = None
        self._state = ImportSessionState.IDLE

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _build_preview(self) -> ImportPreview:
        parsed = self._parsed
        shown, remaining = parsed.error_preview(self._settings.parse_error_preview_limit)
        return ImportPreview(
            filename=parsed.filename,
            file_kind=parsed.file_kind,
            total_rows=len(parsed.expenses),
            category_rows=len(parsed.categories),
            parse_errors=shown,
            more_parse_errors=remaining,
            blank_category_rows=parsed.blank_category_rows,
            mappings=match_categories(parsed.category_labels, self._existing_categories),
            rows=parsed.expenses[: self._settings.preview_row_limit],
            options=self._options,
        )

    def _begin_import(self) -> tuple[ParsedData, list[Category], ImportOptions]:
        self._require("start an import", ImportSessionState.PREVIEW)
        parsed, existing, options = self._parsed, self._existing_categories, self._options
        self._parsed = None
        self._existing_categories = []
        self._preview = None
        self._state = ImportSessionState.IMPORTING
        return parsed, existing, options

    async def _execute(
        self,
        parsed: ParsedData,
        existing: list[Category],
        options: ImportOptions,
        on_progress: Optional[ProgressCallback],
    ) -> ImportResult:
        try:
            result = await self._importer.import_data(
                self.user_id,
                parsed.expenses,
                parsed.categories,
                existing,
                options,
                on_progress=on_progress,
                correlation_id=self._correlation_id,
            )
        except ImportFatalError as e:
            self._state = ImportSessionState.FAILED
            self._error = e
            logger.error("import_failed", user_id=self.user_id, reason=e.message, details=e.details)
            if self._audit_logger:
                await self._audit_logger.log_import_failed(
                    user_id=self.user_id,
                    error_type=type(e).__name__,
                    error_message=e.message,
                    correlation_id=self._correlation_id,
                )
            raise
        except Exception as e:
            self._state = ImportSessionState.FAILED
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    correlation_id=self._correlation_id,
                )
            raise

        self._result = result
        self._state = ImportSessionState.COMPLETE
        return result


class LedgerExportFlow:
    """
    Orchestrates ledger downloads.

    Every method returns (filename, bytes) ready for a download button.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger

    async def export_workbook(self, user_id: str) -> tuple[str, bytes]:
        """Backup workbook of the user's expenses and categories."""
        expenses = await self._storage.list_expenses(user_id)
        categories = await self._storage.list_categories(user_id)
        filename = backup_filename()
        content = export_ledger_to_excel(expenses, categories)

        if self._audit_logger:
            await self._audit_logger.log_ledger_exported(
                user_id=user_id,
                filename=filename,
                expense_count=len(expenses),
                category_count=len(categories),
            )
        return filename, content

    async def export_csv(self, user_id: str) -> tuple[str, bytes]:
        """Flat CSV of the user's expenses."""
        expenses = await self._storage.list_expenses(user_id)
        filename = expenses_csv_filename()
        content = export_expenses_to_csv(expenses)

        if self._audit_logger:
            await self._audit_logger.log_ledger_exported(
                user_id=user_id,
                filename=filename,
                expense_count=len(expenses),
                category_count=0,
            )
        return filename, content

    def template(self) -> tuple[str, bytes]:
        """Empty import template with sample rows."""
        return template_filename(), build_import_template()


def create_app_components(
    use_storage: bool = True,
) -> tuple[LedgerStorageInterface, AuditLogger, Optional[GoogleSheetsClient]]:
    """
    Factory function to create the shared application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run against an in-memory ledger.

    Returns:
        (ledger_storage, audit_logger, sheets_client)
    """
    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            ledger_storage = GoogleSheetsLedgerStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
            return ledger_storage, audit_logger, sheets_client
        except Exception as e:
            # Storage not configured - continue with a local ledger
            logger.warning("storage_not_configured", error=str(e))

    return InMemoryLedgerStorage(), AuditLogger(), None
