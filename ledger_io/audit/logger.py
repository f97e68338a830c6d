"""
Audit Logger

DESIGN DECISION: Every significant step of an import or export is logged.
This provides:
1. Traceability of what each run did to the ledger
2. Debugging capability for malformed files and flaky storage
3. A record the user can consult after a background import finishes

The audit logger:
- Is async to not block main flow
- Never raises when persistence fails (the import must not fail because of it)
- Supports correlation IDs to trace all events of one import session
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger_io.models.audit import AuditEvent, AuditEventBuilder
from ledger_io.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage such as Google Sheets (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_file_uploaded(
        self,
        user_id: str,
        filename: str,
        file_size: int,
        correlation_id: UUID,
    ) -> None:
        """Log file upload event."""
        await self.log(AuditEventBuilder.file_uploaded(
            user_id=user_id,
            filename=filename,
            file_size=file_size,
            correlation_id=correlation_id,
        ))

    async def log_file_parsed(
        self,
        user_id: str,
        filename: str,
        expense_rows: int,
        category_rows: int,
        parse_errors: int,
        correlation_id: UUID,
    ) -> None:
        """Log a successful parse."""
        await self.log(AuditEventBuilder.file_parsed(
            user_id=user_id,
            filename=filename,
            expense_rows=expense_rows,
            category_rows=category_rows,
            parse_errors=parse_errors,
            correlation_id=correlation_id,
        ))

    async def log_file_rejected(
        self,
        user_id: str,
        filename: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        """Log a file that could not be accepted."""
        await self.log(AuditEventBuilder.file_rejected(
            user_id=user_id,
            filename=filename,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_import_started(
        self,
        user_id: str,
        total_rows: int,
        options: dict,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log the start of an import run."""
        await self.log(AuditEventBuilder.import_started(
            user_id=user_id,
            total_rows=total_rows,
            options=options,
            correlation_id=correlation_id,
        ))

    async def log_category_created(
        self,
        user_id: str,
        category_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an auto-created category."""
        await self.log(AuditEventBuilder.category_created(
            user_id=user_id,
            category_id=category_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_import_completed(
        self,
        user_id: str,
        success: int,
        skipped: int,
        failed: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log the outcome of a completed run."""
        await self.log(AuditEventBuilder.import_completed(
            user_id=user_id,
            success=success,
            skipped=skipped,
            failed=failed,
            correlation_id=correlation_id,
        ))

    async def log_import_failed(
        self,
        user_id: str,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a run that stopped on a fatal error."""
        await self.log(AuditEventBuilder.import_failed(
            user_id=user_id,
            error_type=error_type,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error_report_exported(
        self,
        user_id: str,
        filename: str,
        error_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error report download."""
        await self.log(AuditEventBuilder.error_report_exported(
            user_id=user_id,
            filename=filename,
            error_count=error_count,
            correlation_id=correlation_id,
        ))

    async def log_ledger_exported(
        self,
        user_id: str,
        filename: str,
        expense_count: int,
        category_count: int,
    ) -> None:
        """Log a ledger export."""
        await self.log(AuditEventBuilder.ledger_exported(
            user_id=user_id,
            filename=filename,
            expense_count=expense_count,
            category_count=category_count,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a file upload).
    Pass it through all subsequent operations.
    """
    return uuid4()
