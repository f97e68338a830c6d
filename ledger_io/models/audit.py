"""
Audit Models for Ledger IO

Every significant step of an import or export is logged for audit purposes.
This provides:
1. Traceability of what each import run did to the ledger
2. Debugging information when a file or the store misbehaves
3. A history the user can inspect after a background run

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step in the import/export pipeline has its own event type.
    """
    # Upload and parsing
    FILE_UPLOADED = "file_uploaded"
    FILE_PARSED = "file_parsed"
    FILE_REJECTED = "file_rejected"

    # Import run
    IMPORT_STARTED = "import_started"
    CATEGORY_CREATED = "category_created"
    IMPORT_COMPLETED = "import_completed"
    IMPORT_FAILED = "import_failed"

    # Exports
    ERROR_REPORT_EXPORTED = "error_report_exported"
    LEDGER_EXPORTED = "ledger_exported"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - which user and which run is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the ledger the event touched"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'file', 'import', 'category')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one import session)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    # Additional data (event-specific)
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_message: Optional[str] = None

    # User action tracking
    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.file_uploaded(user_id, filename, size, correlation_id)
        event = AuditEventBuilder.import_completed(user_id, result_counts, correlation_id)
    """

    @staticmethod
    def file_uploaded(
        user_id: str,
        filename: str,
        file_size: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FILE_UPLOADED,
            user_id=user_id,
            entity_type="file",
            entity_id=filename,
            correlation_id=correlation_id,
            description=f"File uploaded: {filename}",
            details={
                "filename": filename,
                "file_size_bytes": file_size,
            },
            is_user_action=True,
        )

    @staticmethod
    def file_parsed(
        user_id: str,
        filename: str,
        expense_rows: int,
        category_rows: int,
        parse_errors: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FILE_PARSED,
            severity=AuditSeverity.WARNING if parse_errors else AuditSeverity.INFO,
            user_id=user_id,
            entity_type="file",
            entity_id=filename,
            correlation_id=correlation_id,
            description=f"Parsed {expense_rows} expense rows from {filename}",
            details={
                "expense_rows": expense_rows,
                "category_rows": category_rows,
                "parse_errors": parse_errors,
            },
        )

    @staticmethod
    def file_rejected(
        user_id: str,
        filename: str,
        reason: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FILE_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="file",
            entity_id=filename,
            correlation_id=correlation_id,
            description=f"File rejected: {filename}",
            error_message=reason,
        )

    @staticmethod
    def import_started(
        user_id: str,
        total_rows: int,
        options: dict,
        correlation_id: Optional[UUID]
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_STARTED,
            user_id=user_id,
            entity_type="import",
            correlation_id=correlation_id,
            description=f"Import started for {total_rows} rows",
            details={
                "total_rows": total_rows,
                "options": options,
            },
            is_user_action=True,
        )

    @staticmethod
    def category_created(
        user_id: str,
        category_id: str,
        name: str,
        correlation_id: Optional[UUID]
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_CREATED,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            correlation_id=correlation_id,
            description=f"Category auto-created during import: {name}",
            details={
                "name": name,
            },
        )

    @staticmethod
    def import_completed(
        user_id: str,
        success: int,
        skipped: int,
        failed: int,
        correlation_id: Optional[UUID]
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            user_id=user_id,
            entity_type="import",
            correlation_id=correlation_id,
            description=(
                f"Import completed: {success} imported, {skipped} skipped, {failed} failed"
            ),
            details={
                "success": success,
                "skipped": skipped,
                "failed": failed,
            },
        )

    @staticmethod
    def import_failed(
        user_id: str,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID]
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="import",
            correlation_id=correlation_id,
            description=f"Import failed: {error_type}",
            error_message=error_message,
        )

    @staticmethod
    def error_report_exported(
        user_id: str,
        filename: str,
        error_count: int,
        correlation_id: Optional[UUID]
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ERROR_REPORT_EXPORTED,
            user_id=user_id,
            entity_type="file",
            entity_id=filename,
            correlation_id=correlation_id,
            description=f"Error report exported with {error_count} rows",
            details={
                "error_count": error_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def ledger_exported(
        user_id: str,
        filename: str,
        expense_count: int,
        category_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_EXPORTED,
            user_id=user_id,
            entity_type="file",
            entity_id=filename,
            description=f"Ledger exported to {filename}",
            details={
                "expense_count": expense_count,
                "category_count": category_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID]
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
