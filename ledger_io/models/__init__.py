"""
Data Models Package

This package contains all Pydantic models used by Ledger IO.
All data flowing through the import/export pipeline must conform to these schemas.
"""

from ledger_io.models.ledger import (
    Category,
    CategoryMapping,
    ConflictStrategy,
    Expense,
    FileKind,
    ImportOptions,
    ImportPreview,
    ImportResult,
    ImportSessionState,
    IssueKind,
    ParsedData,
    ProgressEvent,
    ProgressPhase,
    RawCategoryRow,
    RawExpenseRow,
    RowError,
    new_record_id,
)
from ledger_io.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Category",
    "CategoryMapping",
    "ConflictStrategy",
    "Expense",
    "FileKind",
    "ImportOptions",
    "ImportPreview",
    "ImportResult",
    "ImportSessionState",
    "IssueKind",
    "ParsedData",
    "ProgressEvent",
    "ProgressPhase",
    "RawCategoryRow",
    "RawExpenseRow",
    "RowError",
    "new_record_id",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
