"""
Fatal errors of the import pipeline.

Only these are raised. They stop a session before any row is written.
Row-level problems (bad cells, failed validation, unknown categories,
failed writes) are never raised; they are collected as RowError records.
"""

from typing import Any, Dict, Optional


class ImportFatalError(Exception):
    """Base exception for errors that stop an import before it starts."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception.

        Args:
            message: Error message shown to the user
            details: Additional error details for logging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UnsupportedFileError(ImportFatalError):
    """The file extension is not an accepted upload format."""
    pass


class FileTooLargeError(ImportFatalError):
    """The upload exceeds the configured size limit."""
    pass


class UnreadableFileError(ImportFatalError):
    """The file bytes could not be read as a workbook or CSV."""
    pass


class MissingSheetError(ImportFatalError):
    """The workbook has no `expenses` sheet."""
    pass


class MissingColumnsError(ImportFatalError):
    """A required column is absent from the header row."""
    pass


class StorageUnavailableError(ImportFatalError):
    """The ledger store could not be reached before the first row."""
    pass


class InvalidSessionStateError(Exception):
    """An import session operation was called in the wrong state."""
    pass
