"""
Import pipeline: parse an upload, match its categories, write its rows.
"""

from ledger_io.importing.errors import (
    FileTooLargeError,
    ImportFatalError,
    InvalidSessionStateError,
    MissingColumnsError,
    MissingSheetError,
    StorageUnavailableError,
    UnreadableFileError,
    UnsupportedFileError,
)
from ledger_io.importing.importer import (
    DuplicateComparator,
    ExpenseImporter,
    ImportRunState,
)
from ledger_io.importing.matcher import (
    index_categories,
    match_categories,
    normalize_label,
)
from ledger_io.importing.parser import (
    detect_file_kind,
    parse_amount_cell,
    parse_date_cell,
    parse_file,
    parse_uploaded_file,
)

__all__ = [
    # Errors
    "FileTooLargeError",
    "ImportFatalError",
    "InvalidSessionStateError",
    "MissingColumnsError",
    "MissingSheetError",
    "StorageUnavailableError",
    "UnreadableFileError",
    "UnsupportedFileError",
    # Parser
    "detect_file_kind",
    "parse_amount_cell",
    "parse_date_cell",
    "parse_file",
    "parse_uploaded_file",
    # Matcher
    "index_categories",
    "match_categories",
    "normalize_label",
    # Importer
    "DuplicateComparator",
    "ExpenseImporter",
    "ImportRunState",
]
