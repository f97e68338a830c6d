"""
Error Reporter

Serializes the row errors of an import run into a downloadable CSV so the
user can fix the source file offline.

The file has exactly two columns, `row` and `message`, one line per error
in the order given. Quoting of commas, quotes and newlines in messages is
left to pandas. A message that a spreadsheet would read as a formula gets
a leading apostrophe.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

import pandas as pd
import structlog

from ledger_io.models.ledger import RowError

logger = structlog.get_logger(__name__)

ERROR_REPORT_COLUMNS = ["row", "message"]

FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


class ExportError(Exception):
    """Raised when an export file cannot be produced."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


def error_report_filename(now: Optional[datetime] = None) -> str:
    """Filename for an error report, e.g. import-errors-20240115-093000.csv."""
    now = now or datetime.now(timezone.utc)
    return f"import-errors-{now.strftime('%Y%m%d-%H%M%S')}.csv"


def escape_formula(text: str) -> str:
    """Make a cell value render as text when the CSV is opened in a spreadsheet."""
    if text.startswith(FORMULA_PREFIXES):
        return "'" + text
    return text


def export_errors_to_csv(errors: Iterable[RowError]) -> bytes:
    """
    Build the error report CSV.

    Args:
        errors: Row errors, already in the order they should appear

    Returns:
        UTF-8 encoded CSV with a `row,message` header
    """
    frame = pd.DataFrame(
        [{"row": error.row, "message": escape_formula(error.message)} for error in errors],
        columns=ERROR_REPORT_COLUMNS,
    )
    logger.debug("error_report_built", rows=len(frame))
    return frame.to_csv(index=False, lineterminator="\n").encode("utf-8")
