"""Export package: error reports, ledger backups, templates and CSV."""

from ledger_io.exporting.errors import (
    ExportError,
    error_report_filename,
    export_errors_to_csv,
)
from ledger_io.exporting.workbook import (
    DEFAULT_CATEGORIES,
    backup_filename,
    build_import_template,
    expenses_csv_filename,
    export_expenses_to_csv,
    export_ledger_to_excel,
    template_filename,
)

__all__ = [
    "DEFAULT_CATEGORIES",
    "ExportError",
    "backup_filename",
    "build_import_template",
    "error_report_filename",
    "expenses_csv_filename",
    "export_errors_to_csv",
    "export_expenses_to_csv",
    "export_ledger_to_excel",
    "template_filename",
]
