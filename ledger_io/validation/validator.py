"""
Row Validation

Business-rule checks applied to each expense row during an import.

The parser already flags cells it could not read; the importer runs these
checks again on every row it is about to write, so a row that reaches the
store always has:
- a valid calendar date
- an amount strictly greater than zero
- a non-blank description

IMPORTANT: Validation NEVER silently fixes issues.
It reports them against the row number for the user to correct.
"""

from typing import Iterable

from ledger_io.models.ledger import IssueKind, RawExpenseRow, RowError


class ExpenseRowValidator:
    """Validates RawExpenseRow records against the ledger's business rules."""

    def validate(self, row: RawExpenseRow) -> list[RowError]:
        """
        Check one row.

        Args:
            row: The row to validate

        Returns:
            Validation errors for the row (empty if valid)
        """
        if row.read_error:
            return [RowError(row=row.row_number, message=row.read_error, kind=IssueKind.VALIDATION)]

        problems = []

        if row.parsed_date is None:
            if row.date.strip():
                problems.append(f"Invalid date '{row.date}': expected a calendar date such as 2024-01-15")
            else:
                problems.append("Missing date")

        if row.amount is None:
            if row.amount_text:
                problems.append(f"Invalid amount '{row.amount_text}': not a number")
            else:
                problems.append("Missing amount")
        elif row.amount <= 0:
            problems.append(f"Amount must be greater than zero (got {row.amount})")

        if not row.description.strip():
            problems.append("Description is required")

        return [
            RowError(row=row.row_number, message=message, kind=IssueKind.VALIDATION)
            for message in problems
        ]

    def blank_category_warning(self, row: RawExpenseRow, label: str) -> RowError:
        """Warning recorded when a blank category falls back to `label`."""
        return RowError(
            row=row.row_number,
            message=f"Category is blank; imported as '{label}'",
            kind=IssueKind.VALIDATION,
            severity="warning",
        )

    def get_user_friendly_summary(self, errors: Iterable[RowError]) -> str:
        """
        Generate a user-friendly summary of row problems.

        This is what the preview and result screens show.
        """
        errors = list(errors)
        hard = [e for e in errors if not e.is_warning]
        warnings = [e for e in errors if e.is_warning]

        if not errors:
            return "✅ All rows passed the checks."

        lines = []
        if hard:
            lines.append(f"❌ {len(hard)} row problem(s) need fixing in the source file:")
            for error in hard:
                lines.append(f"   • Row {error.row}: {error.message}")

        if warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in warnings:
                lines.append(f"   • Row {warning.row}: {warning.message}")

        return "\n".join(lines)
