"""Row validation package."""

from ledger_io.validation.validator import ExpenseRowValidator

__all__ = ["ExpenseRowValidator"]
