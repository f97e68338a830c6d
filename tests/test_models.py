"""
Tests for Ledger IO models

Test strategy:
1. Unit tests for individual components (models, validators, settings)
2. Flow tests run against the in-memory ledger (see test_session.py)
3. No real API calls in tests
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from ledger_io.config import ImportSettings
from ledger_io.models.ledger import (
    Category,
    CategoryMapping,
    ConflictStrategy,
    Expense,
    FileKind,
    ImportOptions,
    ImportResult,
    IssueKind,
    ParsedData,
    ProgressEvent,
    ProgressPhase,
    RawExpenseRow,
    RowError,
)
from ledger_io.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from ledger_io.validation import ExpenseRowValidator


class TestLedgerModels:
    """Tests for ledger entity models."""

    def test_category_strips_whitespace(self):
        """Test that whitespace is stripped from category names."""
        category = Category(user_id="u1", name="  Shopping  ")
        assert category.name == "Shopping"
        assert category.color == "#95A5A6"

    def test_expense_rejects_zero_amount(self):
        """Test that non-positive amounts are rejected."""
        with pytest.raises(ValueError):
            Expense(
                user_id="u1",
                date=date(2024, 1, 15),
                description="Coffee",
                category="Food",
                amount=Decimal("0"),
            )

    def test_expense_ids_are_unique(self):
        """Test that every new expense gets its own ID."""
        values = dict(
            user_id="u1",
            date=date(2024, 1, 15),
            description="Coffee",
            category="Food",
            amount=Decimal("4.50"),
        )
        assert Expense(**values).id != Expense(**values).id


class TestParserModels:
    """Tests for parser output models."""

    def test_raw_row_parsed_date(self):
        """Test that only ISO text counts as a parsed date."""
        assert RawExpenseRow(row_number=2, date="2024-01-15").parsed_date == date(2024, 1, 15)
        assert RawExpenseRow(row_number=2, date="bad").parsed_date is None

    def test_raw_row_only_accepts_canonical_date_text(self):
        """Test that ISO variants the parser rejects stay rejected."""
        for text in ("20240115", "2024-W03-1", "2024-01-15T10:00", "2024-02-30"):
            assert RawExpenseRow(row_number=2, date=text).parsed_date is None

    def test_raw_row_is_frozen(self):
        """Test that parsed rows cannot be edited."""
        row = RawExpenseRow(row_number=2, description="Coffee")
        with pytest.raises(ValueError):
            row.description = "Tea"

    def test_raw_row_number_starts_after_header(self):
        """Test that row 1 is reserved for the header."""
        with pytest.raises(ValueError):
            RawExpenseRow(row_number=1)

    def test_category_labels_distinct_in_order(self):
        """Test label extraction for the matcher."""
        parsed = ParsedData(
            filename="f.csv",
            file_kind=FileKind.CSV,
            expenses=[
                RawExpenseRow(row_number=2, category="Rent"),
                RawExpenseRow(row_number=3, category="Food"),
                RawExpenseRow(row_number=4, category="Rent"),
                RawExpenseRow(row_number=5, category=" "),
            ],
        )
        assert parsed.category_labels == ["Rent", "Food"]
        assert parsed.blank_category_rows == [5]

    def test_error_preview_caps_list(self):
        """Test the capped parse-error list."""
        parsed = ParsedData(
            filename="f.csv",
            file_kind=FileKind.CSV,
            errors=[
                RowError(row=n, message="Missing date", kind=IssueKind.PARSE)
                for n in range(2, 9)
            ],
        )
        shown, remaining = parsed.error_preview(5)
        assert [e.row for e in shown] == [2, 3, 4, 5, 6]
        assert remaining == 2

    def test_row_error_severity(self):
        """Test that only error and warning severities are accepted."""
        warning = RowError(row=2, message="Blank", kind=IssueKind.PARSE, severity="warning")
        assert warning.is_warning is True
        with pytest.raises(ValueError):
            RowError(row=2, message="x", kind=IssueKind.PARSE, severity="info")


class TestImportModels:
    """Tests for import options, results and progress."""

    def test_default_options(self):
        """Test the safe defaults."""
        options = ImportOptions()
        assert options.auto_create_categories is False
        assert options.conflict_strategy == ConflictStrategy.IMPORT_AS_NEW
        assert options.preserve_ids is False

    def test_strategy_values(self):
        """Test conflict strategy string values."""
        assert ConflictStrategy("skip-duplicates") is ConflictStrategy.SKIP_DUPLICATES
        assert ConflictStrategy.OVERWRITE.detects_duplicates is True
        assert ConflictStrategy.IMPORT_AS_NEW.detects_duplicates is False

    def test_result_sorts_errors(self):
        """Test that result errors are kept in row order."""
        result = ImportResult(
            success=1,
            failed=2,
            errors=[
                RowError(row=9, message="b", kind=IssueKind.STORAGE),
                RowError(row=3, message="a", kind=IssueKind.VALIDATION),
            ],
        )
        assert [e.row for e in result.errors] == [3, 9]
        assert result.total == 3
        assert result.has_errors is True

    def test_mapping_will_create(self):
        """Test that unmatched mappings are creation candidates."""
        mapping = CategoryMapping(original="Gadgets", normalized="gadgets")
        assert mapping.will_create is True

    def test_progress_fraction(self):
        """Test progress ratio, including empty runs."""
        event = ProgressEvent(phase=ProgressPhase.EXPENSES, current=1, total=4, message="x")
        assert event.fraction == 0.25
        empty = ProgressEvent(phase=ProgressPhase.COMPLETE, current=0, total=0, message="x")
        assert empty.fraction == 1.0


class TestRowValidator:
    """Tests for import-time business rules."""

    def test_valid_row(self):
        row = RawExpenseRow(
            row_number=2, date="2024-01-15", description="Coffee",
            category="Food", amount=Decimal("4.50"), amount_text="4.50",
        )
        assert ExpenseRowValidator().validate(row) == []

    def test_negative_amount_and_blank_description(self):
        row = RawExpenseRow(
            row_number=7, date="2024-01-15", description=" ",
            category="Food", amount=Decimal("-1"), amount_text="-1",
        )
        errors = ExpenseRowValidator().validate(row)
        assert [e.row for e in errors] == [7, 7]
        assert all(e.kind == IssueKind.VALIDATION for e in errors)
        assert "greater than zero" in errors[0].message
        assert errors[1].message == "Description is required"

    def test_unreadable_row_fails_with_its_reason(self):
        row = RawExpenseRow(
            row_number=3, date="2024-01-16", description="Coffee",
            category="Food", amount=Decimal("5"), amount_text="5",
            read_error="Row has 7 fields but the header has 6",
        )
        [error] = ExpenseRowValidator().validate(row)
        assert error.row == 3
        assert error.message == "Row has 7 fields but the header has 6"

    def test_compact_date_text_fails(self):
        row = RawExpenseRow(
            row_number=2, date="20240115", description="Coffee",
            category="Food", amount=Decimal("4.50"), amount_text="4.50",
        )
        [error] = ExpenseRowValidator().validate(row)
        assert error.message.startswith("Invalid date '20240115'")

    def test_summary_lists_rows(self):
        summary = ExpenseRowValidator().get_user_friendly_summary([
            RowError(row=4, message="Missing amount", kind=IssueKind.PARSE),
        ])
        assert "Row 4: Missing amount" in summary


class TestSettings:
    """Tests for import settings."""

    def test_duplicate_fields_normalized(self):
        settings = ImportSettings(duplicate_fields=" Date, description ,AMOUNT,notes")
        assert settings.duplicate_fields_list == ["date", "description", "amount", "notes"]

    def test_unknown_duplicate_field_rejected(self):
        with pytest.raises(ValueError):
            ImportSettings(duplicate_fields="date,merchant")

    def test_upload_limit_in_bytes(self):
        assert ImportSettings(max_upload_size_mb=2).max_upload_size_bytes == 2 * 1024 * 1024


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.IMPORT_COMPLETED,
            description="Import completed",
            details={"success": 3},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "import_completed"
        assert log_dict["details"]["success"] == 3

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.FILE_UPLOADED,
            user_id="u1",
            description="File uploaded",
            is_user_action=True,
        )
        row = event.to_sheets_row()
        assert len(row) == 12  # Expected number of columns
        assert row[2] == "file_uploaded"  # event_type
        assert row[4] == "u1"  # user_id
        assert row[11] == "True"  # is_user_action

    def test_audit_event_builder_file_uploaded(self):
        """Test AuditEventBuilder.file_uploaded."""
        correlation_id = uuid4()

        event = AuditEventBuilder.file_uploaded(
            user_id="u1",
            filename="ledger.xlsx",
            file_size=1024,
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.FILE_UPLOADED
        assert event.entity_id == "ledger.xlsx"
        assert event.correlation_id == correlation_id
        assert event.is_user_action is True

    def test_audit_event_builder_import_completed_with_failures(self):
        """Test that failed rows raise the event severity."""
        event = AuditEventBuilder.import_completed(
            user_id="u1",
            success=8,
            skipped=0,
            failed=2,
            correlation_id=uuid4(),
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.details == {"success": 8, "skipped": 0, "failed": 2}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
