"""
Tests for the import session state machine and export flow.
"""

import asyncio

import pytest

from ledger_io.audit import AuditLogger
from ledger_io.config import ImportSettings
from ledger_io.importing import (
    InvalidSessionStateError,
    StorageUnavailableError,
    UnsupportedFileError,
)
from ledger_io.models.audit import AuditEvent, AuditEventType
from ledger_io.models.ledger import ConflictStrategy, ImportSessionState
from ledger_io.orchestrator import ImportSession, LedgerExportFlow, create_app_components
from ledger_io.services.storage import AuditStorageInterface, InMemoryLedgerStorage

from conftest import EXPENSE_HEADER, USER_ID, FlakyLedgerStorage


class RecordingAuditStorage(AuditStorageInterface):
    """Keeps audit events in a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True


@pytest.fixture
def session_settings() -> ImportSettings:
    return ImportSettings(parse_error_preview_limit=2, preview_row_limit=2)


@pytest.fixture
def ledger_file(make_workbook) -> bytes:
    return make_workbook({
        "expenses": [
            EXPENSE_HEADER,
            [None, "2024-01-15", "Coffee", "Food & Dining", 4.5, None],
            [None, "2024-01-16", "Phone", "Gadgets", 300, None],
            [None, "bad", "Cake", "Food & Dining", 3, None],
            [None, "2024-01-17", "Lunch", "Food & Dining", "abc", None],
            [None, "2024-01-18", "Misc", None, 2, None],
        ],
    })


@pytest.fixture
def session(storage, session_settings) -> ImportSession:
    return ImportSession(USER_ID, storage, settings=session_settings)


class TestPreview:
    """Tests for loading a file into preview."""

    def test_load_file_builds_preview(self, session, ledger_file):
        preview = asyncio.run(session.load_file("ledger.xlsx", ledger_file))

        assert session.state == ImportSessionState.PREVIEW
        assert preview.total_rows == 5
        assert len(preview.rows) == 2
        assert len(preview.parse_errors) == 2
        assert preview.more_parse_errors == 1
        assert preview.blank_category_rows == (6,)
        assert preview.mappings["Food & Dining"].matched is not None
        assert preview.unmatched_labels == ["Gadgets"]
        assert preview.can_import_without_auto_create is False

    def test_set_options_updates_preview(self, session, ledger_file):
        asyncio.run(session.load_file("ledger.xlsx", ledger_file))

        options = session.set_options(
            auto_create_categories=True,
            conflict_strategy="skip-duplicates",
        )

        assert options.auto_create_categories is True
        assert options.conflict_strategy == ConflictStrategy.SKIP_DUPLICATES
        assert session.preview.options == options

    def test_set_options_rejects_unknown_names(self, session, ledger_file):
        asyncio.run(session.load_file("ledger.xlsx", ledger_file))

        with pytest.raises(ValueError):
            session.set_options(dry_run=True)

    def test_cancel_discards_file(self, session, ledger_file):
        asyncio.run(session.load_file("ledger.xlsx", ledger_file))

        session.cancel()

        assert session.state == ImportSessionState.IDLE
        assert session.preview is None

    def test_rejected_file_fails_session(self, session):
        with pytest.raises(UnsupportedFileError):
            asyncio.run(session.load_file("ledger.pdf", b"%PDF"))

        assert session.state == ImportSessionState.FAILED
        assert isinstance(session.error, UnsupportedFileError)

        session.reset()
        assert session.state == ImportSessionState.IDLE
        assert session.error is None


class TestStateGuards:
    """Tests that operations are refused in the wrong state."""

    def test_options_only_in_preview(self, session):
        with pytest.raises(InvalidSessionStateError):
            session.set_options(auto_create_categories=True)

    def test_import_requires_preview(self, session):
        with pytest.raises(InvalidSessionStateError):
            asyncio.run(session.run_import())

    def test_no_second_upload_during_preview(self, session, ledger_file):
        asyncio.run(session.load_file("ledger.xlsx", ledger_file))

        with pytest.raises(InvalidSessionStateError):
            asyncio.run(session.load_file("ledger.xlsx", ledger_file))

    def test_errors_only_after_completion(self, session):
        with pytest.raises(InvalidSessionStateError):
            asyncio.run(session.export_errors())


class TestRun:
    """Tests for running an import through the session."""

    def test_run_import_completes(self, session, storage, ledger_file):
        asyncio.run(session.load_file("ledger.xlsx", ledger_file))

        result = asyncio.run(session.run_import())

        assert session.state == ImportSessionState.COMPLETE
        assert session.preview is None
        assert result.success == 2
        assert result.failed == 3
        assert [e.row for e in result.errors] == [3, 4, 5]
        assert len(asyncio.run(storage.list_expenses(USER_ID))) == 2

    def test_export_errors_after_run(self, session, ledger_file):
        asyncio.run(session.load_file("ledger.xlsx", ledger_file))
        asyncio.run(session.run_import())

        filename, content = asyncio.run(session.export_errors())

        assert filename.startswith("import-errors-")
        lines = content.decode("utf-8").splitlines()
        assert lines[0] == "row,message"
        assert [line.split(",", 1)[0] for line in lines[1:]] == ["3", "4", "5"]

    def test_options_frozen_once_importing(self, session, ledger_file):
        async def scenario():
            await session.load_file("ledger.xlsx", ledger_file)
            task = session.start_background()
            assert session.state == ImportSessionState.IMPORTING
            with pytest.raises(InvalidSessionStateError):
                session.set_options(auto_create_categories=True)
            return await task

        result = asyncio.run(scenario())

        assert session.state == ImportSessionState.COMPLETE
        assert result.total == 5

    def test_unreachable_ledger_fails_session(self, ledger_file, session_settings):
        storage = FlakyLedgerStorage(unavailable=True)
        session = ImportSession(USER_ID, storage, settings=session_settings)
        asyncio.run(session.load_file("ledger.xlsx", ledger_file))

        with pytest.raises(StorageUnavailableError):
            asyncio.run(session.run_import())

        assert session.state == ImportSessionState.FAILED
        assert storage.expense_write_calls == 0

    def test_audit_trail_shares_correlation_id(self, storage, session_settings, ledger_file):
        audit_storage = RecordingAuditStorage()
        session = ImportSession(
            USER_ID,
            storage,
            audit_logger=AuditLogger(audit_storage),
            settings=session_settings,
        )

        asyncio.run(session.load_file("ledger.xlsx", ledger_file))
        session.set_options(auto_create_categories=True)
        asyncio.run(session.run_import())

        types = [e.event_type for e in audit_storage.events]
        assert types == [
            AuditEventType.FILE_UPLOADED,
            AuditEventType.FILE_PARSED,
            AuditEventType.IMPORT_STARTED,
            AuditEventType.CATEGORY_CREATED,
            AuditEventType.IMPORT_COMPLETED,
        ]
        assert {e.correlation_id for e in audit_storage.events} == {session.correlation_id}


class TestLedgerExportFlow:
    """Tests for the export flow."""

    def test_workbook_export(self, storage):
        flow = LedgerExportFlow(storage, AuditLogger())

        filename, content = asyncio.run(flow.export_workbook(USER_ID))

        assert filename.startswith("expense-manager-backup-")
        assert content[:2] == b"PK"

    def test_csv_export(self, storage):
        flow = LedgerExportFlow(storage)

        filename, content = asyncio.run(flow.export_csv(USER_ID))

        assert filename.endswith(".csv")
        assert content.startswith(b"Date,Description,Category,Amount,Notes")

    def test_template(self, storage):
        filename, content = LedgerExportFlow(storage).template()

        assert filename.startswith("expenses-template-")
        assert content[:2] == b"PK"


class TestComponents:
    """Tests for component wiring."""

    def test_local_components(self):
        ledger_storage, audit_logger, sheets_client = create_app_components(use_storage=False)

        assert isinstance(ledger_storage, InMemoryLedgerStorage)
        assert isinstance(audit_logger, AuditLogger)
        assert sheets_client is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
