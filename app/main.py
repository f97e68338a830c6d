"""
Streamlit Frontend for Ledger IO

The screens a user goes through to bring a spreadsheet of expenses into
their ledger, and to take the ledger back out.

DESIGN PRINCIPLES:
1. Show the preview before anything is written
2. Explain every rejected row in plain language, by row number
3. Keep the progress bar moving on large files
4. No hidden actions

The import screen follows the ImportSession states:
- idle: pick a file
- preview: check mappings and choose options
- complete/failed: read the result, download errors, start over
"""

import asyncio

import pandas as pd
import streamlit as st

from ledger_io.config import get_settings, validate_all_settings
from ledger_io.importing import ImportFatalError
from ledger_io.models.ledger import ConflictStrategy, ImportSessionState
from ledger_io.orchestrator import ImportSession, LedgerExportFlow, create_app_components
from ledger_io.services.storage import StorageError
from ledger_io.validation import ExpenseRowValidator


# Page configuration
st.set_page_config(
    page_title="Ledger IO",
    page_icon="📒",
    layout="wide",
    initial_sidebar_state="expanded",
)

STRATEGY_LABELS = {
    ConflictStrategy.IMPORT_AS_NEW: "Import everything as new",
    ConflictStrategy.SKIP_DUPLICATES: "Skip rows that already exist",
    ConflictStrategy.OVERWRITE: "Overwrite rows that already exist",
}


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components():
    """Get or create application components (cached)."""
    return create_app_components(use_storage=True)


def get_session(storage, audit_logger) -> ImportSession:
    """One ImportSession per browser session."""
    if "import_session" not in st.session_state:
        st.session_state.import_session = ImportSession(
            user_id=get_settings().app.default_user_id,
            storage=storage,
            audit_logger=audit_logger,
        )
    return st.session_state.import_session


def main():
    """Main application entry point."""
    storage, audit_logger, sheets_client = get_components()

    st.sidebar.title("📒 Ledger IO")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["📥 Import", "📤 Export", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    st.sidebar.markdown(
        """
        **How to import:**
        1. Download the template or a backup
        2. Fill in the `expenses` sheet
        3. Upload, check the preview, import
        """
    )
    if sheets_client is None:
        st.sidebar.warning("Google Sheets is not configured; using a temporary local ledger.")

    if page == "📥 Import":
        render_import_page(get_session(storage, audit_logger))
    elif page == "📤 Export":
        render_export_page(LedgerExportFlow(storage, audit_logger))
    elif page == "⚙️ Settings":
        render_settings_page()


def render_import_page(session: ImportSession):
    """Render the import page for the session's current state."""
    st.title("📥 Import Expenses")

    if session.state == ImportSessionState.IDLE:
        render_upload_step(session)
    elif session.state == ImportSessionState.PREVIEW:
        render_preview_step(session)
    elif session.state == ImportSessionState.COMPLETE:
        render_result_step(session)
    elif session.state == ImportSessionState.FAILED:
        st.error(f"❌ {session.error.message if session.error else 'The import stopped unexpectedly.'}")
        if st.button("Start over", type="primary"):
            session.reset()
            st.rerun()
    else:
        st.info("An import is running. Please wait.")


def render_upload_step(session: ImportSession):
    settings = get_settings().importing
    st.markdown(
        "Upload an Excel workbook (with an `expenses` sheet and an optional "
        "`categories` sheet) or a CSV file."
    )

    uploaded_file = st.file_uploader(
        "Choose a file",
        type=settings.supported_formats_list,
        help=f"Up to {settings.max_upload_size_mb} MB",
    )

    if uploaded_file and st.button("🔍 Preview", type="primary"):
        with st.spinner("Reading your file..."):
            try:
                run_async(session.load_file(uploaded_file.name, uploaded_file.getvalue()))
            except ImportFatalError:
                pass  # session is now failed and shows the reason
        st.rerun()


def render_preview_step(session: ImportSession):
    preview = session.preview

    col1, col2, col3 = st.columns(3)
    col1.metric("Expense rows", preview.total_rows)
    col2.metric("Category rows", preview.category_rows)
    col3.metric("New categories", len(preview.unmatched_labels))

    if preview.parse_errors:
        with st.expander(f"⚠️ {len(preview.parse_errors) + preview.more_parse_errors} issue(s) found", expanded=True):
            st.text(ExpenseRowValidator().get_user_friendly_summary(preview.parse_errors))
            if preview.more_parse_errors:
                st.caption(f"...and {preview.more_parse_errors} more")

    if preview.blank_category_rows:
        st.info(
            f"{len(preview.blank_category_rows)} row(s) have no category and will be "
            f"imported as '{get_settings().importing.uncategorized_label}'."
        )

    st.markdown("### Categories")
    st.dataframe(
        pd.DataFrame(
            [
                {
                    "In file": label,
                    "Matches": mapping.matched.name if mapping.matched else "—",
                    "Status": "existing" if mapping.matched else "new",
                }
                for label, mapping in preview.mappings.items()
            ],
            columns=["In file", "Matches", "Status"],
        ),
        use_container_width=True,
        hide_index=True,
    )

    st.markdown("### First rows")
    st.dataframe(
        pd.DataFrame(
            [
                {
                    "Row": row.row_number,
                    "Date": row.date,
                    "Description": row.description,
                    "Category": row.category,
                    "Amount": row.amount_text,
                    "Notes": row.notes or "",
                }
                for row in preview.rows
            ]
        ),
        use_container_width=True,
        hide_index=True,
    )

    st.markdown("### Options")
    options = session.options
    auto_create = st.checkbox(
        "Create missing categories automatically",
        value=options.auto_create_categories,
    )
    strategy = st.radio(
        "When a row already exists in the ledger",
        options=list(ConflictStrategy),
        index=list(ConflictStrategy).index(options.conflict_strategy),
        format_func=lambda s: STRATEGY_LABELS[s],
    )
    preserve_ids = st.checkbox(
        "Keep record IDs from the file",
        value=options.preserve_ids,
        help="Use this when re-importing a backup made by this app",
    )
    session.set_options(
        auto_create_categories=auto_create,
        conflict_strategy=strategy,
        preserve_ids=preserve_ids,
    )

    if preview.unmatched_labels and not auto_create:
        st.warning(
            "Rows with these categories will fail unless auto-create is on: "
            + ", ".join(preview.unmatched_labels)
        )

    col1, col2 = st.columns(2)
    with col1:
        if st.button("✅ Import", type="primary"):
            progress_bar = st.progress(0.0)

            def on_progress(current: int, total: int, message: str):
                progress_bar.progress(min(1.0, current / total) if total else 1.0, text=message)

            try:
                run_async(session.run_import(on_progress=on_progress))
            except ImportFatalError:
                pass  # session is now failed and shows the reason
            st.rerun()
    with col2:
        if st.button("Cancel"):
            session.cancel()
            st.rerun()


def render_result_step(session: ImportSession):
    result = session.result

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Imported", result.success)
    col2.metric("Updated", result.updated)
    col3.metric("Skipped", result.skipped)
    col4.metric("Failed", result.failed)

    if result.categories_created:
        st.success(
            "Created categories: " + ", ".join(c.name for c in result.categories_created)
        )

    if result.warnings:
        with st.expander(f"⚠️ {len(result.warnings)} warning(s)"):
            for warning in result.warnings:
                st.markdown(f"- Row {warning.row} ({warning.sheet}): {warning.message}")

    if result.errors:
        st.error(f"{len(result.errors)} row(s) could not be imported.")
        st.dataframe(
            pd.DataFrame(
                [{"Row": e.row, "Problem": e.message} for e in result.errors]
            ),
            use_container_width=True,
            hide_index=True,
        )
        filename, content = run_async(session.export_errors())
        st.download_button(
            "⬇️ Download error report",
            data=content,
            file_name=filename,
            mime="text/csv",
        )
    else:
        st.success("✅ Every row was imported.")

    if st.button("Import another file", type="primary"):
        session.reset()
        st.rerun()


def render_export_page(export_flow: LedgerExportFlow):
    """Render the export page."""
    st.title("📤 Export")
    user_id = get_settings().app.default_user_id

    st.markdown("### Import template")
    filename, content = export_flow.template()
    st.download_button(
        "⬇️ Download template",
        data=content,
        file_name=filename,
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )

    st.markdown("### Backup")
    try:
        if st.button("Prepare backup workbook"):
            filename, content = run_async(export_flow.export_workbook(user_id))
            st.download_button(
                "⬇️ Download backup",
                data=content,
                file_name=filename,
                mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            )
        if st.button("Prepare CSV export"):
            filename, content = run_async(export_flow.export_csv(user_id))
            st.download_button(
                "⬇️ Download CSV",
                data=content,
                file_name=filename,
                mime="text/csv",
            )
    except StorageError as e:
        st.error(f"Could not read your ledger: {e}")


def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Configuration Status")

    status = validate_all_settings()

    sections = [
        ("Google Sheets (Storage)", "google_sheets"),
        ("Import limits", "importing"),
        ("Application", "app"),
    ]

    for name, key in sections:
        if status.get(key, False):
            st.success(f"✅ {name} - OK")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file with your settings. "
        "See `.env.example` for the available variables."
    )


if __name__ == "__main__":
    main()
