"""
File Parser

Turns uploaded bytes into RawExpenseRow/RawCategoryRow records plus
row-indexed parse diagnostics.

Accepted inputs:
- .xlsx workbook with a required `expenses` sheet and an optional
  `categories` sheet
- .csv file holding expense rows only

DESIGN DECISION: Columns are bound by their canonical names
(id, date, description, category, amount, notes / id, name, color),
compared after trimming and case-folding. There are no synonyms and no
guessing, so the same file always binds the same way.

Row numbers count the header as row 1 and are fixed before blank rows are
dropped, so every diagnostic points at the line the user sees.
"""

import io
import numbers
import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

import pandas as pd
import structlog

from ledger_io.config import ImportSettings, get_settings
from ledger_io.importing.errors import (
    FileTooLargeError,
    MissingColumnsError,
    MissingSheetError,
    UnreadableFileError,
    UnsupportedFileError,
)
from ledger_io.models.ledger import (
    FileKind,
    IssueKind,
    ParsedData,
    RawCategoryRow,
    RawExpenseRow,
    RowError,
)

logger = structlog.get_logger(__name__)

EXPENSES_SHEET = "expenses"
CATEGORIES_SHEET = "categories"

EXPENSE_COLUMNS = ("id", "date", "description", "category", "amount", "notes")
REQUIRED_EXPENSE_COLUMNS = ("date", "description", "category", "amount")

CATEGORY_COLUMNS = ("id", "name", "color")
REQUIRED_CATEGORY_COLUMNS = ("name",)

# Excel stores dates as days since this epoch
EXCEL_EPOCH = date(1899, 12, 30)
MAX_EXCEL_SERIAL = 2958465  # 9999-12-31

DATE_FORMATS = ["%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%Y/%m/%d"]

_AMOUNT_NOISE = re.compile(r"[\s,$€£₹]")


# =============================================================================
# CELL CONVERSION
# =============================================================================

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _cell_text(value: Any) -> str:
    """Render a cell as the text the user typed."""
    if _is_blank(value):
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        # Excel returns whole numbers (ids, amounts) as floats
        return str(int(value))
    return str(value).strip()


def parse_date_cell(value: Any) -> Optional[date]:
    """
    Parse a date cell.

    Accepts date/datetime cells, Excel serial numbers and text in the
    supported formats. A trailing time part in text is ignored.
    """
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, numbers.Real):
        if 0 < value <= MAX_EXCEL_SERIAL:
            return EXCEL_EPOCH + timedelta(days=int(value))
        return None
    if isinstance(value, str):
        text = value.strip().split("T")[0].split(" ")[0]
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
    return None


def parse_amount_cell(value: Any) -> Optional[Decimal]:
    """
    Parse an amount cell.

    Accepts numbers and numeric text with an optional currency symbol,
    thousands separators and accounting-style parentheses.
    """
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, numbers.Integral):
        amount = Decimal(int(value))
    elif isinstance(value, numbers.Real):
        amount = Decimal(str(float(value)))
    else:
        text = _AMOUNT_NOISE.sub("", str(value))
        negative = text.startswith("(") and text.endswith(")")
        if negative:
            text = text[1:-1]
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None
        if negative:
            amount = -amount
    if not amount.is_finite():
        return None
    return amount


# =============================================================================
# FILE READING
# =============================================================================

def detect_file_kind(filename: str, settings: Optional[ImportSettings] = None) -> FileKind:
    """
    Map a filename to an upload format.

    Raises:
        UnsupportedFileError: If the extension is not accepted
    """
    settings = settings or get_settings().importing
    suffix = Path(filename).suffix.lower().lstrip(".")
    accepted = [fmt for fmt in settings.supported_formats_list if fmt in FileKind._value2member_map_]
    if suffix not in accepted:
        raise UnsupportedFileError(
            f"Please select a {' or '.join('.' + fmt for fmt in accepted)} file",
            details={"filename": filename, "extension": suffix},
        )
    return FileKind(suffix)


def _read_workbook(content: bytes) -> dict[str, pd.DataFrame]:
    try:
        return pd.read_excel(
            io.BytesIO(content),
            sheet_name=None,
            header=None,
            dtype=object,
            engine="openpyxl",
        )
    except Exception as e:
        raise UnreadableFileError(
            "The file could not be read as an Excel workbook",
            details={"error": str(e)},
        )


def _read_csv_frame(content: bytes, **options) -> pd.DataFrame:
    return pd.read_csv(
        io.BytesIO(content),
        header=None,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=False,
        encoding="utf-8-sig",
        engine="python",
        **options,
    )


def _read_csv(content: bytes) -> pd.DataFrame:
    """
    Read CSV bytes into a header-less frame wide enough for every line.

    A line with more fields than the header (an unquoted comma, usually)
    must not sink the whole file, so the first pass only measures such
    lines and the second pass reads them in full. _parse_expense_frame
    then flags the cells that fall outside the header.
    """
    long_lines: list[int] = []

    def measure(bad_line: list[str]) -> None:
        long_lines.append(len(bad_line))
        return None

    try:
        frame = _read_csv_frame(content, on_bad_lines=measure)
        if long_lines:
            width = max(max(long_lines), frame.shape[1])
            frame = _read_csv_frame(content, names=list(range(width)))
    except pd.errors.EmptyDataError:
        raise UnreadableFileError("The file is empty")
    except Exception as e:
        raise UnreadableFileError(
            "The file could not be read as CSV",
            details={"error": str(e)},
        )
    return frame


def _find_sheet(sheets: dict[str, pd.DataFrame], name: str) -> Optional[pd.DataFrame]:
    if name in sheets:
        return sheets[name]
    for title, frame in sheets.items():
        if str(title).strip().casefold() == name:
            return frame
    return None


def _bind_columns(
    frame: pd.DataFrame,
    canonical: tuple[str, ...],
    required: tuple[str, ...],
    sheet: str,
) -> dict[str, int]:
    """Locate canonical columns in the header row."""
    header = frame.iloc[0].tolist() if len(frame) else []
    positions: dict[str, int] = {}
    for idx, cell in enumerate(header):
        key = _cell_text(cell).casefold()
        if key in canonical and key not in positions:
            positions[key] = idx

    missing = [column for column in required if column not in positions]
    if missing:
        raise MissingColumnsError(
            f"Sheet '{sheet}' is missing required columns: {', '.join(missing)}",
            details={"sheet": sheet, "missing": missing, "found": sorted(positions)},
        )
    return positions


def _data_rows(frame: pd.DataFrame):
    """Yield (row_number, cells) for non-blank data rows; header is row 1."""
    for offset, cells in enumerate(frame.iloc[1:].values.tolist(), start=2):
        if all(_is_blank(cell) for cell in cells):
            continue
        yield offset, cells


# =============================================================================
# ROW PARSING
# =============================================================================

def _field_count(cells: list) -> int:
    """Number of fields a CSV line really had; padding cells are NaN, empty fields are ''."""
    present = [idx for idx, cell in enumerate(cells) if isinstance(cell, str)]
    return present[-1] + 1 if present else 0


def _overflow_message(cells: list, width: int) -> Optional[str]:
    """Describe a row that has more fields than the header, if it does."""
    count = _field_count(cells)
    if count <= width:
        return None
    return (
        f"Row has {count} fields but the header has {width}; "
        "put values that contain commas in double quotes"
    )


def _parse_expense_frame(
    frame: pd.DataFrame,
    errors: list[RowError],
    flag_overflow: bool = False,
) -> list[RawExpenseRow]:
    positions = _bind_columns(frame, EXPENSE_COLUMNS, REQUIRED_EXPENSE_COLUMNS, EXPENSES_SHEET)
    width = _field_count(frame.iloc[0].tolist()) if len(frame) else 0

    def cell(cells: list, column: str) -> Any:
        idx = positions.get(column)
        if idx is None or idx >= len(cells):
            return None
        return cells[idx]

    rows = []
    for row_number, cells in _data_rows(frame):
        overflow = _overflow_message(cells, width) if flag_overflow else None
        if overflow:
            # Fields are shifted, so no cell can be trusted
            errors.append(RowError(row=row_number, message=overflow, kind=IssueKind.PARSE))
            rows.append(RawExpenseRow(
                row_number=row_number,
                description=_cell_text(cell(cells, "description")),
                read_error=overflow,
            ))
            continue

        raw_date = cell(cells, "date")
        raw_amount = cell(cells, "amount")
        parsed_date = parse_date_cell(raw_date)
        amount = parse_amount_cell(raw_amount)
        amount_text = _cell_text(raw_amount)

        problems = []
        if parsed_date is None:
            if _is_blank(raw_date):
                problems.append("Missing date")
            else:
                problems.append(
                    f"Invalid date '{_cell_text(raw_date)}': expected a calendar date such as 2024-01-15"
                )
        if amount is None:
            if _is_blank(raw_amount):
                problems.append("Missing amount")
            else:
                problems.append(f"Invalid amount '{amount_text}': not a number")
        if problems:
            errors.append(RowError(
                row=row_number,
                message="; ".join(problems),
                kind=IssueKind.PARSE,
            ))

        category = _cell_text(cell(cells, "category"))
        if not category:
            errors.append(RowError(
                row=row_number,
                message="Category is blank; the row will be imported as uncategorized",
                kind=IssueKind.PARSE,
                severity="warning",
            ))

        rows.append(RawExpenseRow(
            row_number=row_number,
            id=_cell_text(cell(cells, "id")) or None,
            date=parsed_date.isoformat() if parsed_date else _cell_text(raw_date),
            description=_cell_text(cell(cells, "description")),
            category=category,
            amount=amount,
            amount_text=amount_text,
            notes=_cell_text(cell(cells, "notes")) or None,
        ))
    return rows


def _parse_category_frame(
    frame: pd.DataFrame,
    errors: list[RowError],
) -> list[RawCategoryRow]:
    positions = _bind_columns(frame, CATEGORY_COLUMNS, REQUIRED_CATEGORY_COLUMNS, CATEGORIES_SHEET)

    rows = []
    for row_number, cells in _data_rows(frame):
        values = {
            column: _cell_text(cells[idx]) if idx < len(cells) else ""
            for column, idx in positions.items()
        }
        if not values.get("name"):
            errors.append(RowError(
                row=row_number,
                message="Category name is blank; the row will be ignored",
                kind=IssueKind.PARSE,
                severity="warning",
                sheet=CATEGORIES_SHEET,
            ))
        rows.append(RawCategoryRow(
            row_number=row_number,
            id=values.get("id") or None,
            name=values.get("name", ""),
            color=values.get("color") or None,
        ))
    return rows


# =============================================================================
# PUBLIC API
# =============================================================================

def parse_file(
    content: bytes,
    file_kind: FileKind,
    filename: str = "upload",
) -> ParsedData:
    """
    Parse file bytes of a known format.

    Args:
        content: Raw file bytes
        file_kind: Format of the bytes
        filename: Original name, kept for display

    Returns:
        ParsedData with rows and row-indexed parse errors

    Raises:
        UnreadableFileError: If the bytes cannot be read
        MissingSheetError: If a workbook has no `expenses` sheet
        MissingColumnsError: If a required column is absent
    """
    file_kind = FileKind(file_kind)
    categories_frame = None

    if file_kind is FileKind.XLSX:
        sheets = _read_workbook(content)
        expenses_frame = _find_sheet(sheets, EXPENSES_SHEET)
        if expenses_frame is None:
            raise MissingSheetError(
                f"The workbook has no '{EXPENSES_SHEET}' sheet",
                details={"sheets": [str(name) for name in sheets]},
            )
        categories_frame = _find_sheet(sheets, CATEGORIES_SHEET)
    else:
        expenses_frame = _read_csv(content)

    errors: list[RowError] = []
    expenses = _parse_expense_frame(
        expenses_frame,
        errors,
        flag_overflow=file_kind is FileKind.CSV,
    )
    categories = []
    if categories_frame is not None:
        categories = _parse_category_frame(categories_frame, errors)

    logger.info(
        "file_parsed",
        filename=filename,
        file_kind=file_kind.value,
        expense_rows=len(expenses),
        category_rows=len(categories),
        parse_errors=len(errors),
    )

    return ParsedData(
        filename=filename,
        file_kind=file_kind,
        expenses=expenses,
        categories=categories,
        errors=errors,
    )


def parse_uploaded_file(
    filename: str,
    content: bytes,
    settings: Optional[ImportSettings] = None,
) -> ParsedData:
    """
    Validate an upload's extension and size, then parse it.

    Raises:
        UnsupportedFileError: If the extension is not accepted
        FileTooLargeError: If the file exceeds the upload limit
        plus everything parse_file raises
    """
    settings = settings or get_settings().importing
    file_kind = detect_file_kind(filename, settings)

    if len(content) > settings.max_upload_size_bytes:
        raise FileTooLargeError(
            f"File is larger than {settings.max_upload_size_mb} MB",
            details={"filename": filename, "size_bytes": len(content)},
        )

    return parse_file(content, file_kind, filename=filename)
