import pandas as pd
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Sequence
from pathlib import PurePath
import io
from io import StringIO
import csv
import math
import logging

from app.domain.imports.errors import ParseError, UnsupportedFileTypeError
from app.domain.imports.header_detection import detect_header_row
from app.utils.date import format_date_cell

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = ('.xlsx', '.xls')
CSV_EXTENSIONS = ('.csv',)
DEFAULT_CSV_SHEET_NAME = "Sheet1"

RawGrid = List[List[Any]]


@dataclass
class ParsedSheet:
    """One worksheet after header detection: ordered headers plus row objects."""
    name: str
    headers: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)
    header_row_index: int = 0

    @property
    def total_rows(self) -> int:
        return len(self.rows)


def detect_spreadsheet_type(file_name: str) -> str:
    """
    Detect spreadsheet type from the file extension.

    Returns:
        'excel' or 'csv'

    Raises:
        UnsupportedFileTypeError: for anything else
    """
    lowered = (file_name or "").lower()
    if lowered.endswith(EXCEL_EXTENSIONS):
        return 'excel'
    if lowered.endswith(CSV_EXTENSIONS):
        return 'csv'
    raise UnsupportedFileTypeError(
        "Only Excel (.xlsx, .xls) and CSV files are supported",
        file_name=file_name,
    )


def normalize_cell(value: Any) -> Any:
    """
    Normalize a raw cell as it comes out of the reader.

    Empty cells become None, date-typed cells ISO ``YYYY-MM-DD`` strings and
    whole-number floats ints (xls stores every number as a float).
    """
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            return int(value)
        return value
    return format_date_cell(value)


def _trim_row(row: Sequence[Any]) -> List[Any]:
    """Normalize cells and drop trailing empties so rows stay as ragged as the source."""
    cells = [normalize_cell(value) for value in row]
    while cells and cells[-1] is None:
        cells.pop()
    return cells


def is_blank_row(row: Sequence[Any]) -> bool:
    """A row is blank when every cell is None or whitespace-only text."""
    for cell in row:
        if cell is None:
            continue
        if isinstance(cell, str) and not cell.strip():
            continue
        return False
    return True


def read_excel_grids(file_content: bytes) -> Dict[str, RawGrid]:
    """Read every worksheet of an Excel workbook as a raw grid (no header inference)."""
    try:
        sheets_dict = pd.read_excel(
            io.BytesIO(file_content), sheet_name=None, header=None, dtype=object, engine='openpyxl'
        )
    except Exception:
        # Legacy .xls workbooks need xlrd; let pandas pick the engine from the content
        try:
            sheets_dict = pd.read_excel(io.BytesIO(file_content), sheet_name=None, header=None, dtype=object)
        except Exception as e:
            raise ParseError(f"Could not read Excel file: {str(e)}")

    grids: Dict[str, RawGrid] = {}
    for sheet_name, df in sheets_dict.items():
        grids[str(sheet_name)] = [_trim_row(row) for row in df.itertuples(index=False, name=None)]
    return grids


def _decode_text(file_content: bytes) -> str:
    try:
        return file_content.decode('utf-8-sig')
    except UnicodeDecodeError:
        logger.info("CSV is not valid UTF-8; decoding as latin-1")
        return file_content.decode('latin-1')


def read_csv_grid(file_content: bytes) -> RawGrid:
    """
    Read a CSV file as a raw grid of strings.

    Empty fields become None; no assumptions are made about headers.
    """
    text_content = _decode_text(file_content)
    try:
        reader = csv.reader(StringIO(text_content))
        return [_trim_row([cell if cell != "" else None for cell in row]) for row in reader]
    except csv.Error as e:
        raise ParseError(f"Could not read CSV file: {str(e)}")


def read_raw_sheets(file_content: bytes, file_type: str) -> Dict[str, RawGrid]:
    """Decode file bytes into ``{sheet name: raw grid}`` in workbook order."""
    if file_type == 'excel':
        return read_excel_grids(file_content)
    if file_type == 'csv':
        return {DEFAULT_CSV_SHEET_NAME: read_csv_grid(file_content)}
    raise UnsupportedFileTypeError(f"Unsupported spreadsheet type: {file_type}")


def build_parsed_sheet(name: str, grid: RawGrid, max_scan_rows: Optional[int] = None) -> ParsedSheet:
    """
    Turn a raw grid into a ParsedSheet.

    Blank rows still compete as header candidates but never become data rows.
    Cells past the end of a short row are left out of its row object.
    """
    if not grid:
        return ParsedSheet(name=name, headers=[], rows=[])

    detection = detect_header_row(grid, max_scan_rows=max_scan_rows)
    headers = detection.headers

    rows: List[Dict[str, Any]] = []
    for raw_row in grid[detection.header_row_index + 1:]:
        if is_blank_row(raw_row):
            continue
        row_obj: Dict[str, Any] = {}
        for idx, header in enumerate(headers):
            if idx < len(raw_row):
                row_obj[header] = raw_row[idx]
        rows.append(row_obj)

    return ParsedSheet(
        name=name,
        headers=headers,
        rows=rows,
        header_row_index=detection.header_row_index,
    )


def parse_spreadsheet(file_content: bytes, file_name: str) -> List[ParsedSheet]:
    """
    Parse an uploaded spreadsheet into its non-empty sheets.

    Raises:
        ParseError: unsupported extension, unreadable file, or no sheet with data rows
    """
    file_type = detect_spreadsheet_type(file_name)
    grids = read_raw_sheets(file_content, file_type)

    sheets = []
    for name, grid in grids.items():
        sheet = build_parsed_sheet(name, grid)
        if sheet.total_rows == 0:
            logger.info("Dropping sheet '%s' from %s: no data rows", name, file_name)
            continue
        sheets.append(sheet)

    if not sheets:
        raise ParseError("No data found in the uploaded file", file_name=file_name)

    logger.info(
        "Parsed %s: %d sheet(s) with data (%s)",
        PurePath(file_name).name,
        len(sheets),
        ", ".join(f"{s.name}={s.total_rows}" for s in sheets),
    )
    return sheets
