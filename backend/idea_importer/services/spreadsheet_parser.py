"""Parse uploaded CSV / XLS / XLSX files into numbered raw rows."""

from __future__ import annotations

import csv
import io
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator

import xlrd
from xlrd.compdoc import CompDocError
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("csv", "xlsx", "xls")
CSV_DELIMITERS = ",;\t|"

XLSX_MAGIC = b"PK\x03\x04"
XLS_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


class SpreadsheetParseError(ValueError):
    """Raised when an upload cannot be turned into rows at all."""


@dataclass(frozen=True)
class RawRow:
    """One data row: 1-based position among extracted rows plus header->cell map."""

    number: int
    values: dict[str, Any]


@dataclass
class ParsedSheet:
    filename: str | None
    format: str
    headers: list[str]
    rows: list[RawRow] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return len(self.headers)


def detect_format(content: bytes, filename: str | None = None) -> str:
    """Pick a parser from the file extension, falling back to magic bytes."""
    suffix = Path(filename or "").suffix.lower().lstrip(".")
    if suffix in SUPPORTED_FORMATS:
        return suffix
    if content.startswith(XLSX_MAGIC):
        return "xlsx"
    if content.startswith(XLS_MAGIC):
        return "xls"
    return "csv"


def parse_spreadsheet(
    content: bytes,
    filename: str | None = None,
    *,
    max_rows: int | None = None,
    max_bytes: int | None = None,
) -> ParsedSheet:
    """Parse the first sheet of an upload; the first row is the header.

    Completely empty rows are skipped and the remaining rows are numbered
    from 1 in file order.

    Raises:
        SpreadsheetParseError: unreadable file, no header, no data rows or
            a size limit exceeded.
    """
    if not content:
        raise SpreadsheetParseError("Uploaded file is empty")
    if max_bytes is not None and len(content) > max_bytes:
        raise SpreadsheetParseError(
            f"File is too large ({len(content)} bytes, limit {max_bytes})"
        )

    file_format = detect_format(content, filename)
    logger.info(f"Parsing {filename or '<upload>'} as {file_format} ({len(content)} bytes)")

    if file_format == "csv":
        table = _read_csv(content)
    elif file_format == "xlsx":
        table = _read_xlsx(content)
    else:
        table = _read_xls(content)

    return _build_sheet(table, filename, file_format, max_rows)


def _build_sheet(
    table: Iterable[list[Any]],
    filename: str | None,
    file_format: str,
    max_rows: int | None,
) -> ParsedSheet:
    iterator = iter(table)
    try:
        header_cells = next(iterator)
    except StopIteration:
        raise SpreadsheetParseError("Spreadsheet has no header row") from None

    if _is_blank(list(header_cells)):
        raise SpreadsheetParseError("Spreadsheet header row is empty")
    headers = normalize_headers(header_cells)

    sheet = ParsedSheet(filename=filename, format=file_format, headers=headers)
    for cells in iterator:
        if _is_blank(cells):
            continue
        if max_rows is not None and len(sheet.rows) >= max_rows:
            raise SpreadsheetParseError(
                f"Spreadsheet has more than {max_rows} data rows"
            )
        values = {
            header: (cells[idx] if idx < len(cells) else None)
            for idx, header in enumerate(headers)
        }
        sheet.rows.append(RawRow(number=len(sheet.rows) + 1, values=values))

    if not sheet.rows:
        raise SpreadsheetParseError("Spreadsheet contains no data rows")

    logger.info(
        f"Parsed {sheet.row_count} rows x {sheet.column_count} columns "
        f"from {filename or '<upload>'}"
    )
    return sheet


def normalize_headers(cells: Iterable[Any]) -> list[str]:
    """Trim header names, name blank ones and de-duplicate repeats."""
    headers: list[str] = []
    seen: dict[str, int] = {}
    for idx, cell in enumerate(cells, start=1):
        name = str(cell).strip() if cell is not None else ""
        if not name:
            name = f"column_{idx}"
        key = name.lower()
        if key in seen:
            seen[key] += 1
            name = f"{name}_{seen[key]}"
        else:
            seen[key] = 1
        headers.append(name)
    return headers


def _is_blank(cells: list[Any]) -> bool:
    return all(cell is None or str(cell).strip() == "" for cell in cells)


def _read_csv(content: bytes) -> list[list[str]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise SpreadsheetParseError(f"File encoding error: {str(e)}") from e

    delimiter = sniff_delimiter(text)
    try:
        return list(csv.reader(io.StringIO(text, newline=""), delimiter=delimiter))
    except csv.Error as e:
        raise SpreadsheetParseError(f"CSV parsing error: {str(e)}") from e


def _read_xlsx(content: bytes) -> Iterator[list[Any]]:
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise SpreadsheetParseError(f"Excel file is unreadable: {str(e)}") from e

    try:
        ws = wb.active if wb.active is not None else wb.worksheets[0]
        rows = [list(row) for row in ws.iter_rows(values_only=True)]
    except IndexError:
        raise SpreadsheetParseError("Excel file has no sheets") from None
    finally:
        wb.close()
    return iter(rows)


def _read_xls(content: bytes) -> Iterator[list[Any]]:
    try:
        book = xlrd.open_workbook(file_contents=content)
    except (xlrd.XLRDError, CompDocError, OSError, ValueError) as e:
        raise SpreadsheetParseError(f"Excel file is unreadable: {str(e)}") from e

    if book.nsheets == 0:
        raise SpreadsheetParseError("Excel file has no sheets")
    sheet = book.sheet_by_index(0)
    return iter([sheet.row_values(idx) for idx in range(sheet.nrows)])


def sniff_delimiter(text: str) -> str:
    """Choose the delimiter that splits the header line most often."""
    header_line = text.split("\n", 1)[0]
    counts = {delimiter: header_line.count(delimiter) for delimiter in CSV_DELIMITERS}
    best = max(counts, key=counts.get)
    return best if counts[best] else ","
