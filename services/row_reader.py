"""
Raw Row Reader
Turns uploaded file bytes into ordered raw rows.

Format A (delimited text) rows are keyed by header label, Format B
(spreadsheet) rows by 0-based column index. Values are left untouched
apart from trimming delimited text; all interpretation happens later.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Dict, List, Optional, Union
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from schemas import FORMAT_A
from services.exceptions import EmptyInputError, UnreadableSpreadsheetError

logger = logging.getLogger(__name__)

ColumnKey = Union[str, int]

# CR, LF or CRLF only; other Unicode separators stay inside field values
_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


@dataclass
class RawRow:
    """One input line; source_row is its 1-based position in the file."""
    source_row: int
    values: Dict[ColumnKey, Any] = field(default_factory=dict)

    def get(self, key: ColumnKey, default: Any = None) -> Any:
        return self.values.get(key, default)

    def text(self, key: ColumnKey) -> str:
        """Cell value as stripped text ('' when missing)."""
        value = self.values.get(key)
        if value is None:
            return ""
        return str(value).strip()


def decode_content(content: bytes) -> str:
    # utf-8-sig drops a leading BOM; bad bytes become U+FFFD instead of failing the upload
    return content.decode("utf-8-sig", errors="replace")


def split_delimited_line(line: str, delimiter: str = ",") -> List[str]:
    """
    Split one line into fields. A double quote toggles the inside-field state,
    so delimiters inside quotes are kept; a doubled quote inside a quoted
    field is a literal quote. State starts fresh for every line.
    """
    fields: List[str] = []
    current: List[str] = []
    inside = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == '"':
            if inside and i + 1 < n and line[i + 1] == '"':
                current.append('"')
                i += 2
                continue
            inside = not inside
        elif ch == delimiter and not inside:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current).strip())
    return fields


def read_delimited_rows(content: bytes, delimiter: str = ",") -> List[RawRow]:
    """
    Parse delimited text: first non-empty line is the header, every later
    non-empty line a row. Raises EmptyInputError when no data line exists.
    """
    text = decode_content(content)
    lines = _LINE_BREAK_RE.split(text)

    headers: Optional[List[str]] = None
    rows: List[RawRow] = []
    for line_number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        if headers is None:
            headers = [h.replace("\ufeff", "").strip() for h in split_delimited_line(line, delimiter)]
            continue

        values = split_delimited_line(line, delimiter)
        row: Dict[ColumnKey, Any] = {}
        for index, header in enumerate(headers):
            if not header or header in row:
                continue
            row[header] = values[index] if index < len(values) else ""
        rows.append(RawRow(source_row=line_number, values=row))

    if not rows:
        raise EmptyInputError("File has no data rows after the header")

    logger.debug(f"Delimited reader: headers={len(headers or [])} rows={len(rows)}")
    return rows


def read_spreadsheet_rows(content: bytes) -> List[RawRow]:
    """
    Read the first worksheet, skip its header row, and expose the remaining
    rows by 0-based column index. Fully blank rows are skipped.
    """
    try:
        wb = load_workbook(filename=BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError, ValueError) as e:
        raise UnreadableSpreadsheetError(f"Cannot read spreadsheet (is it corrupted or wrong format?): {e}") from e

    try:
        if not wb.worksheets:
            raise EmptyInputError("Workbook has no worksheets")
        ws = wb.worksheets[0]

        rows: List[RawRow] = []
        for row_num, cells in enumerate(ws.iter_rows(min_row=2, values_only=True), start=2):
            if cells is None:
                continue
            if all(v is None or (isinstance(v, str) and not v.strip()) for v in cells):
                continue
            rows.append(RawRow(source_row=row_num, values=dict(enumerate(cells))))
    finally:
        wb.close()

    if not rows:
        raise EmptyInputError("Spreadsheet has no data rows after the header")

    logger.debug(f"Spreadsheet reader: sheet={ws.title!r} rows={len(rows)}")
    return rows


def read_rows(content: bytes, data_type: str, filename: str = "") -> List[RawRow]:
    """Dispatch to the reader matching the classified data type."""
    if not content:
        raise EmptyInputError("File is empty")
    if data_type == FORMAT_A:
        delimiter = "\t" if filename.lower().endswith(".tsv") else ","
        return read_delimited_rows(content, delimiter=delimiter)
    return read_spreadsheet_rows(content)
