import sys
from datetime import datetime
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from conftest import gazelle_xlsx
from schemas import FORMAT_A, FORMAT_B
from services.exceptions import EmptyInputError, InputMalformedError, UnreadableSpreadsheetError
from services.row_reader import read_delimited_rows, read_rows, read_spreadsheet_rows, split_delimited_line


def test_quoted_field_keeps_delimiter():
    assert split_delimited_line('#1001,"Book, Vol 1",2') == ["#1001", "Book, Vol 1", "2"]


def test_doubled_quote_is_literal():
    assert split_delimited_line('a,"say ""hi""",b') == ["a", 'say "hi"', "b"]


def test_fields_are_trimmed():
    assert split_delimited_line(" a , b ,c ") == ["a", "b", "c"]


def test_quote_state_resets_per_line():
    content = b'Name,Lineitem name\n#1,"Broken\n#2,Fine\n'
    rows = read_delimited_rows(content)
    assert rows[0].values == {"Name": "#1", "Lineitem name": "Broken"}
    assert rows[1].values == {"Name": "#2", "Lineitem name": "Fine"}


def test_header_is_first_non_empty_line_and_rows_keep_file_line_numbers():
    content = b'\n\nName,Lineitem name\n#1,Alpha\n\n#2,Beta\n'
    rows = read_delimited_rows(content)
    assert [r.source_row for r in rows] == [4, 6]
    assert rows[1].text("Lineitem name") == "Beta"


def test_short_rows_are_padded_and_extra_values_ignored():
    rows = read_delimited_rows(b"A,B,C\n1\n1,2,3,4\n")
    assert rows[0].values == {"A": "1", "B": "", "C": ""}
    assert rows[1].values == {"A": "1", "B": "2", "C": "3"}


def test_bom_and_crlf_are_handled():
    content = "\ufeffName,Lineitem name\r\n#1,Alpha\r\n".encode("utf-8")
    rows = read_delimited_rows(content)
    assert rows[0].values == {"Name": "#1", "Lineitem name": "Alpha"}


def test_tsv_uses_tab_delimiter():
    rows = read_rows(b"Name\tLineitem name\n#1\tBook, Vol 1\n", FORMAT_A, "orders.tsv")
    assert rows[0].values == {"Name": "#1", "Lineitem name": "Book, Vol 1"}


@pytest.mark.parametrize("content", [b"Name,Lineitem name\n", b"Name,Lineitem name\n\n   \n", b"\n\n"])
def test_header_only_is_empty_input(content):
    with pytest.raises(EmptyInputError):
        read_delimited_rows(content)


def test_zero_bytes_is_empty_input():
    with pytest.raises(EmptyInputError):
        read_rows(b"", FORMAT_B, "sales.xlsx")


def test_spreadsheet_rows_are_positional():
    content = gazelle_xlsx(
        [datetime(2024, 1, 15), "G-1", 1234, "Waterstones", None, "Book A", None, "978000000001", 3, 37.5],
        [datetime(2024, 1, 16), "G-2", 1235, "Foyles", None, "Book B", None, "978000000002", 1, 9.99],
    )
    rows = read_spreadsheet_rows(content)
    assert len(rows) == 2
    assert rows[0].source_row == 2
    assert rows[0].get(3) == "Waterstones"
    assert rows[0].get(8) == 3
    assert rows[1].text(5) == "Book B"


def test_blank_spreadsheet_rows_are_skipped():
    content = gazelle_xlsx(
        [datetime(2024, 1, 15), "G-1", 1234, "Waterstones", None, "Book A", None, "978000000001", 3, 37.5],
        [None, None, None, "  "],
        [datetime(2024, 1, 16), "G-2", 1235, "Foyles", None, "Book B", None, "978000000002", 1, 9.99],
    )
    rows = read_spreadsheet_rows(content)
    assert [r.get(1) for r in rows] == ["G-1", "G-2"]


def test_header_only_spreadsheet_is_empty_input():
    with pytest.raises(EmptyInputError):
        read_spreadsheet_rows(gazelle_xlsx())


def test_garbage_spreadsheet_is_unreadable():
    with pytest.raises(UnreadableSpreadsheetError) as exc_info:
        read_rows(b"this is not a workbook", FORMAT_B, "sales.xlsx")
    assert isinstance(exc_info.value, InputMalformedError)


def test_only_cr_and_lf_break_lines():
    content = 'Name,Lineitem name\r\n#1,"Book\u2028Two"\r\n#2,Page\x0cBreak\n'.encode("utf-8")
    rows = read_delimited_rows(content)
    assert [r.values for r in rows] == [
        {"Name": "#1", "Lineitem name": "Book\u2028Two"},
        {"Name": "#2", "Lineitem name": "Page\x0cBreak"},
    ]
    assert [r.source_row for r in rows] == [2, 3]
