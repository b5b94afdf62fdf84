"""Tests for CSV / XLSX upload parsing."""

import pytest

from idea_importer.services.spreadsheet_parser import (
    SpreadsheetParseError,
    detect_format,
    normalize_headers,
    parse_spreadsheet,
    sniff_delimiter,
)

from conftest import make_csv, make_xlsx


class TestDetectFormat:
    def test_extension_wins(self):
        assert detect_format(b"PK\x03\x04...", "ideas.csv") == "csv"
        assert detect_format(b"", "IDEAS.XLSX") == "xlsx"
        assert detect_format(b"", "legacy.xls") == "xls"

    def test_magic_bytes_without_extension(self):
        assert detect_format(b"PK\x03\x04rest", None) == "xlsx"
        assert detect_format(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1rest", "upload") == "xls"

    def test_defaults_to_csv(self):
        assert detect_format(b"title,description\n", "upload.bin") == "csv"


class TestParseCsv:
    def test_rows_are_numbered_from_one(self):
        sheet = parse_spreadsheet(make_csv([("A", "a"), ("B", "b")]), "ideas.csv")

        assert sheet.format == "csv"
        assert sheet.headers == ["title", "description"]
        assert [row.number for row in sheet.rows] == [1, 2]
        assert sheet.rows[1].values == {"title": "B", "description": "b"}
        assert sheet.row_count == 2
        assert sheet.column_count == 2

    def test_blank_rows_are_skipped_and_numbering_stays_dense(self):
        content = b"title,description\nA,a\n,\n\nB,b\n"
        sheet = parse_spreadsheet(content, "ideas.csv")

        assert [row.values["title"] for row in sheet.rows] == ["A", "B"]
        assert [row.number for row in sheet.rows] == [1, 2]

    def test_short_rows_fill_missing_cells_with_none(self):
        sheet = parse_spreadsheet(b"title,description,keyword\nA,a\n", "ideas.csv")
        assert sheet.rows[0].values["keyword"] is None

    def test_utf8_bom_is_stripped(self):
        content = "\ufefftitle,description\nCafé,Crème\n".encode("utf-8")
        sheet = parse_spreadsheet(content, "ideas.csv")

        assert sheet.headers[0] == "title"
        assert sheet.rows[0].values["title"] == "Café"

    def test_semicolon_delimiter(self):
        sheet = parse_spreadsheet(b"title;description\nA;a, with comma\n", "ideas.csv")
        assert sheet.rows[0].values == {"title": "A", "description": "a, with comma"}

    def test_quoted_cells_keep_embedded_delimiters(self):
        content = b'title,description\n"Tool, Pro","Line one\nline two"\n'
        sheet = parse_spreadsheet(content, "ideas.csv")

        assert sheet.row_count == 1
        assert sheet.rows[0].values["title"] == "Tool, Pro"
        assert sheet.rows[0].values["description"] == "Line one\nline two"

    def test_invalid_encoding_is_rejected(self):
        with pytest.raises(SpreadsheetParseError, match="encoding"):
            parse_spreadsheet(b"title,description\n\xff\xfe\xfa,x\n", "ideas.csv")


class TestParseXlsx:
    def test_reads_first_sheet(self):
        content = make_xlsx([("Idea", "Text", 7)], headers=("Title", "Description", "Score"))
        sheet = parse_spreadsheet(content, "ideas.xlsx")

        assert sheet.format == "xlsx"
        assert sheet.headers == ["Title", "Description", "Score"]
        assert sheet.rows[0].values == {"Title": "Idea", "Description": "Text", "Score": 7}

    def test_corrupt_workbook_is_rejected(self):
        with pytest.raises(SpreadsheetParseError, match="unreadable"):
            parse_spreadsheet(b"PK\x03\x04 not really a zip", "ideas.xlsx")


class TestParseFailures:
    def test_empty_upload(self):
        with pytest.raises(SpreadsheetParseError, match="empty"):
            parse_spreadsheet(b"", "ideas.csv")

    def test_header_only(self):
        with pytest.raises(SpreadsheetParseError, match="no data rows"):
            parse_spreadsheet(b"title,description\n", "ideas.csv")

    def test_blank_header_row(self):
        with pytest.raises(SpreadsheetParseError, match="header"):
            parse_spreadsheet(b",,\nA,a,x\n", "ideas.csv")

    def test_row_limit(self):
        content = make_csv([("A", "a"), ("B", "b"), ("C", "c")])
        with pytest.raises(SpreadsheetParseError, match="more than 2"):
            parse_spreadsheet(content, "ideas.csv", max_rows=2)

    def test_byte_limit(self):
        with pytest.raises(SpreadsheetParseError, match="too large"):
            parse_spreadsheet(make_csv([("A", "a")]), "ideas.csv", max_bytes=10)


class TestHeaders:
    def test_blank_and_duplicate_headers(self):
        assert normalize_headers([" Title ", None, "title", "Notes", ""]) == [
            "Title",
            "column_2",
            "title_2",
            "Notes",
            "column_5",
        ]

    def test_sniff_delimiter(self):
        assert sniff_delimiter("a\tb\tc\n1\t2\t3") == "\t"
        assert sniff_delimiter("a|b\n") == "|"
        assert sniff_delimiter("single\n") == ","
