"""Tests for CSV rendering of exports."""

from company_finder.core.csv_export import (
    EXPORT_FILENAME,
    companies_to_csv,
    content_disposition,
    escape_csv_value,
    header_row,
)
from company_finder.core.data_models import Company

HEADER = "Register Name,Business Name,Status,Registration Date,State,ABN"


class TestEscaping:
    """Tests for per-field quoting."""

    def test_plain_value_unchanged(self):
        assert escape_csv_value("Acme Pty Ltd") == "Acme Pty Ltd"

    def test_none_is_empty(self):
        assert escape_csv_value(None) == ""

    def test_comma_and_quotes(self):
        assert escape_csv_value('Acme, "Inc"') == '"Acme, ""Inc"""'

    def test_newline_is_quoted(self):
        assert escape_csv_value("line one\nline two") == '"line one\nline two"'

    def test_lone_quote_is_doubled(self):
        assert escape_csv_value('5" Widgets') == '"5"" Widgets"'


class TestCompaniesToCsv:
    """Tests for whole-document rendering."""

    def test_header(self):
        assert header_row() == HEADER

    def test_empty_export_is_header_only(self):
        assert companies_to_csv([]) == HEADER + "\n"

    def test_rows_in_column_order(self):
        company = Company(
            id="1",
            register_name="Acme, Inc",
            business_name="Acme",
            status="Registered",
            registration_date="2020-01-31",
            state="NSW",
            abn="12345678901",
            industry="Retail",
        )
        lines = companies_to_csv([company]).split("\n")
        assert lines[0] == HEADER
        assert lines[1] == '"Acme, Inc",Acme,Registered,2020-01-31,NSW,12345678901'
        assert lines[2] == ""

    def test_missing_fields_render_empty(self):
        assert companies_to_csv([Company(id="1")]).splitlines()[1] == ",,,,,"

    def test_content_disposition(self):
        assert content_disposition() == f'attachment; filename="{EXPORT_FILENAME}"'
        assert EXPORT_FILENAME == "companies.csv"
