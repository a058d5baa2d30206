"""CSV rendering for registry exports.

A field is quoted only when it contains a comma, a double quote or a newline;
embedded quotes are doubled.  Absent values render as empty strings.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from company_finder.core.data_models import Company

EXPORT_FILENAME = "companies.csv"
CSV_MEDIA_TYPE = "text/csv"

# (header, Company attribute) pairs, in column order
EXPORT_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("Register Name", "register_name"),
    ("Business Name", "business_name"),
    ("Status", "status"),
    ("Registration Date", "registration_date"),
    ("State", "state"),
    ("ABN", "abn"),
)


def escape_csv_value(value: Optional[object]) -> str:
    if value is None:
        return ""
    text = str(value)
    if "," in text or '"' in text or "\n" in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def csv_row(values: Iterable[Optional[object]]) -> str:
    return ",".join(escape_csv_value(v) for v in values)


def header_row() -> str:
    return csv_row(header for header, _ in EXPORT_COLUMNS)


def company_row(company: Company) -> str:
    return csv_row(getattr(company, attr) for _, attr in EXPORT_COLUMNS)


def companies_to_csv(companies: Iterable[Company]) -> str:
    """Render the header row followed by one row per company.

    Every line, the header included, ends with ``\\n``.  An empty input
    yields just the header line.
    """
    lines: List[str] = [header_row()]
    lines.extend(company_row(company) for company in companies)
    return "\n".join(lines) + "\n"


def content_disposition(filename: str = EXPORT_FILENAME) -> str:
    return f'attachment; filename="{filename}"'
