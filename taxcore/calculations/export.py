"""
export.py — CSV export of tax calculation records (bulk EXPORT action).

Output is a BytesIO buffer (no temp file on disk), streamed back by routes.py.

Entry point:
    generate_csv_export(records) -> BytesIO

Columns follow the portal's export sheet: ID, tax type, calculation type,
period, year, gross income, taxable income, rate (%), calculated tax, final
tax, status, user, created, updated, notes. Empty notes are written as "-".

The buffer is UTF-8 with a BOM so spreadsheet tools detect the encoding of
Indonesian descriptions correctly.
"""
from __future__ import annotations

import csv
import io
import logging
from decimal import Decimal
from typing import Iterable

from taxcore.calculations.schemas import TaxCalculationRecord

logger = logging.getLogger(__name__)

EXPORT_HEADERS = [
    "ID",
    "Tax Type",
    "Calculation Type",
    "Period",
    "Year",
    "Gross Income",
    "Taxable Income",
    "Tax Rate (%)",
    "Calculated Tax",
    "Final Tax Amount",
    "Status",
    "User",
    "Created At",
    "Updated At",
    "Notes",
]


def _rate_percent(rate: Decimal) -> str:
    # 0.05 → "5", 0.005 → "0.5"
    percent = (rate * 100).normalize()
    return format(percent, "f")


def export_row(record: TaxCalculationRecord) -> list[str]:
    """One CSV row for a record, in EXPORT_HEADERS order."""
    return [
        record.id,
        record.tax_type,
        record.calculation_type.value,
        record.period,
        str(record.year),
        format(record.gross_income, "f"),
        format(record.taxable_income, "f"),
        _rate_percent(record.tax_rate),
        format(record.calculated_tax, "f"),
        format(record.final_tax_amount, "f"),
        record.status.value,
        record.user_id,
        record.created_at.isoformat(),
        record.updated_at.isoformat(),
        record.notes or "-",
    ]


def generate_csv_export(records: Iterable[TaxCalculationRecord]) -> io.BytesIO:
    """
    Render records to CSV. Returns a BytesIO positioned at 0 so it can be
    streamed directly.
    """
    text = io.StringIO(newline="")
    writer = csv.writer(text)
    writer.writerow(EXPORT_HEADERS)
    count = 0
    for record in records:
        writer.writerow(export_row(record))
        count += 1

    buffer = io.BytesIO(text.getvalue().encode("utf-8-sig"))
    buffer.seek(0)
    logger.info("CSV export generated rows=%d bytes=%d", count, buffer.getbuffer().nbytes)
    return buffer
