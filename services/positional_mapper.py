"""
Positional Record Mapper (Format B)
One spreadsheet row becomes one record using the fixed column table in settings.

Customer names in this format come next to a trusted customer number, so they
are only trimmed and alias-resolved, not run through free-text cleaning.
"""
import logging
import time
from datetime import date
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Sequence

from schemas import NormalizedRecord, IngestionSummary
from services.alias_resolver import AliasResolver
from services.deduplication import build_line_identifier
from services.row_reader import RawRow
from services.value_parsing import parse_order_date, parse_quantity, parse_amount
from settings import FORMAT_B_COLUMNS, FORMAT_B_DEFAULT_COUNTRY, UNKNOWN
from utils import sanitize_string

logger = logging.getLogger(__name__)


def cell_text(value: Any) -> str:
    """Spreadsheet cell as text; whole floats lose their '.0' (1234.0 -> '1234')."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def synthesize_order_reference(source_row: int, upload_batch_id: Optional[str]) -> str:
    """Unique stand-in for a missing order reference (row index + batch + ms timestamp)."""
    batch = (upload_batch_id or "nobatch")[:8]
    return f"gazelle_{source_row}_{batch}_{int(time.time() * 1000)}"


def map_row(row: RawRow, aliases: AliasResolver, summary: IngestionSummary,
            today: date, columns: Mapping[str, int] = FORMAT_B_COLUMNS) -> NormalizedRecord:
    raw_name = cell_text(row.get(columns["customer_name"]))
    if raw_name:
        customer_name = aliases.resolve(" ".join(raw_name.split()))
    else:
        customer_name = UNKNOWN
        summary.unknown_customers += 1

    order_reference = cell_text(row.get(columns["order_reference"]))
    if not order_reference:
        order_reference = synthesize_order_reference(row.source_row, summary.upload_batch_id)
    order_reference = sanitize_string(order_reference, 255)

    title = sanitize_string(cell_text(row.get(columns["title"])), 500) or UNKNOWN
    item_code = sanitize_string(cell_text(row.get(columns["item_code"])), 50) or None
    quantity = parse_quantity(row.get(columns["quantity"]))
    total = parse_amount(row.get(columns["total"]))
    if total is None:
        total = Decimal("0.00")

    return NormalizedRecord(
        order_date=parse_order_date(row.get(columns["order_date"]), day_first=True) or today,
        customer_number=sanitize_string(cell_text(row.get(columns["customer_number"])), 50) or None,
        customer_name=sanitize_string(customer_name, 255),
        title=title,
        item_code=item_code,
        quantity=quantity,
        total=total,
        country=FORMAT_B_DEFAULT_COUNTRY,
        city=UNKNOWN,
        order_reference=order_reference,
        line_identifier=build_line_identifier(order_reference, title, item_code, quantity, total),
        data_type=summary.data_type,
        source_file=summary.source_file,
        source_row=row.source_row,
        upload_batch_id=summary.upload_batch_id,
    )


def map_rows(rows: Sequence[RawRow], aliases: AliasResolver, summary: IngestionSummary,
             today: Optional[date] = None) -> List[NormalizedRecord]:
    """Map every Format B row in input order, updating summary counters."""
    today = today or date.today()
    records = [map_row(row, aliases, summary, today) for row in rows]
    logger.info(f"[{summary.upload_batch_id}] Mapped {len(records)} positional rows")
    return records
