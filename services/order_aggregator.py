"""
Order Aggregator (Format A)
Groups line-item rows by order key, resolves one customer/country/city per
order from ordered candidate columns, then emits one record per line item.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence

from schemas import NormalizedRecord, IngestionSummary
from services.alias_resolver import AliasResolver
from services.deduplication import build_line_identifier
from services.name_normalizer import explain_customer_name
from services.row_reader import RawRow
from services.value_parsing import parse_order_date, parse_quantity, line_total
from settings import (
    FORMAT_A_ORDER_KEY_COLUMN, FORMAT_A_DATE_COLUMN, FORMAT_A_TITLE_COLUMN,
    FORMAT_A_QUANTITY_COLUMN, FORMAT_A_PRICE_COLUMN, FORMAT_A_SKU_COLUMN,
    FORMAT_A_CUSTOMER_COLUMNS, FORMAT_A_COUNTRY_COLUMNS, FORMAT_A_CITY_COLUMNS,
    UNKNOWN, UNKNOWN_CUSTOMER,
)
from utils import sanitize_string

logger = logging.getLogger(__name__)


@dataclass
class OrderGroup:
    order_key: str
    rows: List[RawRow] = field(default_factory=list)
    line_items: List[RawRow] = field(default_factory=list)
    customer_identity: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None


def is_line_item(row: RawRow) -> bool:
    """A row is a line item only with both a product name and a quantity."""
    return bool(row.text(FORMAT_A_TITLE_COLUMN)) and bool(row.text(FORMAT_A_QUANTITY_COLUMN))


def group_orders(rows: Sequence[RawRow], summary: IngestionSummary) -> Dict[str, OrderGroup]:
    """Group rows by order key in first-seen order; keyless rows are counted and dropped."""
    groups: Dict[str, OrderGroup] = {}
    for row in rows:
        order_key = row.text(FORMAT_A_ORDER_KEY_COLUMN)
        if not order_key:
            summary.rows_without_order_key += 1
            continue
        group = groups.get(order_key)
        if group is None:
            group = groups[order_key] = OrderGroup(order_key=order_key)
        group.rows.append(row)
        if is_line_item(row):
            group.line_items.append(row)
        else:
            summary.rows_without_line_item += 1
    return groups


def first_present(rows: Sequence[RawRow], columns: Sequence[str]) -> Optional[str]:
    """First non-empty value, trying each column across every row before the next column."""
    for column in columns:
        for row in rows:
            value = row.text(column)
            if value:
                return value
    return None


def resolve_customer(rows: Sequence[RawRow], aliases: AliasResolver,
                     summary: Optional[IngestionSummary] = None) -> Optional[str]:
    """
    First candidate, by column priority, that survives name cleaning.
    The survivor is alias-resolved; rejected candidates are tallied by reason.
    """
    for column in FORMAT_A_CUSTOMER_COLUMNS:
        for row in rows:
            candidate = row.text(column)
            if not candidate:
                continue
            outcome = explain_customer_name(candidate)
            if outcome.accepted:
                return aliases.resolve(outcome.value)
            if summary is not None:
                summary.rejected_names[outcome.reason] += 1
            logger.debug(f"Rejected {column} candidate {candidate!r} at row {row.source_row}: {outcome.reason}")
    return None


def resolve_group(group: OrderGroup, aliases: AliasResolver, summary: IngestionSummary) -> None:
    group.customer_identity = resolve_customer(group.rows, aliases, summary)
    group.country = first_present(group.rows, FORMAT_A_COUNTRY_COLUMNS)
    group.city = first_present(group.rows, FORMAT_A_CITY_COLUMNS)


def aggregate_orders(rows: Sequence[RawRow], aliases: AliasResolver,
                     summary: IngestionSummary, today: Optional[date] = None) -> List[NormalizedRecord]:
    """Build normalized records for a Format A file, updating summary counters."""
    today = today or date.today()
    groups = group_orders(rows, summary)

    records: List[NormalizedRecord] = []
    for group in groups.values():
        if not group.line_items:
            continue
        resolve_group(group, aliases, summary)

        customer_name = group.customer_identity
        if customer_name is None:
            customer_name = UNKNOWN_CUSTOMER
            summary.unknown_customers += 1
            logger.info(f"[{summary.upload_batch_id}] Order {group.order_key}: no usable customer name")

        group_date = None
        for row in group.rows:
            group_date = parse_order_date(row.text(FORMAT_A_DATE_COLUMN))
            if group_date:
                break

        order_reference = sanitize_string(group.order_key, 255)
        for row in group.line_items:
            title = sanitize_string(row.text(FORMAT_A_TITLE_COLUMN), 500)
            item_code = sanitize_string(row.text(FORMAT_A_SKU_COLUMN), 50) or None
            quantity = parse_quantity(row.text(FORMAT_A_QUANTITY_COLUMN))
            total = line_total(row.text(FORMAT_A_PRICE_COLUMN), quantity)
            order_date = parse_order_date(row.text(FORMAT_A_DATE_COLUMN)) or group_date or today

            records.append(NormalizedRecord(
                order_date=order_date,
                customer_name=sanitize_string(customer_name, 255),
                title=title,
                item_code=item_code,
                quantity=quantity,
                total=total,
                country=sanitize_string(group.country, 100, default=UNKNOWN) or UNKNOWN,
                city=sanitize_string(group.city, 100, default=UNKNOWN) or UNKNOWN,
                order_reference=order_reference,
                line_identifier=build_line_identifier(order_reference, title, item_code, quantity, total),
                data_type=summary.data_type,
                source_file=summary.source_file,
                source_row=row.source_row,
                upload_batch_id=summary.upload_batch_id,
            ))

    logger.info(
        f"[{summary.upload_batch_id}] Aggregated {len(groups)} orders into {len(records)} line records "
        f"(rows without order key: {summary.rows_without_order_key})"
    )
    return records
