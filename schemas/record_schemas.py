"""
Sales Record Schemas
====================

Canonical data structures produced by the ingestion pipeline.

Every parser (Format A line-item CSV, Format B positional spreadsheet) maps
its rows into NormalizedRecord before the duplicate check and insert.

RECORD FIELDS:
--------------
- order_date       - date of the order (falls back to today)
- customer_name    - cleaned/aliased name, or an "Unknown" sentinel
- title            - product description
- item_code        - EAN/SKU, may be None
- quantity         - non-negative int
- total            - Decimal with 2 places
- country, city    - location, "Unknown" when unresolved
- order_reference  - order key (or a synthesized token)
- line_identifier  - deterministic composite key (see services.deduplication)
- provenance       - source_file, source_row, upload_batch_id, data_type
"""

from typing import List, Dict, Any, Optional, TypedDict
from dataclasses import dataclass, field
from decimal import Decimal
from datetime import date
from collections import Counter

FORMAT_A = "format-a"
FORMAT_B = "format-b"
DATA_TYPES = (FORMAT_A, FORMAT_B)


# =============================================================================
# TYPE DEFINITIONS
# =============================================================================

class NormalizedRecordDict(TypedDict, total=False):
    """Serialized record, as returned to upload callers."""
    order_date: str          # ISO date
    customer_number: Optional[str]
    customer_name: str
    title: str
    item_code: Optional[str]
    quantity: int
    total: str               # "37.50" - string keeps the exact decimal
    country: str
    city: str
    order_reference: str
    line_identifier: str
    source_file: Optional[str]
    source_row: Optional[int]
    upload_batch_id: Optional[str]
    data_type: str


class IngestionSummaryDict(TypedDict, total=False):
    inserted: List[Dict[str, Any]]
    insertedCount: int
    skipped: int
    unknownCustomers: int
    dataType: str
    failed: int
    rowsWithoutOrderKey: int
    rowsWithoutLineItem: int
    rejectedNames: Dict[str, int]
    sourceFile: str
    uploadBatchId: Optional[str]


# =============================================================================
# DATACLASS DEFINITIONS
# =============================================================================

@dataclass
class NormalizedRecord:
    """One canonical sales line."""
    order_date: date
    customer_name: str
    title: str
    item_code: Optional[str]
    quantity: int
    total: Decimal
    country: str
    city: str
    order_reference: str
    line_identifier: str
    data_type: str
    source_file: Optional[str] = None
    source_row: Optional[int] = None
    upload_batch_id: Optional[str] = None
    customer_number: Optional[str] = None  # Format B only

    def to_row(self) -> Dict[str, Any]:
        """Column values for the sales_records table."""
        return {
            "order_date": self.order_date,
            "customer_number": self.customer_number,
            "customer_name": self.customer_name,
            "title": self.title,
            "item_code": self.item_code,
            "quantity": self.quantity,
            "total": self.total,
            "country": self.country,
            "city": self.city,
            "order_reference": self.order_reference,
            "line_identifier": self.line_identifier,
            "source_file": self.source_file,
            "source_row": self.source_row,
            "upload_batch_id": self.upload_batch_id,
            "data_type": self.data_type,
        }

    def to_dict(self) -> NormalizedRecordDict:
        row = self.to_row()
        row["order_date"] = self.order_date.isoformat()
        row["total"] = f"{self.total:.2f}"
        return row


@dataclass
class IngestionSummary:
    """Per-file outcome of the pipeline."""
    data_type: str
    source_file: str
    upload_batch_id: Optional[str] = None
    inserted: List[Dict[str, Any]] = field(default_factory=list)
    skipped: int = 0
    unknown_customers: int = 0
    failed: int = 0
    rows_without_order_key: int = 0
    rows_without_line_item: int = 0
    rejected_names: Counter = field(default_factory=Counter)

    def to_dict(self) -> IngestionSummaryDict:
        return {
            "inserted": self.inserted,
            "insertedCount": len(self.inserted),
            "skipped": self.skipped,
            "unknownCustomers": self.unknown_customers,
            "dataType": self.data_type,
            "failed": self.failed,
            "rowsWithoutOrderKey": self.rows_without_order_key,
            "rowsWithoutLineItem": self.rows_without_line_item,
            "rejectedNames": dict(self.rejected_names),
            "sourceFile": self.source_file,
            "uploadBatchId": self.upload_batch_id,
        }
