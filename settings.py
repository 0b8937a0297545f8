"""
Centralized configuration for sales-export ingestion.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

MAX_UPLOAD_SIZE_MB: float = float(os.getenv("MAX_UPLOAD_SIZE_MB", "50"))

# Extensions accepted by the upload endpoint. Legacy .xls is accepted and
# reported as unreadable by the spreadsheet reader.
ALLOWED_UPLOAD_EXTENSIONS: tuple[str, ...] = (".csv", ".tsv", ".txt", ".xlsx", ".xlsm", ".xls")

DELIMITED_EXTENSIONS: tuple[str, ...] = (".csv", ".tsv", ".txt")
SPREADSHEET_EXTENSIONS: tuple[str, ...] = (".xlsx", ".xlsm", ".xls")
DELIMITED_CONTENT_TYPES: tuple[str, ...] = (
    "text/csv",
    "application/csv",
    "text/tab-separated-values",
)

# Filename fragments that identify a Format A (Shopify) export regardless of extension.
FORMAT_A_FILENAME_TOKENS: tuple[str, ...] = tuple(
    token.strip().lower()
    for token in os.getenv("FORMAT_A_FILENAME_TOKENS", "shopify,orders_export").split(",")
    if token.strip()
)

# Format A column labels (Shopify order export).
FORMAT_A_ORDER_KEY_COLUMN = "Name"
FORMAT_A_DATE_COLUMN = "Created at"
FORMAT_A_TITLE_COLUMN = "Lineitem name"
FORMAT_A_QUANTITY_COLUMN = "Lineitem quantity"
FORMAT_A_PRICE_COLUMN = "Lineitem price"
FORMAT_A_SKU_COLUMN = "Lineitem sku"

# Candidate columns per resolved order attribute, highest priority first.
FORMAT_A_CUSTOMER_COLUMNS: tuple[str, ...] = ("Billing Company", "Shipping Company", "Billing Name", "Shipping Name")
FORMAT_A_COUNTRY_COLUMNS: tuple[str, ...] = ("Billing Country", "Shipping Country")
FORMAT_A_CITY_COLUMNS: tuple[str, ...] = ("Billing City", "Shipping City")

# Format B positional table (0-based column index in the first worksheet).
FORMAT_B_COLUMNS: Dict[str, int] = {
    "order_date": 0,
    "order_reference": 1,
    "customer_number": 2,
    "customer_name": 3,
    "title": 5,
    "item_code": 7,
    "quantity": 8,
    "total": 9,
}

FORMAT_B_DEFAULT_COUNTRY: str = os.getenv("FORMAT_B_DEFAULT_COUNTRY", "UK")

UNKNOWN = "Unknown"
UNKNOWN_CUSTOMER = "Unknown Customer"

CUSTOMER_ALIASES_PATH: Optional[str] = os.getenv("CUSTOMER_ALIASES_PATH") or None

CORS_ORIGINS: tuple[str, ...] = tuple(
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5000").split(",")
    if origin.strip()
) or ("http://localhost:3000",)

# Only state-changing API calls (uploads, deletes, edits) count against the limit.
RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
RATE_LIMIT_RPM: int = int(os.getenv("RATE_LIMIT_RPM", "120"))
RATE_LIMITED_METHODS: tuple[str, ...] = ("POST", "PUT", "PATCH", "DELETE")

# Caller-facing names for the two export formats.
DATA_TYPE_ALIASES: Dict[Optional[str], Optional[str]] = {
    "format-a": "format-a",
    "format_a": "format-a",
    "shopify": "format-a",
    "format-b": "format-b",
    "format_b": "format-b",
    "gazelle": "format-b",
    "auto": None,
    "": None,
    None: None,
}


def sanitize_batch_id(value: Optional[Any]) -> Optional[str]:
    """Normalize a caller-supplied upload batch id (strip whitespace, drop empties)."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    text = str(value).strip()
    if not text:
        return None
    return text[:64]


def resolve_upload_batch_id(*candidates: Optional[Any]) -> Optional[str]:
    """Pick the first usable batch id from candidates; None when none is usable."""
    for candidate in candidates:
        normalized = sanitize_batch_id(candidate)
        if normalized:
            return normalized
    return None


def resolve_data_type(value: Optional[str]) -> Optional[str]:
    """
    Map a caller-declared data type to "format-a"/"format-b".
    Returns None for "auto" or anything unrecognized so classification decides.
    """
    key = value.strip().lower() if isinstance(value, str) else value
    return DATA_TYPE_ALIASES.get(key)


def load_alias_file(path: Optional[str] = None) -> Dict[str, str]:
    """
    Load an alias map from a JSON object file ({"RAW NAME": "Canonical Name"}).
    A missing or unreadable file yields an empty map.
    """
    path = path or CUSTOMER_ALIASES_PATH
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        logger.warning(f"Alias file not found: {p}")
        return {}
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error(f"Could not read alias file {p}: {e}")
        return {}
    if not isinstance(data, Mapping):
        logger.error(f"Alias file {p} must contain a JSON object")
        return {}
    return {str(k): str(v) for k, v in data.items() if k and v}


def init_db_on_startup(database_url: Optional[str]) -> bool:
    """Create tables at startup? Defaults to yes for the in-memory store, which starts empty."""
    default = "false" if database_url else "true"
    return os.getenv("INIT_DB_ON_STARTUP", default).lower() == "true"
