"""
Deduplication Service
Deterministic line identity plus the insert-if-absent guard in front of the record store.

The natural key is (order_reference, title, item_code or "", quantity, total).
line_identifier is the same key flattened into one string and is what the
store's uniqueness constraint sees alongside order_reference.
"""
import re
import logging
from decimal import Decimal
from typing import Optional, Set, Tuple, Union

from schemas import NormalizedRecord
from services.storage import DuplicateKeyViolation, RecordStore

logger = logging.getLogger(__name__)

INSERTED = "inserted"
DUPLICATE = "duplicate"

_NON_ALNUM_RE = re.compile(r"[^0-9A-Za-z]")

DuplicateKey = Tuple[str, str, str, int, str]


def normalize_alnum(value: Optional[str]) -> str:
    """Drop every non-alphanumeric character (None -> "")."""
    if value is None:
        return ""
    return _NON_ALNUM_RE.sub("", str(value))


def normalize_alnum_lower(value: Optional[str]) -> str:
    return normalize_alnum(value).lower()


def format_total(total: Union[Decimal, int, float, str]) -> str:
    return f"{Decimal(str(total)):.2f}"


def build_line_identifier(order_key: str, title: Optional[str], item_code: Optional[str],
                          quantity: int, total: Union[Decimal, int, float, str]) -> str:
    """Join the duplicate key into one deterministic string."""
    return "|".join([
        str(order_key),
        normalize_alnum_lower(title),
        normalize_alnum(item_code),
        str(int(quantity)),
        format_total(total),
    ])


def duplicate_key(record: NormalizedRecord) -> DuplicateKey:
    """Compound natural key as queried against the store."""
    return (
        record.order_reference,
        record.title,
        record.item_code or "",
        int(record.quantity),
        format_total(record.total),
    )


class DeduplicationService:
    """
    Existence guard for one upload.

    check -> insert against the store; a uniqueness violation raised by the
    store on insert counts the same as a pre-detected duplicate. Keys admitted
    earlier in the same upload are skipped without a store round trip.
    Unexpected store errors propagate to the caller.
    """

    def __init__(self, store: RecordStore):
        self.store = store
        self.seen_keys: Set[DuplicateKey] = set()

    async def admit(self, record: NormalizedRecord) -> Tuple[str, Optional[str]]:
        """Returns (INSERTED, stored_id) or (DUPLICATE, None)."""
        key = duplicate_key(record)
        if key in self.seen_keys:
            logger.debug(f"Skipping in-file duplicate: {record.line_identifier}")
            return DUPLICATE, None

        if await self.store.exists(*key):
            self.seen_keys.add(key)
            logger.debug(f"Skipping stored duplicate: {record.line_identifier}")
            return DUPLICATE, None

        result = await self.store.insert(record)
        self.seen_keys.add(key)
        if isinstance(result, DuplicateKeyViolation):
            logger.info(f"Uniqueness constraint caught a concurrent duplicate: {record.line_identifier}")
            return DUPLICATE, None
        return INSERTED, result.id
