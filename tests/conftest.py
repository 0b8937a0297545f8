import asyncio
import os
import sys
import uuid
from decimal import Decimal
from pathlib import Path

import pytest

os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("INIT_DB_ON_STARTUP", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from database import init_db
from services.deduplication import duplicate_key
from services.storage import DuplicateKeyViolation, Stored, StorageService


class InMemoryRecordStore:
    """Record store double keyed on the natural duplicate key."""

    def __init__(self):
        self.records = {}
        self.keys = set()
        self.uploads = []
        self.exists_calls = 0

    async def exists(self, order_reference, title, item_code, quantity, total):
        self.exists_calls += 1
        key = (order_reference, title, item_code or "", int(quantity), f"{Decimal(str(total)):.2f}")
        return key in self.keys

    async def insert(self, record):
        key = duplicate_key(record)
        if key in self.keys:
            return DuplicateKeyViolation(record=record, detail="duplicate")
        record_id = str(uuid.uuid4())
        self.keys.add(key)
        self.records[record_id] = record
        return Stored(id=record_id, record=record)

    async def log_upload(self, summary):
        self.uploads.append(summary)


@pytest.fixture
def memory_store():
    return InMemoryRecordStore()


@pytest.fixture
def sqlite_engine(tmp_path):
    # NullPool: every session opens its own connection, so separate asyncio.run() calls are safe
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sales.db'}", poolclass=NullPool)
    asyncio.run(init_db(engine))
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def sqlite_store(sqlite_engine):
    return StorageService(async_sessionmaker(sqlite_engine, class_=AsyncSession, expire_on_commit=False))


def shopify_csv(*rows, header=None):
    """Build Format A bytes from header and row lists."""
    header = header or [
        "Name", "Created at", "Lineitem name", "Lineitem quantity", "Lineitem price", "Lineitem sku",
        "Billing Company", "Billing Name", "Billing City", "Billing Country",
        "Shipping Company", "Shipping Name", "Shipping City", "Shipping Country",
    ]
    lines = [",".join(header)]
    for row in rows:
        lines.append(",".join(f'"{row.get(h, "")}"' if "," in str(row.get(h, "")) else str(row.get(h, "")) for h in header))
    return ("\n".join(lines) + "\n").encode("utf-8")


def gazelle_xlsx(*rows):
    """Build Format B bytes: one header row then positional rows."""
    from io import BytesIO
    from openpyxl import Workbook

    wb = Workbook()
    ws = wb.active
    ws.append(["Date", "Order", "Cus No", "Customer", "Addr", "Title", "Fmt", "EAN", "Qty", "Total"])
    for row in rows:
        ws.append(list(row))
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()
