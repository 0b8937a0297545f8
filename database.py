# --- models and engine for the sales record store ---

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import (
    String, Text, Integer, Numeric, Date, DateTime,
    func, Index, UniqueConstraint, text
)
from sqlalchemy.pool import StaticPool
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncGenerator, Dict, Any, Optional
import logging, os, uuid

# Load environment variables early (before reading DATABASE_URL)
from dotenv import load_dotenv
load_dotenv()

logger = logging.getLogger(__name__)

# -------------------------------------------------------------------
# Engine / Session
# -------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "")


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine; empty URL means an in-memory SQLite store."""
    if not url:
        return create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            echo=os.getenv("NODE_ENV") == "development",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    if url.startswith("sqlite"):
        return create_async_engine(url, echo=os.getenv("NODE_ENV") == "development")

    return create_async_engine(
        url,
        echo=os.getenv("NODE_ENV") == "development",
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_timeout=15,
    )


engine = build_engine(DATABASE_URL)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _redact_db_url(url: str) -> str:
    if not url:
        return "sqlite+aiosqlite:///:memory:"
    try:
        if "@" in url and "://" in url:
            head, tail = url.split("://", 1)
            creds, hostpart = tail.split("@", 1)
            if ":" in creds:
                user, _pwd = creds.split(":", 1)
                return f"{head}://{user}:******@{hostpart}"
    except ValueError:
        pass
    return "******"

logger.info(f"Creating SQL engine for { _redact_db_url(DATABASE_URL) }")

# -------------------------------------------------------------------
# Base
# -------------------------------------------------------------------
class Base(DeclarativeBase):
    pass

# -------------------------------------------------------------------
# MODELS
# -------------------------------------------------------------------

class SalesRecord(Base):
    __tablename__ = "sales_records"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    customer_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)   # Format B only
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    item_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    # Location is editable after insert (bulk customer edits), so it is not part of the key
    country: Mapped[str] = mapped_column(String(100), nullable=False, default="Unknown")
    city: Mapped[str] = mapped_column(String(100), nullable=False, default="Unknown")

    order_reference: Mapped[str] = mapped_column(String(255), nullable=False)
    line_identifier: Mapped[str] = mapped_column(Text, nullable=False)

    source_file: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_row: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    upload_batch_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    data_type: Mapped[str] = mapped_column(String(20), nullable=False)

    upload_date: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("order_reference", "line_identifier", name="uq_sales_records_order_line"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_date": self.order_date.isoformat() if self.order_date is not None else None,
            "customer_number": self.customer_number,
            "customer_name": self.customer_name,
            "title": self.title,
            "item_code": self.item_code,
            "quantity": self.quantity,
            "total": f"{Decimal(self.total):.2f}" if self.total is not None else None,
            "country": self.country,
            "city": self.city,
            "order_reference": self.order_reference,
            "line_identifier": self.line_identifier,
            "source_file": self.source_file,
            "source_row": self.source_row,
            "upload_batch_id": self.upload_batch_id,
            "data_type": self.data_type,
            "upload_date": self.upload_date.isoformat() if self.upload_date is not None else None,
        }


class UploadLog(Base):
    __tablename__ = "upload_log"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    upload_batch_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    data_type: Mapped[str] = mapped_column(String(20), nullable=False)
    records_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unknown_customers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    upload_date: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)


class CustomerAlias(Base):
    __tablename__ = "customer_aliases"

    # Stored uppercased; lookups are case-insensitive
    raw_name: Mapped[str] = mapped_column(String(255), primary_key=True)
    canonical_name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)


class CustomerExclusion(Base):
    __tablename__ = "customer_exclusions"

    customer_name: Mapped[str] = mapped_column(String(255), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)

# -------------------------------------------------------------------
# Indexes
# -------------------------------------------------------------------
Index('ix_sales_records_customer_name', SalesRecord.customer_name)
Index('ix_sales_records_order_reference', SalesRecord.order_reference)
Index('ix_upload_log_upload_date', UploadLog.upload_date)

# -------------------------------------------------------------------
# DI + init helpers
# -------------------------------------------------------------------
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def probe_db_connection(bind: Optional[AsyncEngine] = None) -> bool:
    try:
        async with (bind or engine).begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("DB connectivity probe: OK")
        return True
    except Exception as e:
        logger.exception(f"DB connectivity probe failed: {e}")
        return False


async def init_db(bind: Optional[AsyncEngine] = None):
    """Ensure tables exist."""
    await probe_db_connection(bind)
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("DB init complete (tables ensured).")


async def check_db_health() -> Dict[str, Any]:
    ok = await probe_db_connection()
    return {
        "status": "healthy" if ok else "unhealthy",
        "url": _redact_db_url(DATABASE_URL),
    }
