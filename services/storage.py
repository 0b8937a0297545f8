"""
Storage Service Layer
Record store for normalized sales lines, upload log, aliases and customer exclusions.
"""
from sqlalchemy import select, delete, func, desc, update, and_
from sqlalchemy.exc import IntegrityError
from typing import List, Optional, Dict, Any, Protocol, Union
from dataclasses import dataclass
from decimal import Decimal
import logging

from database import AsyncSessionLocal, SalesRecord, UploadLog, CustomerAlias, CustomerExclusion
from schemas import NormalizedRecord, IngestionSummary
from settings import UNKNOWN, UNKNOWN_CUSTOMER
from services.alias_resolver import alias_key

logger = logging.getLogger(__name__)

# Customer fields that can be bulk-edited after ingestion
EDITABLE_CUSTOMER_FIELDS = ("country", "city")


@dataclass
class Stored:
    id: str
    record: NormalizedRecord


@dataclass
class DuplicateKeyViolation:
    record: NormalizedRecord
    detail: str = ""


InsertResult = Union[Stored, DuplicateKeyViolation]


class RecordStore(Protocol):
    """What the ingestion pipeline needs from a store."""

    async def exists(self, order_reference: str, title: str, item_code: str,
                     quantity: int, total: Union[Decimal, str]) -> bool: ...

    async def insert(self, record: NormalizedRecord) -> InsertResult: ...


def _is_unique_violation(exc: IntegrityError) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return "unique" in message or "duplicate key" in message


class StorageService:
    """Storage service providing database operations"""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or AsyncSessionLocal

    def get_session(self):
        """Get database session context manager"""
        return self.session_factory()

    # ---------- ingestion contract ----------

    async def exists(self, order_reference: str, title: str, item_code: str,
                     quantity: int, total: Union[Decimal, str]) -> bool:
        """True when a record with the same natural key is already stored."""
        async with self.get_session() as session:
            query = (
                select(SalesRecord.id)
                .where(and_(
                    SalesRecord.order_reference == order_reference,
                    SalesRecord.title == title,
                    func.coalesce(SalesRecord.item_code, "") == (item_code or ""),
                    SalesRecord.quantity == int(quantity),
                    SalesRecord.total == Decimal(str(total)),
                ))
                .limit(1)
            )
            result = await session.execute(query)
            return result.scalar_one_or_none() is not None

    async def insert(self, record: NormalizedRecord) -> InsertResult:
        """Insert one record; a uniqueness violation is returned, not raised."""
        async with self.get_session() as session:
            row = SalesRecord(**record.to_row())
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if not _is_unique_violation(e):
                    raise
                return DuplicateKeyViolation(record=record, detail=str(e.orig))
            return Stored(id=row.id, record=record)

    async def insert_many(self, records: List[NormalizedRecord]) -> List[InsertResult]:
        """Batched form of insert(); same per-record uniqueness contract."""
        results: List[InsertResult] = []
        for record in records:
            results.append(await self.insert(record))
        return results

    # ---------- records ----------

    async def get_records(self, limit: Optional[int] = None, upload_batch_id: Optional[str] = None) -> List[SalesRecord]:
        """Stored records, newest upload first"""
        async with self.get_session() as session:
            query = select(SalesRecord).order_by(desc(SalesRecord.upload_date), SalesRecord.source_row)
            if upload_batch_id:
                query = query.where(SalesRecord.upload_batch_id == upload_batch_id)
            if limit:
                query = query.limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def delete_record(self, record_id: str) -> bool:
        async with self.get_session() as session:
            result = await session.execute(delete(SalesRecord).where(SalesRecord.id == record_id))
            await session.commit()
            return (result.rowcount or 0) > 0

    # ---------- upload log ----------

    async def log_upload(self, summary: IngestionSummary) -> UploadLog:
        async with self.get_session() as session:
            entry = UploadLog(
                upload_batch_id=summary.upload_batch_id,
                filename=(summary.source_file or "")[:255],
                data_type=summary.data_type,
                records_count=len(summary.inserted),
                skipped_count=summary.skipped,
                unknown_customers=summary.unknown_customers,
                failed_count=summary.failed,
            )
            session.add(entry)
            await session.commit()
            await session.refresh(entry)
            return entry

    async def get_upload_log(self, limit: int = 100) -> List[UploadLog]:
        async with self.get_session() as session:
            query = select(UploadLog).order_by(desc(UploadLog.upload_date)).limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    # ---------- aliases ----------

    async def get_alias_map(self) -> Dict[str, str]:
        async with self.get_session() as session:
            result = await session.execute(select(CustomerAlias.raw_name, CustomerAlias.canonical_name))
            return {raw: canonical for raw, canonical in result.all()}

    async def set_alias(self, raw_name: str, canonical_name: str) -> None:
        key = alias_key(raw_name)
        async with self.get_session() as session:
            existing = await session.get(CustomerAlias, key)
            if existing:
                existing.canonical_name = canonical_name.strip()
            else:
                session.add(CustomerAlias(raw_name=key, canonical_name=canonical_name.strip()))
            await session.commit()

    async def delete_alias(self, raw_name: str) -> bool:
        key = alias_key(raw_name)
        async with self.get_session() as session:
            result = await session.execute(delete(CustomerAlias).where(CustomerAlias.raw_name == key))
            await session.commit()
            return (result.rowcount or 0) > 0

    # ---------- customers ----------

    async def get_exclusions(self) -> List[str]:
        async with self.get_session() as session:
            result = await session.execute(select(CustomerExclusion.customer_name).order_by(CustomerExclusion.customer_name))
            return list(result.scalars().all())

    async def add_exclusion(self, customer_name: str) -> None:
        async with self.get_session() as session:
            if await session.get(CustomerExclusion, customer_name) is None:
                session.add(CustomerExclusion(customer_name=customer_name))
                await session.commit()

    async def remove_exclusion(self, customer_name: str) -> bool:
        async with self.get_session() as session:
            result = await session.execute(
                delete(CustomerExclusion).where(CustomerExclusion.customer_name == customer_name)
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    async def get_customer_summary(self) -> Dict[str, Any]:
        """
        Per-customer totals and overall stats for reporting.
        Sentinel names and excluded customers are left out.
        """
        excluded = select(CustomerExclusion.customer_name)
        reportable = and_(
            SalesRecord.customer_name.notin_([UNKNOWN, UNKNOWN_CUSTOMER]),
            SalesRecord.customer_name.notin_(excluded),
        )
        revenue = func.sum(SalesRecord.total)

        async with self.get_session() as session:
            per_customer = await session.execute(
                select(
                    SalesRecord.customer_name,
                    SalesRecord.country,
                    func.count().label("total_orders"),
                    func.sum(SalesRecord.quantity).label("total_quantity"),
                    revenue.label("total_revenue"),
                    func.max(SalesRecord.order_date).label("last_order"),
                )
                .where(reportable)
                .group_by(SalesRecord.customer_name, SalesRecord.country)
                .order_by(desc(revenue))
            )
            overall = await session.execute(
                select(
                    func.count(func.distinct(SalesRecord.customer_name)),
                    func.count(func.distinct(SalesRecord.country)),
                    func.count(),
                    revenue,
                ).where(reportable)
            )
            total_customers, total_countries, total_orders, total_revenue = overall.one()

        customers = [
            {
                "customer_name": row.customer_name,
                "country": row.country,
                "total_orders": int(row.total_orders or 0),
                "total_quantity": int(row.total_quantity or 0),
                "total_revenue": f"{Decimal(str(row.total_revenue or 0)):.2f}",
                "last_order": row.last_order.isoformat() if hasattr(row.last_order, "isoformat") else row.last_order,
            }
            for row in per_customer.all()
        ]
        return {
            "customers": customers,
            "stats": {
                "total_customers": int(total_customers or 0),
                "total_countries": int(total_countries or 0),
                "total_orders": int(total_orders or 0),
                "total_revenue": f"{Decimal(str(total_revenue or 0)):.2f}",
            },
        }

    async def update_customer_location(self, customer_name: str, field: str, value: str) -> int:
        """Bulk-edit country or city for every record of one customer; returns rows changed."""
        if field not in EDITABLE_CUSTOMER_FIELDS:
            raise ValueError(f"Unsupported customer field: {field}")
        async with self.get_session() as session:
            result = await session.execute(
                update(SalesRecord)
                .where(SalesRecord.customer_name == customer_name)
                .values(**{field: (value or "").strip() or UNKNOWN})
            )
            await session.commit()
            logger.info(f"Updated {field} for customer {customer_name!r}: {result.rowcount} rows")
            return result.rowcount or 0


storage = StorageService()
