"""
Sales File Processor
Runs one uploaded export through the ingestion pipeline:
classify -> read rows -> aggregate/map -> duplicate guard -> insert.
"""
import time
import logging
from datetime import date
from typing import Optional

from schemas import FORMAT_A, IngestionSummary
from services.alias_resolver import AliasResolver
from services.deduplication import DeduplicationService, INSERTED
from services.format_classifier import choose_format
from services.order_aggregator import aggregate_orders
from services.positional_mapper import map_rows
from services.row_reader import read_rows
from services.storage import RecordStore
from utils import is_transient_error

logger = logging.getLogger(__name__)


class SalesFileProcessor:
    """
    Ingestion pipeline for one file at a time.

    The store and alias table are injected so each upload resolves against an
    explicit alias set. Malformed input raises InputMalformedError before
    anything is inserted; per-record store failures are logged, counted in
    summary.failed and skipped.
    """

    def __init__(self, store: RecordStore, aliases: Optional[AliasResolver] = None):
        self.store = store
        self.aliases = aliases or AliasResolver()

    async def process_upload(
        self,
        content: bytes,
        filename: str,
        upload_batch_id: Optional[str] = None,
        content_type: Optional[str] = None,
        data_type: Optional[str] = None,
        today: Optional[date] = None,
    ) -> IngestionSummary:
        t0 = time.time()
        data_type = choose_format(filename, content_type, data_type)
        summary = IngestionSummary(data_type=data_type, source_file=filename, upload_batch_id=upload_batch_id)

        logger.info(f"[{upload_batch_id}] ========== SALES INGESTION STARTED ==========")
        logger.info(f"[{upload_batch_id}] file={filename!r} type={data_type} bytes={len(content)}")

        rows = read_rows(content, data_type, filename)
        logger.info(f"[{upload_batch_id}] Read {len(rows)} rows")

        if data_type == FORMAT_A:
            records = aggregate_orders(rows, self.aliases, summary, today=today)
        else:
            records = map_rows(rows, self.aliases, summary, today=today)

        guard = DeduplicationService(self.store)
        for record in records:
            try:
                outcome, stored_id = await guard.admit(record)
            except Exception as e:
                summary.failed += 1
                logger.exception(
                    f"[{upload_batch_id}] Store error on row {record.source_row} "
                    f"({record.line_identifier}), transient={is_transient_error(e)}; skipping"
                )
                continue

            if outcome == INSERTED:
                inserted = record.to_dict()
                inserted["id"] = stored_id
                summary.inserted.append(inserted)
            else:
                summary.skipped += 1

        await self._log_upload(summary)

        dur_ms = int((time.time() - t0) * 1000)
        logger.info(f"[{upload_batch_id}] ========== SALES INGESTION COMPLETED ==========")
        logger.info(
            f"[{upload_batch_id}] Type: {data_type} | Inserted: {len(summary.inserted)} | "
            f"Skipped: {summary.skipped} | Unknown customers: {summary.unknown_customers} | "
            f"Failed: {summary.failed} | Duration: {dur_ms}ms"
        )
        if summary.rejected_names:
            logger.info(f"[{upload_batch_id}] Rejected customer candidates: {dict(summary.rejected_names)}")
        return summary

    async def _log_upload(self, summary: IngestionSummary) -> None:
        log_upload = getattr(self.store, "log_upload", None)
        if log_upload is None:
            return
        try:
            await log_upload(summary)
        except Exception:
            logger.exception(f"[{summary.upload_batch_id}] Could not write upload log entry")
