"""
Sales Upload Router
Accepts Format A / Format B exports and runs them through ingestion synchronously.
"""
from fastapi import APIRouter, UploadFile, File, HTTPException, Depends, Form, Query, Request
from typing import Optional
import logging
import os
import uuid

from services.alias_resolver import AliasResolver
from services.exceptions import InputMalformedError
from services.sales_processor import SalesFileProcessor
from services.storage import StorageService, storage
from settings import (
    ALLOWED_UPLOAD_EXTENSIONS,
    MAX_UPLOAD_SIZE_MB,
    load_alias_file,
    resolve_data_type,
    resolve_upload_batch_id,
)
from utils import with_retry

logger = logging.getLogger(__name__)
router = APIRouter()


def get_storage() -> StorageService:
    return storage


async def load_aliases(store: StorageService) -> AliasResolver:
    """File-configured aliases overlaid by the ones managed in the database."""
    db_aliases = await with_retry(store.get_alias_map, max_retries=2)
    return AliasResolver.merged(load_alias_file(), db_aliases)


@router.post("/upload")
async def upload_sales_file(
    request: Request,
    file: UploadFile = File(...),
    dataType: Optional[str] = Form(None),
    uploadBatchId: Optional[str] = Form(None),
    store: StorageService = Depends(get_storage),
):
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
    upload_batch_id = resolve_upload_batch_id(uploadBatchId) or request_id
    try:
        logger.info(
            f"[{upload_batch_id}] Upload attempt filename={file.filename!r} "
            f"dataType={dataType!r} content_type={file.content_type!r}"
        )

        ext = os.path.splitext((file.filename or "").lower())[1]
        if not file.filename or ext not in ALLOWED_UPLOAD_EXTENSIONS:
            logger.warning(f"[{upload_batch_id}] Reject unsupported filename={file.filename!r}")
            raise HTTPException(
                status_code=400,
                detail=f"Unsupported file type. Allowed: {', '.join(ALLOWED_UPLOAD_EXTENSIONS)}",
            )

        if dataType and dataType.strip().lower() != "auto" and resolve_data_type(dataType) is None:
            raise HTTPException(status_code=400, detail="Invalid dataType. Must be one of: format-a, format-b, auto")

        content = await file.read()
        size = len(content or b"")
        logger.info(f"[{upload_batch_id}] Received payload size={size} bytes")

        if size == 0:
            raise HTTPException(status_code=400, detail="Empty file")

        if size > MAX_UPLOAD_SIZE_MB * 1024 * 1024:
            raise HTTPException(status_code=400, detail=f"File too large. Maximum size is {MAX_UPLOAD_SIZE_MB:g}MB")

        aliases = await load_aliases(store)
        processor = SalesFileProcessor(store, aliases)
        summary = await processor.process_upload(
            content,
            file.filename,
            upload_batch_id=upload_batch_id,
            content_type=file.content_type,
            data_type=dataType,
        )
        return {**summary.to_dict(), "requestId": request_id}

    except HTTPException as he:
        logger.error(f"[{upload_batch_id}] HTTP {he.status_code} during upload: {he.detail}")
        raise
    except InputMalformedError as e:
        logger.warning(f"[{upload_batch_id}] Malformed input: {e}")
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.exception(f"[{upload_batch_id}] Upload error")
        raise HTTPException(status_code=500, detail=f"Upload failed: {str(e)}")


@router.get("/records")
async def list_records(
    limit: Optional[int] = Query(None, ge=1, le=10000),
    uploadBatchId: Optional[str] = Query(None),
    store: StorageService = Depends(get_storage),
):
    records = await store.get_records(limit=limit, upload_batch_id=uploadBatchId)
    return [r.to_dict() for r in records]


@router.delete("/records/{record_id}")
async def delete_record(record_id: str, store: StorageService = Depends(get_storage)):
    if not await store.delete_record(record_id):
        raise HTTPException(status_code=404, detail="Record not found")
    return {"success": True}


@router.get("/upload-log")
async def upload_log(
    limit: int = Query(100, ge=1, le=1000),
    store: StorageService = Depends(get_storage),
):
    entries = await store.get_upload_log(limit=limit)
    return [
        {
            "id": e.id,
            "uploadBatchId": e.upload_batch_id,
            "filename": e.filename,
            "dataType": e.data_type,
            "recordsCount": e.records_count,
            "skippedCount": e.skipped_count,
            "unknownCustomers": e.unknown_customers,
            "failedCount": e.failed_count,
            "uploadDate": e.upload_date.isoformat() if e.upload_date else None,
        }
        for e in entries
    ]
