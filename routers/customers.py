"""
Customer Router
Reporting view over ingested records plus the admin edits that feed it:
bulk location fixes, report exclusions and name aliases.
"""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
import logging

from routers.uploads import get_storage
from services.storage import EDITABLE_CUSTOMER_FIELDS, StorageService

logger = logging.getLogger(__name__)
router = APIRouter()


class UpdateCustomerRequest(BaseModel):
    customerName: str
    field: str
    value: str


class ExclusionRequest(BaseModel):
    customerName: str


class AliasRequest(BaseModel):
    rawName: str
    canonicalName: str


@router.get("/customers")
async def customer_summary(store: StorageService = Depends(get_storage)):
    return await store.get_customer_summary()


@router.post("/customers/update")
async def update_customer(body: UpdateCustomerRequest, store: StorageService = Depends(get_storage)):
    if body.field not in EDITABLE_CUSTOMER_FIELDS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported field. Must be one of: {', '.join(EDITABLE_CUSTOMER_FIELDS)}",
        )
    updated = await store.update_customer_location(body.customerName, body.field, body.value)
    return {"success": True, "updated": updated}


@router.get("/customers/exclusions")
async def list_exclusions(store: StorageService = Depends(get_storage)):
    return {"exclusions": await store.get_exclusions()}


@router.post("/customers/exclusions")
async def add_exclusion(body: ExclusionRequest, store: StorageService = Depends(get_storage)):
    name = body.customerName.strip()
    if not name:
        raise HTTPException(status_code=400, detail="customerName is required")
    await store.add_exclusion(name)
    logger.info(f"Excluded customer from reports: {name!r}")
    return {"success": True}


@router.delete("/customers/exclusions/{customer_name}")
async def remove_exclusion(customer_name: str, store: StorageService = Depends(get_storage)):
    if not await store.remove_exclusion(customer_name):
        raise HTTPException(status_code=404, detail="Exclusion not found")
    return {"success": True}


@router.get("/customers/aliases")
async def list_aliases(store: StorageService = Depends(get_storage)):
    return {"aliases": await store.get_alias_map()}


@router.post("/customers/aliases")
async def set_alias(body: AliasRequest, store: StorageService = Depends(get_storage)):
    if not body.rawName.strip() or not body.canonicalName.strip():
        raise HTTPException(status_code=400, detail="rawName and canonicalName are required")
    await store.set_alias(body.rawName, body.canonicalName)
    return {"success": True}


@router.delete("/customers/aliases/{raw_name}")
async def delete_alias(raw_name: str, store: StorageService = Depends(get_storage)):
    if not await store.delete_alias(raw_name):
        raise HTTPException(status_code=404, detail="Alias not found")
    return {"success": True}
