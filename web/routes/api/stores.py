"""Store listing endpoints."""
from typing import List

from fastapi import APIRouter, HTTPException, Request

from core.dates import iso
from web.schemas import StoreResponse, DefaultStoreResponse
from ._deps import limiter, get_store, get_logger, route_errors

router = APIRouter()
logger = get_logger(__name__)


@router.get("/stores", response_model=List[StoreResponse])
@limiter.limit("60/minute")
async def list_stores(request: Request):
    """All stores, oldest first. Woo credentials are never returned."""
    with route_errors("List stores", logger):
        store = await get_store()
        rows = await store.list_stores()
    return [
        {
            "id": r["id"],
            "name": r["name"],
            "wooBaseUrl": r["woo_base_url"],
            "createdAt": iso(r["created_at"]),
        }
        for r in rows
    ]


@router.get("/stores/default", response_model=DefaultStoreResponse)
@limiter.limit("60/minute")
async def get_default_store(request: Request):
    with route_errors("Default store", logger):
        store = await get_store()
        default = await store.get_default_store()
    if default is None:
        raise HTTPException(status_code=404, detail="No stores found")
    return default
