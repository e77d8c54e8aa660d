"""Cache maintenance routes across every catalog resource."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from marketplace.api.dependencies import get_collections, get_kv, resolve_resource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cache", tags=["cache"])


@router.get("/status")
async def cache_status(request: Request):
    collections = get_collections(request)
    kv = get_kv(request)
    return {
        "success": True,
        "cacheStoreAvailable": await kv.ping(),
        "snapshots": {name: c.cache_status() for name, c in collections.items()},
    }


@router.delete("/clear")
async def clear_cache(request: Request):
    """Drop every cached key for every resource; snapshots are kept."""
    purged = {}
    for name, collection in get_collections(request).items():
        purged[name] = await collection.clear_cache()
    logger.info("Cache cleared: %s", purged)
    return {"success": True, "message": "Cache cleared", "purged": purged}


@router.post("/refresh/{resource}")
async def refresh_resource(resource: str, request: Request):
    collection = resolve_resource(request, resource)
    snapshot = await collection.refresh()
    return {
        "success": True,
        "message": f"{collection.name} cache refreshed",
        "documentCount": len(snapshot),
        "status": collection.cache_status(),
    }
