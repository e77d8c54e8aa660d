"""Catalog routes shared by every cached collection.

``build_collection_router`` is called once per resource; core errors are
turned into HTTP errors by the handler registered in ``marketplace.main``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time

from fastapi import APIRouter, Depends, Query, Request, Response

from marketplace.api.dependencies import collection_dependency
from marketplace.models.document import DocumentCreate, DocumentUpdate, LikeRequest
from marketplace.services.collection import CachedCollection
from marketplace.utils.validators import parse_bool_flag, parse_int

logger = logging.getLogger(__name__)

LIST_CACHE_CONTROL = "public, max-age=300"


def _etag(payload) -> str:
    digest = hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode()).hexdigest()
    return f'W/"{digest[:32]}"'


def _cacheable(request: Request, response: Response, payload: dict, etag_source=None):
    """Attach caching headers; answer 304 when the client copy is current."""
    etag = _etag(payload if etag_source is None else etag_source)
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers={"ETag": etag})
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = LIST_CACHE_CONTROL
    return payload


def build_collection_router(name: str, prefix: str, tag: str) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[tag])
    get_collection = collection_dependency(name)

    @router.get("")
    async def list_documents(
        request: Request,
        response: Response,
        search: str | None = None,
        search_query: str | None = Query(default=None, alias="searchQuery"),
        category: str | None = None,
        tags: str | None = None,
        featured: str | None = None,
        created_by: str | None = Query(default=None, alias="createdBy"),
        limit: str | None = None,
        offset: str | None = None,
        collection: CachedCollection = Depends(get_collection),
    ):
        start = time.time()
        query = collection.build_query(
            search=search if search is not None else search_query,
            category=category,
            tags=tags,
            featured=featured,
            created_by=created_by,
            limit=limit,
            offset=offset,
        )
        result = await collection.list(query)
        body = {"success": True, **result}
        # fromCache and timing differ between identical pages
        etag_source = {k: v for k, v in result.items() if k != "fromCache"}
        body["responseTime"] = round((time.time() - start) * 1000, 2)
        return _cacheable(request, response, body, etag_source)

    @router.get("/count")
    async def count_documents(collection: CachedCollection = Depends(get_collection)):
        total, from_cache = await collection.count()
        return {"success": True, "count": total, "fromCache": from_cache}

    @router.get("/categories")
    async def list_categories(collection: CachedCollection = Depends(get_collection)):
        categories, from_cache = await collection.categories()
        return {"success": True, "data": categories, "fromCache": from_cache}

    @router.get("/categories/{category}/count")
    async def count_category(
        category: str, collection: CachedCollection = Depends(get_collection)
    ):
        total, from_cache = await collection.category_count(category)
        return {"success": True, "category": category, "count": total, "fromCache": from_cache}

    @router.get("/featured")
    async def list_featured(
        limit: str | None = None,
        collection: CachedCollection = Depends(get_collection),
    ):
        size = parse_int(limit, collection.featured_limit)
        if size <= 0:
            size = collection.featured_limit
        items, from_cache = await collection.featured(size)
        return {
            "success": True,
            collection.spec.items_field: items,
            "count": len(items),
            "fromCache": from_cache,
        }

    @router.get("/user/{user_id}/liked")
    async def list_liked(user_id: str, collection: CachedCollection = Depends(get_collection)):
        items = await collection.liked_by(user_id)
        return {"success": True, collection.spec.items_field: items, "count": len(items)}

    @router.post("/cache/refresh")
    async def refresh_cache(collection: CachedCollection = Depends(get_collection)):
        snapshot = await collection.refresh()
        return {
            "success": True,
            "message": f"{collection.spec.label} cache refreshed",
            "documentCount": len(snapshot),
            "status": collection.cache_status(),
        }

    @router.get("/{doc_id}")
    async def get_document(
        doc_id: str,
        request: Request,
        response: Response,
        skip_cache: str | None = Query(default=None, alias="skipCache"),
        refresh: str | None = None,
        collection: CachedCollection = Depends(get_collection),
    ):
        bypass = bool(parse_bool_flag(skip_cache) or parse_bool_flag(refresh))
        doc, from_cache = await collection.get(doc_id, skip_cache=bypass)
        body = {"success": True, "data": doc, "fromCache": from_cache}
        return _cacheable(request, response, body, doc)

    @router.post("", status_code=201)
    async def create_document(
        body: DocumentCreate,
        collection: CachedCollection = Depends(get_collection),
    ):
        created = await collection.create(body.to_document())
        return {
            "success": True,
            "message": f"{collection.spec.label} created successfully",
            "data": created,
        }

    @router.put("/{doc_id}")
    async def update_document(
        doc_id: str,
        body: DocumentUpdate,
        collection: CachedCollection = Depends(get_collection),
    ):
        updated = await collection.update(doc_id, body.to_document())
        return {
            "success": True,
            "message": f"{collection.spec.label} updated successfully",
            "data": updated,
        }

    @router.delete("/{doc_id}")
    async def delete_document(doc_id: str, collection: CachedCollection = Depends(get_collection)):
        await collection.delete(doc_id)
        return {"success": True, "message": f"{collection.spec.label} deleted successfully"}

    @router.post("/{doc_id}/like")
    async def toggle_like(
        doc_id: str,
        body: LikeRequest,
        collection: CachedCollection = Depends(get_collection),
    ):
        result = await collection.toggle_like(doc_id, body.user_id)
        return {"success": True, "data": result}

    @router.post("/{doc_id}/view")
    async def record_view(doc_id: str, collection: CachedCollection = Depends(get_collection)):
        views = await collection.record_view(doc_id)
        return {"success": True, "data": {"id": doc_id, "viewCount": views}}

    return router
