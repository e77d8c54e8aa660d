"""Collection wiring and FastAPI dependencies.

Collections live on ``app.state.collections`` (resource name -> collection)
and handlers fetch them per request, so tests can swap in their own stores.
"""

from __future__ import annotations

import asyncio
import logging

import aiosqlite
from fastapi import HTTPException, Request

from marketplace.config import Settings, settings
from marketplace.errors import (
    CollaboratorUnavailableError,
    DocumentNotFoundError,
    InvalidDocumentIdError,
    SnapshotUnavailableError,
)
from marketplace.models.common import error_detail
from marketplace.services.collection import AI_TOOLS, PROMPTS, CachedCollection, CollectionSpec
from marketplace.services.document_store import SQLiteDocumentStore
from marketplace.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

COLLECTION_SPECS: tuple[CollectionSpec, ...] = (PROMPTS, AI_TOOLS)

# URL spellings accepted for each resource
RESOURCE_ALIASES = {
    "prompts": "prompts",
    "ai_tools": "ai_tools",
    "ai-tools": "ai_tools",
}


def build_collections(
    db: aiosqlite.Connection,
    kv: KeyValueStore,
    config: Settings = settings,
) -> dict[str, CachedCollection]:
    # One write lock per connection: transactions must not interleave
    write_lock = asyncio.Lock()
    return {
        spec.name: CachedCollection(
            spec,
            SQLiteDocumentStore(db, spec.name, write_lock),
            kv,
            staleness_seconds=config.snapshot_staleness_seconds,
            result_ttl=config.result_cache_ttl,
            document_ttl=config.document_cache_ttl,
            default_page_size=config.default_page_size,
            featured_limit=config.featured_default_limit,
        )
        for spec in COLLECTION_SPECS
    }


def get_collections(request: Request) -> dict[str, CachedCollection]:
    collections = getattr(request.app.state, "collections", None)
    if collections is None:
        raise RuntimeError("Collections not initialized. Check lifespan setup.")
    return collections


def get_kv(request: Request) -> KeyValueStore:
    kv = getattr(request.app.state, "kv", None)
    if kv is None:
        raise RuntimeError("Cache store not initialized. Check lifespan setup.")
    return kv


def collection_dependency(name: str):
    """Dependency returning the collection registered under ``name``."""

    def _get(request: Request) -> CachedCollection:
        return get_collections(request)[name]

    return _get


def resolve_resource(request: Request, resource: str) -> CachedCollection:
    name = RESOURCE_ALIASES.get(resource.strip().lower())
    collections = get_collections(request)
    if name is None or name not in collections:
        raise HTTPException(
            status_code=400,
            detail=error_detail(
                "VALIDATION_ERROR",
                f"Unknown resource '{resource}'. Use one of: {', '.join(sorted(collections))}",
            ),
        )
    return collections[name]


def to_http_exception(exc: Exception) -> HTTPException:
    """Map a core error onto the HTTP error shape."""
    if isinstance(exc, DocumentNotFoundError):
        return HTTPException(status_code=404, detail=error_detail("NOT_FOUND", str(exc)))
    if isinstance(exc, InvalidDocumentIdError):
        return HTTPException(status_code=400, detail=error_detail("VALIDATION_ERROR", str(exc)))
    if isinstance(exc, (SnapshotUnavailableError, CollaboratorUnavailableError)):
        logger.error("Service unavailable: %s", exc)
        return HTTPException(
            status_code=503,
            detail=error_detail("SERVICE_UNAVAILABLE", "Catalog data is temporarily unavailable"),
        )
    logger.exception("Unhandled catalog error", exc_info=exc)
    return HTTPException(status_code=500, detail=error_detail("INTERNAL_ERROR", str(exc)))
