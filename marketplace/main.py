"""Marketplace catalog: FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace.api.dependencies import build_collections, to_http_exception
from marketplace.config import settings
from marketplace.db.database import close_db, init_db
from marketplace.errors import MarketplaceError
from marketplace.models.common import error_detail
from marketplace.services.kv_store import get_kv_store

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting marketplace catalog...")
    db = await init_db()
    kv = get_kv_store()
    app.state.kv = kv
    app.state.collections = build_collections(db, kv)

    if settings.warm_snapshots_on_startup:
        for name, collection in app.state.collections.items():
            try:
                snapshot = await collection.snapshots.init()
                logger.info("Warmed %s snapshot with %d documents", name, len(snapshot))
            except MarketplaceError:
                # First read retries the scan
                logger.exception("Could not warm %s snapshot", name)

    logger.info("Marketplace catalog ready (cache backend=%s)", settings.cache_backend)
    yield

    for collection in app.state.collections.values():
        await collection.shutdown()
    await kv.close()
    await close_db()
    logger.info("Marketplace catalog stopped")


app = FastAPI(
    title="Marketplace Catalog",
    description="Cache-backed catalog API for prompts and AI tools",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    http_exc = to_http_exception(exc)
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(".".join(str(p) for p in err["loc"][1:]) for err in exc.errors())
    message = f"Invalid or missing fields: {fields}" if fields else "Invalid request"
    return JSONResponse(
        status_code=400, content={"detail": error_detail("VALIDATION_ERROR", message)}
    )


from marketplace.api.cache_admin import router as cache_admin_router
from marketplace.api.collections import build_collection_router

app.include_router(build_collection_router("prompts", "/api/prompts", "prompts"))
app.include_router(build_collection_router("ai_tools", "/api/ai-tools", "ai-tools"))
app.include_router(cache_admin_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "marketplace-catalog", "version": "0.1.0"}


@app.get("/")
async def root():
    return {"service": "marketplace-catalog", "docs": "/docs"}
