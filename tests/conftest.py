"""Shared test fixtures for the marketplace catalog."""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from marketplace.errors import CacheStoreError, DocumentStoreError
from marketplace.services.kv_store import MemoryKeyValueStore


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

_migrations_dir = Path(__file__).resolve().parent.parent / "marketplace" / "db" / "migrations"
MIGRATION_SQL = "\n".join(
    f.read_text() for f in sorted(_migrations_dir.glob("*.sql"))
)

USER_ID = "user-test-001"
OTHER_USER_ID = "user-test-002"


def make_document(title: str, created_at: str, **fields) -> dict:
    doc = {
        "title": title,
        "description": fields.pop("description", f"{title} description"),
        "category": fields.pop("category", "AI Prompts"),
        "tags": fields.pop("tags", []),
        "keywords": fields.pop("keywords", []),
        "likes": [],
        "likeCount": 0,
        "viewCount": 0,
        "isFeatured": False,
        "createdAt": created_at,
    }
    doc.update(fields)
    return doc


SEED_PROMPTS = [
    make_document("Email Writer", "2024-01-05T10:00:00+00:00", category="Marketing",
                  tags=["email", "copy"], isFeatured=True, createdBy=USER_ID),
    make_document("SEO Blog Outline", "2024-01-04T10:00:00+00:00", category="Marketing",
                  tags=["seo"], keywords=["blog"]),
    make_document("Code Reviewer", "2024-01-03T10:00:00+00:00", category="Development",
                  tags=["code"], createdBy=OTHER_USER_ID),
    make_document("Midjourney Portrait", "2024-01-02T10:00:00+00:00", category="Image",
                  tags=["art"], isFeatured=True, additionalHTML="<p>studio lighting</p>"),
]


@pytest_asyncio.fixture
async def db():
    """In-memory SQLite database with the document schema."""
    conn = await aiosqlite.connect(":memory:", isolation_level=None)
    conn.row_factory = aiosqlite.Row
    await conn.executescript(MIGRATION_SQL)
    yield conn
    await conn.close()


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest_asyncio.fixture
async def collections(db, kv):
    from marketplace.api.dependencies import build_collections

    built = build_collections(db, kv)
    yield built
    for collection in built.values():
        await collection.shutdown()


@pytest_asyncio.fixture
async def prompts(collections):
    """Prompts collection seeded with SEED_PROMPTS; returns (collection, ids)."""
    collection = collections["prompts"]
    ids = [await collection.store.add(dict(doc)) for doc in SEED_PROMPTS]
    return collection, ids


# ---------------------------------------------------------------------------
# App / client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(collections, kv):
    """FastAPI app with test collections injected (lifespan is not run)."""
    from marketplace.main import app as fastapi_app

    fastapi_app.state.collections = collections
    fastapi_app.state.kv = kv
    yield fastapi_app
    del fastapi_app.state.collections
    del fastapi_app.state.kv


@pytest_asyncio.fixture
async def client(app):
    """Async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FakeDocumentStore:
    """Scan-only store whose scans can be held open and made to fail."""

    collection = "fake"

    def __init__(self, documents: list[dict] | None = None) -> None:
        self.documents = list(documents or [])
        self.scan_calls = 0
        self.fail = False
        self.gate: asyncio.Event | None = None
        self.scan_started = asyncio.Event()

    async def scan_all(self) -> list[dict]:
        self.scan_calls += 1
        self.scan_started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise DocumentStoreError("document store offline")
        return [dict(d) for d in self.documents]


class FailingKeyValueStore:
    """Cache store where every call fails."""

    async def get(self, key):
        raise CacheStoreError(f"GET {key} failed")

    async def set(self, key, value, ttl_seconds=None):
        raise CacheStoreError(f"SET {key} failed")

    async def delete(self, key):
        raise CacheStoreError(f"DEL {key} failed")

    async def delete_pattern(self, pattern):
        raise CacheStoreError(f"Pattern delete {pattern} failed")

    async def ping(self):
        return False

    async def close(self):
        return None


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
