"""Cache-backed catalog collection.

``CachedCollection`` ties one document collection to its snapshot, result
cache and invalidation coordinator. The same class serves every catalog
resource; ``CollectionSpec`` carries what differs between them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from marketplace.errors import (
    CollaboratorUnavailableError,
    InvalidDocumentIdError,
)
from marketplace.services import query_engine
from marketplace.services.cache_keys import CacheKeys
from marketplace.services.document_store import DocumentStore, Transaction
from marketplace.services.invalidation import InvalidationCoordinator, MutationType
from marketplace.services.kv_store import KeyValueStore
from marketplace.services.query_engine import ListQuery
from marketplace.services.result_cache import ResultCache
from marketplace.services.snapshot_cache import Snapshot, SnapshotCache
from marketplace.utils.validators import clean_document_id

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"

_READ_ONLY_FIELDS = frozenset({"id", "likes", "likeCount", "viewCount", "createdAt"})

# Fields every new catalog document starts with
BASE_DEFAULTS: dict = {
    "link": "",
    "image": "",
    "videoUrl": "",
    "keywords": [],
    "tags": [],
    "category": "",
    "additionalHTML": "",
    "createdBy": None,
    "likes": [],
    "likeCount": 0,
    "viewCount": 0,
    "isFeatured": False,
    "isPublic": True,
}


@dataclass(frozen=True)
class CollectionSpec:
    name: str
    label: str
    items_field: str
    search_fields: tuple[str, ...] = query_engine.DEFAULT_SEARCH_FIELDS + ("additionalHTML",)
    defaults: dict = field(default_factory=dict)

    def new_document(self, data: dict) -> dict:
        doc = {**BASE_DEFAULTS, **self.defaults}
        doc.update({k: v for k, v in data.items() if v is not None})
        doc["likes"] = list(doc.get("likes") or [])
        doc["likeCount"] = len(doc["likes"])
        return doc


PROMPTS = CollectionSpec(
    name="prompts",
    label="prompt",
    items_field="prompts",
    defaults={"inputImage": "", "jsonPrompt": "", "downloadCount": 0, "type": "prompt"},
)

AI_TOOLS = CollectionSpec(
    name="ai_tools",
    label="AI tool",
    items_field="tools",
    defaults={"type": "ai_tool"},
)


class CachedCollection:
    def __init__(
        self,
        spec: CollectionSpec,
        store: DocumentStore,
        kv: KeyValueStore,
        staleness_seconds: float = 24 * 3600,
        result_ttl: int = 300,
        document_ttl: int = 300,
        default_page_size: int = query_engine.DEFAULT_LIMIT,
        featured_limit: int = 10,
        snapshots: SnapshotCache | None = None,
    ) -> None:
        self.spec = spec
        self.store = store
        self.kv = kv
        self.keys = CacheKeys(spec.name)
        self.snapshots = snapshots or SnapshotCache(
            store, kv, self.keys, staleness_seconds=staleness_seconds, count_ttl=result_ttl
        )
        self.results = ResultCache(kv, spec.name, result_ttl)
        self.invalidation = InvalidationCoordinator(self.snapshots, kv, self.keys)
        self.document_ttl = document_ttl
        self.default_page_size = default_page_size
        self.featured_limit = featured_limit

    @property
    def name(self) -> str:
        return self.spec.name

    def build_query(self, **params) -> ListQuery:
        return ListQuery.from_params(default_limit=self.default_page_size, **params)

    # -- reads ---------------------------------------------------------------

    async def list(self, query: ListQuery) -> dict:
        key = self.results.key_for(query)
        cached = await self.results.get_key(key)
        if cached is not None:
            return {**cached, "fromCache": True}

        snapshot = await self.snapshots.ensure_fresh()
        page = query_engine.execute(snapshot.documents, query, self.spec.search_fields)
        payload = page.to_dict()
        payload[self.spec.items_field] = payload.pop("items")
        payload["searchQuery"] = query.search or ""
        payload["filters"] = query.filters()

        await self._put_page(snapshot, key, payload)
        return {**payload, "fromCache": False}

    async def count(self) -> tuple[int, bool]:
        cached = await self._cache_get(self.keys.total_count)
        if isinstance(cached, int):
            return cached, True
        snapshot = await self.snapshots.ensure_fresh()
        await self._cache_set(
            self.keys.total_count, len(snapshot), self.results.ttl_seconds, snapshot
        )
        return len(snapshot), False

    async def categories(self) -> tuple[list[dict], bool]:
        cached = await self._cache_get(self.keys.category_counts)
        if cached is not None:
            return cached, True

        snapshot = await self.snapshots.ensure_fresh()
        counts: dict[str, int] = {}
        for doc in snapshot.documents:
            name = doc.get("category") or UNCATEGORIZED
            counts[name] = counts.get(name, 0) + 1

        categories = [{"name": query_engine.ALL_CATEGORIES, "count": len(snapshot)}]
        categories.extend({"name": n, "count": c} for n, c in counts.items())
        await self._cache_set(
            self.keys.category_counts, categories, self.results.ttl_seconds, snapshot
        )
        return categories, False

    async def category_count(self, name: str) -> tuple[int, bool]:
        key = self.keys.category(name)
        cached = await self._cache_get(key)
        if isinstance(cached, int):
            return cached, True
        snapshot = await self.snapshots.ensure_fresh()
        if name == query_engine.ALL_CATEGORIES:
            count = len(snapshot)
        else:
            count = sum(
                1 for d in snapshot.documents if (d.get("category") or UNCATEGORIZED) == name
            )
        await self._cache_set(key, count, self.results.ttl_seconds, snapshot)
        return count, False

    async def featured(self, limit: int) -> tuple[list[dict], bool]:
        key = self.keys.featured(limit)
        cached = await self.results.get_key(key)
        if cached is not None:
            return cached["items"], True

        snapshot = await self.snapshots.ensure_fresh()
        featured = [d for d in snapshot.documents if query_engine.is_featured(d)]
        items = query_engine.sort_documents(featured)[:limit]
        await self._put_page(snapshot, key, {"items": items})
        return items, False

    async def liked_by(self, user_id: str) -> list[dict]:
        snapshot = await self.snapshots.ensure_fresh()
        return [d for d in snapshot.documents if user_id in (d.get("likes") or [])]

    async def get(self, doc_id: str, skip_cache: bool = False) -> tuple[dict, bool]:
        """Single document by ID; ``skip_cache`` reads the store directly."""
        doc_id = self._require_id(doc_id)
        key = self.keys.document(doc_id)
        if not skip_cache:
            cached = await self._cache_get(key)
            if cached is not None:
                return cached, True

        doc = await self.store.get_by_id(doc_id)
        await self._cache_set(key, doc, self.document_ttl)
        return doc, False

    # -- writes --------------------------------------------------------------

    async def create(self, data: dict) -> dict:
        doc_id = await self.store.add(self.spec.new_document(data))
        created = await self.store.get_by_id(doc_id)
        await self.invalidation.on_mutation(
            MutationType.CREATE, doc_id, after_category=created.get("category")
        )
        logger.info("Created %s %s", self.spec.label, doc_id)
        return created

    async def update(self, doc_id: str, partial: dict) -> dict:
        doc_id = self._require_id(doc_id)
        # Likes only change through toggle_like
        changes = {k: v for k, v in partial.items() if k not in _READ_ONLY_FIELDS}
        before = await self.store.get_by_id(doc_id)
        await self.store.update(doc_id, changes)
        after = await self.store.get_by_id(doc_id)
        await self.invalidation.on_mutation(
            MutationType.UPDATE,
            doc_id,
            before_category=before.get("category"),
            after_category=after.get("category"),
        )
        return after

    async def delete(self, doc_id: str) -> None:
        doc_id = self._require_id(doc_id)
        before = await self.store.get_by_id(doc_id)
        await self.store.delete(doc_id)
        await self.invalidation.on_mutation(
            MutationType.DELETE, doc_id, before_category=before.get("category")
        )
        logger.info("Deleted %s %s", self.spec.label, doc_id)

    async def toggle_like(self, doc_id: str, user_id: str) -> dict:
        """Add or remove ``user_id`` from ``likes`` inside one transaction."""
        doc_id = self._require_id(doc_id)

        async def _toggle(tx: Transaction) -> tuple[bool, int, str | None]:
            doc = await tx.get(doc_id)
            likes = list(dict.fromkeys(doc.get("likes") or []))
            if user_id in likes:
                likes.remove(user_id)
                liked = False
            else:
                likes.append(user_id)
                liked = True
            tx.update(doc_id, {"likes": likes, "likeCount": len(likes)})
            return liked, len(likes), doc.get("category")

        liked, like_count, category = await self.store.run_transaction(_toggle)
        await self.invalidation.on_mutation(
            MutationType.LIKE, doc_id, before_category=category, after_category=category
        )
        return {
            "id": doc_id,
            "isLiked": liked,
            "likeCount": like_count,
            "action": "liked" if liked else "unliked",
        }

    async def record_view(self, doc_id: str) -> int:
        doc_id = self._require_id(doc_id)
        await self.store.increment_field(doc_id, "viewCount", 1)
        doc = await self.store.get_by_id(doc_id)
        category = doc.get("category")
        await self.invalidation.on_mutation(
            MutationType.VIEW, doc_id, before_category=category, after_category=category
        )
        return int(doc.get("viewCount") or 0)

    # -- maintenance ---------------------------------------------------------

    async def refresh(self) -> Snapshot:
        """Rescan now and drop every cached result page."""
        snapshot = await self.snapshots.force_refresh()
        try:
            purged = await self.kv.delete_pattern(self.keys.results_pattern)
        except CollaboratorUnavailableError:
            logger.warning(
                "Result purge after manual refresh of %s failed", self.name, exc_info=True
            )
        else:
            logger.info(
                "Manual refresh of %s: %d documents, %d result pages purged",
                self.name,
                len(snapshot),
                purged,
            )
        return snapshot

    async def clear_cache(self) -> int:
        return await self.invalidation.purge_all()

    def cache_status(self) -> dict:
        return self.snapshots.status()

    async def shutdown(self) -> None:
        await self.snapshots.shutdown()

    # -- helpers -------------------------------------------------------------

    def _require_id(self, doc_id: str) -> str:
        cleaned = clean_document_id(doc_id)
        if cleaned is None:
            raise InvalidDocumentIdError(f"Invalid {self.spec.label} ID")
        return cleaned

    async def _cache_get(self, key: str):
        try:
            return await self.kv.get(key)
        except CollaboratorUnavailableError as e:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, e)
            return None

    def _superseded(self, snapshot: Snapshot | None) -> bool:
        return snapshot is not None and self.snapshots.snapshot is not snapshot

    async def _put_page(self, snapshot: Snapshot, key: str, page: dict) -> None:
        await self.results.put_key(key, page)
        # A refresh that landed during the write may already have purged this key
        if self._superseded(snapshot):
            logger.debug("Discarding %s computed from a replaced snapshot", key)
            await self.results.discard(key)

    async def _cache_set(
        self, key: str, value, ttl: int | None, snapshot: Snapshot | None = None
    ) -> None:
        """Write ``value``; when derived from ``snapshot``, undo it if that snapshot was replaced."""
        try:
            await self.kv.set(key, value, ttl)
            if self._superseded(snapshot):
                logger.debug("Discarding %s computed from a replaced snapshot", key)
                await self.kv.delete(key)
        except CollaboratorUnavailableError as e:
            logger.warning("Cache write skipped for %s: %s", key, e)
