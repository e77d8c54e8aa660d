"""Per-query result pages stored in the key-value store."""

from __future__ import annotations

import logging

from marketplace.errors import CollaboratorUnavailableError
from marketplace.services.cache_keys import build_results_key
from marketplace.services.kv_store import KeyValueStore
from marketplace.services.query_engine import ListQuery

logger = logging.getLogger(__name__)


class ResultCache:
    """Read-through cache of computed list pages.

    Store failures never fail a read: ``get`` reports a miss and ``put``
    skips the write. Two concurrent misses for the same query may both
    compute and both write; the pages are equivalent so the last write wins.
    """

    def __init__(self, kv: KeyValueStore, resource: str, ttl_seconds: int = 300) -> None:
        self._kv = kv
        self.resource = resource
        self.ttl_seconds = ttl_seconds

    def key_for(self, query: ListQuery) -> str:
        return build_results_key(self.resource, query)

    async def get(self, query: ListQuery) -> dict | None:
        return await self.get_key(self.key_for(query))

    async def put(self, query: ListQuery, page: dict) -> None:
        await self.put_key(self.key_for(query), page)

    async def get_key(self, key: str) -> dict | None:
        try:
            cached = await self._kv.get(key)
        except CollaboratorUnavailableError as e:
            logger.warning("Result cache read failed for %s, treating as miss: %s", key, e)
            return None
        if cached is None:
            logger.debug("Cache MISS: %s", key)
            return None
        logger.debug("Cache HIT: %s", key)
        return cached

    async def put_key(self, key: str, page: dict) -> None:
        try:
            await self._kv.set(key, page, self.ttl_seconds)
        except CollaboratorUnavailableError as e:
            logger.warning("Result cache write skipped for %s: %s", key, e)
            return
        logger.debug("Cache SET: %s (ttl=%ds)", key, self.ttl_seconds)

    async def discard(self, key: str) -> None:
        try:
            await self._kv.delete(key)
        except CollaboratorUnavailableError as e:
            logger.warning("Result cache delete failed for %s: %s", key, e)
