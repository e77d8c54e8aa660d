"""In-process snapshot of a whole document collection.

One ``SnapshotCache`` is owned per resource. Readers always see a complete
snapshot: a refresh builds a new ``Snapshot`` and swaps it in with a single
assignment.

Refreshes are coalesced. At most one collection scan runs at a time per
resource; callers arriving while a scan is pending share it. A forced
refresh that arrives after the running scan has already started reading
queues one follow-up scan (shared by every later caller) so that writes
committed after that read began are never missed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from marketplace.errors import CollaboratorUnavailableError, SnapshotUnavailableError
from marketplace.services.cache_keys import CacheKeys
from marketplace.services.document_store import DocumentStore
from marketplace.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    documents: tuple[dict, ...]
    last_refreshed: float
    load_time_ms: float = 0.0

    def __len__(self) -> int:
        return len(self.documents)


class SnapshotCache:
    def __init__(
        self,
        store: DocumentStore,
        kv: KeyValueStore,
        keys: CacheKeys,
        staleness_seconds: float = 24 * 3600,
        count_ttl: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._kv = kv
        self._keys = keys
        self._staleness = staleness_seconds
        self._count_ttl = count_ttl
        self._clock = clock

        self._snapshot: Snapshot | None = None
        self._inflight: asyncio.Task | None = None
        self._queued: asyncio.Task | None = None
        self._scan_started = False
        self.refresh_count = 0
        self.last_error: str | None = None

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    def is_stale(self) -> bool:
        if self._snapshot is None:
            return True
        return self._clock() - self._snapshot.last_refreshed > self._staleness

    async def init(self) -> Snapshot:
        """Load the first snapshot; raises if the store cannot be read."""
        return await self.force_refresh()

    async def ensure_fresh(self) -> Snapshot:
        """Current snapshot, rescanning first if it is missing or stale.

        A failed rescan falls back to the stale snapshot when one exists;
        with no snapshot at all it raises ``SnapshotUnavailableError``.
        """
        if not self.is_stale():
            return self._snapshot

        task = self._inflight or self._queued or self._start_scan()
        try:
            return await asyncio.shield(task)
        except CollaboratorUnavailableError as e:
            if self._snapshot is None:
                raise SnapshotUnavailableError(
                    f"No {self._keys.resource} snapshot available: {e}"
                ) from e
            logger.warning(
                "Refresh of %s failed, serving stale snapshot from %s: %s",
                self._keys.resource,
                _iso(self._snapshot.last_refreshed),
                e,
            )
            return self._snapshot

    async def force_refresh(self) -> Snapshot:
        """Rescan regardless of age; errors propagate to the caller."""
        if self._inflight is None:
            task = self._start_scan()
        elif not self._scan_started:
            task = self._inflight
        else:
            if self._queued is None:
                self._queued = asyncio.get_running_loop().create_task(
                    self._scan(after=self._inflight)
                )
            task = self._queued
        return await asyncio.shield(task)

    async def shutdown(self) -> None:
        for task in (self._queued, self._inflight):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
        self._inflight = None
        self._queued = None
        self._scan_started = False
        self._snapshot = None
        logger.info("Snapshot cache for %s shut down", self._keys.resource)

    def status(self) -> dict:
        snap = self._snapshot
        return {
            "resource": self._keys.resource,
            "documentCount": len(snap) if snap else 0,
            "lastRefreshed": _iso(snap.last_refreshed) if snap else None,
            "ageSeconds": round(self._clock() - snap.last_refreshed, 3) if snap else None,
            "isStale": self.is_stale(),
            "loadTimeMs": snap.load_time_ms if snap else None,
            "refreshInFlight": self._inflight is not None,
            "refreshCount": self.refresh_count,
            "lastError": self.last_error,
        }

    def _start_scan(self) -> asyncio.Task:
        self._inflight = asyncio.get_running_loop().create_task(self._scan())
        return self._inflight

    async def _scan(self, after: asyncio.Task | None = None) -> Snapshot:
        if after is not None:
            # The finished scan promotes this task to in-flight
            await asyncio.wait([after])
        self._scan_started = True
        try:
            return await self._load()
        finally:
            self._inflight = self._queued
            self._queued = None
            self._scan_started = False

    async def _load(self) -> Snapshot:
        started = time.perf_counter()
        try:
            documents = await self._store.scan_all()
        except CollaboratorUnavailableError as e:
            self.last_error = str(e)
            logger.error("Snapshot scan of %s failed: %s", self._keys.resource, e)
            raise

        refreshed_at = self._clock()
        if self._snapshot is not None:
            refreshed_at = max(refreshed_at, self._snapshot.last_refreshed)
        snapshot = Snapshot(
            documents=tuple(documents),
            last_refreshed=refreshed_at,
            load_time_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        self._snapshot = snapshot
        self.refresh_count += 1
        self.last_error = None
        logger.info(
            "Snapshot of %s refreshed: %d documents in %.1fms",
            self._keys.resource,
            len(snapshot),
            snapshot.load_time_ms,
        )

        try:
            await self._kv.set(self._keys.total_count, len(snapshot), self._count_ttl)
        except CollaboratorUnavailableError:
            logger.warning("Could not cache %s total count", self._keys.resource, exc_info=True)
        return snapshot


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
