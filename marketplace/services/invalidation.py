"""Cache invalidation after document mutations."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from marketplace.services.cache_keys import CacheKeys
from marketplace.services.kv_store import KeyValueStore
from marketplace.services.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)


class MutationType(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LIKE = "like"
    VIEW = "view"
    REFRESH = "refresh"


@dataclass
class InvalidationReport:
    mutation: MutationType
    document_id: str | None
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    purged_results: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed


class InvalidationCoordinator:
    """Refreshes the snapshot and purges dependent keys after a write.

    The write has already committed when this runs, so every step is
    attempted even if an earlier one fails; failures are logged only.
    """

    def __init__(self, snapshots: SnapshotCache, kv: KeyValueStore, keys: CacheKeys) -> None:
        self._snapshots = snapshots
        self._kv = kv
        self._keys = keys

    async def on_mutation(
        self,
        mutation: MutationType,
        document_id: str | None = None,
        before_category: str | None = None,
        after_category: str | None = None,
    ) -> InvalidationReport:
        report = InvalidationReport(mutation=MutationType(mutation), document_id=document_id)

        await self._step(report, "refresh_snapshot", self._snapshots.force_refresh)

        async def _purge_results() -> None:
            report.purged_results = await self._kv.delete_pattern(self._keys.results_pattern)

        await self._step(report, "purge_results", _purge_results)

        if document_id:
            await self._step(
                report, "purge_document", lambda: self._kv.delete(self._keys.document(document_id))
            )

        categories = [c for c in dict.fromkeys([before_category, after_category]) if c]

        async def _purge_categories() -> None:
            for name in categories:
                await self._kv.delete(self._keys.category(name))
            await self._kv.delete(self._keys.category_counts)

        await self._step(report, "purge_categories", _purge_categories)
        await self._step(report, "purge_count", lambda: self._kv.delete(self._keys.total_count))

        if report.failed:
            logger.warning(
                "Invalidation after %s of %s/%s incomplete, failed steps: %s",
                report.mutation.value,
                self._keys.resource,
                document_id,
                ", ".join(report.failed),
            )
        else:
            logger.info(
                "Invalidated %s caches after %s of %s (%d result pages purged)",
                self._keys.resource,
                report.mutation.value,
                document_id,
                report.purged_results,
            )
        return report

    async def purge_all(self) -> int:
        """Drop every key this resource owns in the key-value store."""
        return await self._kv.delete_pattern(self._keys.all_pattern)

    async def _step(
        self,
        report: InvalidationReport,
        name: str,
        action: Callable[[], Awaitable[object]],
    ) -> None:
        try:
            await action()
        except Exception:
            logger.exception("Invalidation step %s failed for %s", name, self._keys.resource)
            report.failed.append(name)
        else:
            report.completed.append(name)
