"""Document store: SQLite-backed collections of JSON documents."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

import aiosqlite

from marketplace.db.queries import documents as doc_queries
from marketplace.errors import DocumentNotFoundError, DocumentStoreError

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@runtime_checkable
class DocumentStore(Protocol):
    """Interface for one durable document collection."""

    collection: str

    async def scan_all(self) -> list[dict]: ...

    async def get_by_id(self, doc_id: str) -> dict: ...

    async def add(self, data: dict) -> str: ...

    async def update(self, doc_id: str, partial: dict) -> None: ...

    async def delete(self, doc_id: str) -> None: ...

    async def run_transaction(self, fn: Callable[["Transaction"], Awaitable[Any]]) -> Any: ...

    async def increment_field(self, doc_id: str, field: str, delta: int = 1) -> None: ...


class Transaction:
    """Read-modify-write scope handed to ``run_transaction`` callbacks.

    Reads see the committed state at the time of the call. Writes are staged
    and applied together when the callback returns.
    """

    def __init__(self, db: aiosqlite.Connection, collection: str) -> None:
        self._db = db
        self._collection = collection
        self._writes: dict[str, dict] = {}

    async def get(self, doc_id: str) -> dict:
        doc = await doc_queries.get_document(self._db, self._collection, doc_id)
        if doc is None:
            raise DocumentNotFoundError(self._collection, doc_id)
        return doc

    def update(self, doc_id: str, partial: dict) -> None:
        self._writes.setdefault(doc_id, {}).update(partial)

    async def _apply(self) -> None:
        now = utc_now_iso()
        for doc_id, partial in self._writes.items():
            current = await self.get(doc_id)
            current.update(partial)
            current["updatedAt"] = now
            await doc_queries.replace_document_data(
                self._db, self._collection, doc_id, current, now
            )


class SQLiteDocumentStore:
    """One collection inside the shared SQLite database.

    All writers sharing a connection must share ``lock`` so that a
    ``BEGIN IMMEDIATE`` block is never interleaved with another write.
    """

    def __init__(
        self,
        db: aiosqlite.Connection,
        collection: str,
        lock: asyncio.Lock | None = None,
    ) -> None:
        self._db = db
        self.collection = collection
        self._lock = lock or asyncio.Lock()

    async def scan_all(self) -> list[dict]:
        try:
            return await doc_queries.list_documents(self._db, self.collection)
        except aiosqlite.Error as e:
            raise DocumentStoreError(f"Scan of {self.collection} failed: {e}") from e

    async def get_by_id(self, doc_id: str) -> dict:
        try:
            doc = await doc_queries.get_document(self._db, self.collection, doc_id)
        except aiosqlite.Error as e:
            raise DocumentStoreError(f"Read of {self.collection}/{doc_id} failed: {e}") from e
        if doc is None:
            raise DocumentNotFoundError(self.collection, doc_id)
        return doc

    async def add(self, data: dict) -> str:
        doc_id = str(uuid.uuid4())
        now = utc_now_iso()
        body = dict(data)
        body.setdefault("createdAt", now)
        body.setdefault("updatedAt", now)
        async with self._lock:
            try:
                await doc_queries.insert_document(
                    self._db, self.collection, doc_id, body, body["createdAt"]
                )
                await self._db.commit()
            except aiosqlite.Error as e:
                raise DocumentStoreError(f"Insert into {self.collection} failed: {e}") from e
        logger.debug("Added %s/%s", self.collection, doc_id)
        return doc_id

    async def update(self, doc_id: str, partial: dict) -> None:
        async def _merge(tx: Transaction) -> None:
            await tx.get(doc_id)
            tx.update(doc_id, partial)

        await self.run_transaction(_merge)

    async def delete(self, doc_id: str) -> None:
        async with self._lock:
            try:
                deleted = await doc_queries.delete_document(self._db, self.collection, doc_id)
                await self._db.commit()
            except aiosqlite.Error as e:
                raise DocumentStoreError(f"Delete of {self.collection}/{doc_id} failed: {e}") from e
        if not deleted:
            raise DocumentNotFoundError(self.collection, doc_id)

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[Any]]) -> Any:
        """Run ``fn`` inside ``BEGIN IMMEDIATE``; any exception rolls back."""
        async with self._lock:
            try:
                await self._db.execute("BEGIN IMMEDIATE")
            except aiosqlite.Error as e:
                raise DocumentStoreError(f"Could not open transaction: {e}") from e
            tx = Transaction(self._db, self.collection)
            try:
                result = await fn(tx)
                await tx._apply()
                await self._db.execute("COMMIT")
            except aiosqlite.Error as e:
                await self._db.execute("ROLLBACK")
                raise DocumentStoreError(f"Transaction on {self.collection} failed: {e}") from e
            except BaseException:
                await self._db.execute("ROLLBACK")
                raise
            return result

    async def increment_field(self, doc_id: str, field: str, delta: int = 1) -> None:
        async with self._lock:
            try:
                changed = await doc_queries.increment_field(
                    self._db, self.collection, doc_id, field, delta, utc_now_iso()
                )
                await self._db.commit()
            except aiosqlite.Error as e:
                raise DocumentStoreError(
                    f"Increment of {field} on {self.collection}/{doc_id} failed: {e}"
                ) from e
        if not changed:
            raise DocumentNotFoundError(self.collection, doc_id)
