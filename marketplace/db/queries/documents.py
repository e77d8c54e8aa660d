from __future__ import annotations

import json

import aiosqlite


def _row_to_document(row: aiosqlite.Row) -> dict:
    doc = json.loads(row["data"] or "{}")
    doc["id"] = row["id"]
    return doc


async def list_documents(db: aiosqlite.Connection, collection: str) -> list[dict]:
    """All documents of a collection, newest first."""
    sql = (
        "SELECT id, data FROM documents WHERE collection = ? "
        "ORDER BY created_at DESC, rowid DESC"
    )
    async with db.execute(sql, (collection,)) as cursor:
        rows = await cursor.fetchall()
        return [_row_to_document(r) for r in rows]


async def get_document(db: aiosqlite.Connection, collection: str, doc_id: str) -> dict | None:
    async with db.execute(
        "SELECT id, data FROM documents WHERE collection = ? AND id = ?",
        (collection, doc_id),
    ) as cursor:
        row = await cursor.fetchone()
        return _row_to_document(row) if row else None


async def insert_document(
    db: aiosqlite.Connection,
    collection: str,
    doc_id: str,
    data: dict,
    created_at: str,
) -> None:
    body = {k: v for k, v in data.items() if k != "id"}
    await db.execute(
        "INSERT INTO documents (collection, id, data, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
        (collection, doc_id, json.dumps(body), created_at, created_at),
    )


async def replace_document_data(
    db: aiosqlite.Connection,
    collection: str,
    doc_id: str,
    data: dict,
    updated_at: str,
) -> int:
    body = {k: v for k, v in data.items() if k != "id"}
    cursor = await db.execute(
        "UPDATE documents SET data = ?, updated_at = ? WHERE collection = ? AND id = ?",
        (json.dumps(body), updated_at, collection, doc_id),
    )
    return cursor.rowcount


async def delete_document(db: aiosqlite.Connection, collection: str, doc_id: str) -> int:
    cursor = await db.execute(
        "DELETE FROM documents WHERE collection = ? AND id = ?",
        (collection, doc_id),
    )
    return cursor.rowcount


async def increment_field(
    db: aiosqlite.Connection,
    collection: str,
    doc_id: str,
    field: str,
    delta: int,
    updated_at: str,
) -> int:
    """Atomically add ``delta`` to a numeric JSON field (missing counts as 0)."""
    path = f"$.{field}"
    cursor = await db.execute(
        "UPDATE documents "
        "SET data = json_set(data, ?, COALESCE(json_extract(data, ?), 0) + ?), updated_at = ? "
        "WHERE collection = ? AND id = ?",
        (path, path, delta, updated_at, collection, doc_id),
    )
    return cursor.rowcount

