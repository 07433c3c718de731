from __future__ import annotations

import json

import aiosqlite

from ..blocklist.models import QueuedRequest
from .base import BaseService


class RequestQueueStore(BaseService):
    """Durable queue of outbound requests that could not reach the remote authority."""

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS request_queue (
              request_id TEXT PRIMARY KEY,
              kind TEXT NOT NULL,
              payload_json TEXT NOT NULL,
              created_at TEXT NOT NULL,
              retry_count INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        await db.execute("CREATE INDEX IF NOT EXISTS idx_request_queue_created ON request_queue (created_at)")

    def _from_row(self, row: aiosqlite.Row) -> QueuedRequest:
        return QueuedRequest(
            request_id=row["request_id"],
            kind=row["kind"],
            payload=json.loads(row["payload_json"]),
            created_at=row["created_at"],
            retry_count=int(row["retry_count"]),
        )

    async def create(self, item: QueuedRequest) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                "INSERT INTO request_queue (request_id, kind, payload_json, created_at, retry_count) VALUES (?, ?, ?, ?, ?)",
                (
                    item.request_id,
                    item.kind,
                    json.dumps(item.payload, ensure_ascii=False),
                    item.created_at,
                    int(item.retry_count),
                ),
            )
            await db.commit()

    async def get(self, request_id: str) -> QueuedRequest | None:
        async with aiosqlite.connect(self._path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM request_queue WHERE request_id = ?", (request_id,)) as cur:
                row = await cur.fetchone()
        return self._from_row(row) if row else None

    async def oldest(self, limit: int = 10) -> list[QueuedRequest]:
        limit = max(1, int(limit))
        async with aiosqlite.connect(self._path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM request_queue ORDER BY created_at ASC, rowid ASC LIMIT ?",
                (limit,),
            ) as cur:
                rows = await cur.fetchall()
        return [self._from_row(r) for r in rows]

    async def delete(self, request_id: str) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.execute("DELETE FROM request_queue WHERE request_id = ?", (request_id,))
            await db.commit()

    async def increment_retry(self, request_id: str) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                "UPDATE request_queue SET retry_count = retry_count + 1 WHERE request_id = ?",
                (request_id,),
            )
            await db.commit()

    async def count(self) -> int:
        return await self._count("request_queue")
