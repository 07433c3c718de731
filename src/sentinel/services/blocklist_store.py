from __future__ import annotations

from typing import Iterable, Optional, Sequence

import aiosqlite

from ..blocklist.models import BlockEntry, ExemptEntry
from ..constants import SYNC_UPSERT_BATCH_SIZE
from .base import BaseService

_UPSERT_BLOCK = """
    INSERT INTO block_entries (identity_id, reason, operator_id, source_id, disabled, updated_at)
    VALUES (?, ?, ?, ?, ?, ?)
    ON CONFLICT(identity_id) DO UPDATE SET
      reason = excluded.reason,
      operator_id = excluded.operator_id,
      source_id = excluded.source_id,
      disabled = excluded.disabled,
      updated_at = excluded.updated_at
"""

_UPSERT_EXEMPT = """
    INSERT INTO exempt_entries (identity_id, reason, operator_id, created_at)
    VALUES (?, ?, ?, ?)
    ON CONFLICT(identity_id) DO UPDATE SET
      reason = excluded.reason,
      operator_id = excluded.operator_id,
      created_at = excluded.created_at
"""


def _block_params(e: BlockEntry) -> tuple:
    return (e.identity_id, e.reason, e.operator_id, e.source_id, 1 if e.disabled else 0, e.updated_at)


def _exempt_params(e: ExemptEntry) -> tuple:
    return (e.identity_id, e.reason, e.operator_id, e.created_at)


def _batches(items: Sequence, size: int) -> Iterable[Sequence]:
    size = max(1, int(size))
    for i in range(0, len(items), size):
        yield items[i:i + size]


class BlocklistStore(BaseService):
    """Local cache of the remote block and exempt lists.

    Both tables live in one store so a sync can replace or patch them inside a
    single transaction.
    """

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS block_entries (
              identity_id TEXT PRIMARY KEY,
              reason TEXT NOT NULL DEFAULT '',
              operator_id TEXT NULL,
              source_id TEXT NULL,
              disabled INTEGER NOT NULL DEFAULT 0,
              updated_at TEXT NOT NULL
            )
            """
        )
        await db.execute("CREATE INDEX IF NOT EXISTS idx_block_entries_disabled ON block_entries (disabled)")
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS exempt_entries (
              identity_id TEXT PRIMARY KEY,
              reason TEXT NULL,
              operator_id TEXT NULL,
              created_at TEXT NOT NULL
            )
            """
        )

    def _block_from_row(self, row: aiosqlite.Row) -> BlockEntry:
        return BlockEntry(
            identity_id=row["identity_id"],
            reason=row["reason"] or "",
            operator_id=row["operator_id"],
            source_id=row["source_id"],
            disabled=bool(row["disabled"]),
            updated_at=row["updated_at"],
        )

    # -------------------- Reads --------------------

    async def get_active_block(self, identity_id: str) -> Optional[BlockEntry]:
        async with aiosqlite.connect(self._path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM block_entries WHERE identity_id = ? AND disabled = 0",
                (str(identity_id),),
            ) as cur:
                row = await cur.fetchone()
        return self._block_from_row(row) if row else None

    async def list_blocks(self, include_disabled: bool = True) -> list[BlockEntry]:
        query = "SELECT * FROM block_entries"
        if not include_disabled:
            query += " WHERE disabled = 0"
        async with aiosqlite.connect(self._path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query + " ORDER BY identity_id") as cur:
                rows = await cur.fetchall()
        return [self._block_from_row(r) for r in rows]

    async def active_block_ids(self) -> set[str]:
        async with aiosqlite.connect(self._path) as db:
            async with db.execute("SELECT identity_id FROM block_entries WHERE disabled = 0") as cur:
                rows = await cur.fetchall()
        return {str(r[0]) for r in rows}

    async def is_exempt(self, identity_id: str) -> bool:
        async with aiosqlite.connect(self._path) as db:
            async with db.execute(
                "SELECT 1 FROM exempt_entries WHERE identity_id = ?",
                (str(identity_id),),
            ) as cur:
                row = await cur.fetchone()
        return row is not None

    async def exempt_ids(self) -> set[str]:
        async with aiosqlite.connect(self._path) as db:
            async with db.execute("SELECT identity_id FROM exempt_entries") as cur:
                rows = await cur.fetchall()
        return {str(r[0]) for r in rows}

    async def count_blocks(self) -> int:
        return await self._count("block_entries")

    async def count_exempts(self) -> int:
        return await self._count("exempt_entries")

    # -------------------- Writes (sync engine only) --------------------

    async def replace_all(
        self,
        blocks: Sequence[BlockEntry],
        exempts: Optional[Sequence[ExemptEntry]],
        batch_size: int = SYNC_UPSERT_BATCH_SIZE,
    ) -> None:
        """Replace the block list, and the exempt list when one is given.

        Everything happens in one transaction; a failure leaves the previous
        contents in place.
        """
        async with aiosqlite.connect(self._path) as db:
            await db.execute("DELETE FROM block_entries")
            for chunk in _batches(blocks, batch_size):
                await db.executemany(_UPSERT_BLOCK, [_block_params(e) for e in chunk])

            if exempts is not None:
                await db.execute("DELETE FROM exempt_entries")
                for chunk in _batches(exempts, batch_size):
                    await db.executemany(_UPSERT_EXEMPT, [_exempt_params(e) for e in chunk])
            await db.commit()

        self._logger.info(
            "Replaced local lists: blocks=%d exempts=%s",
            len(blocks),
            "unchanged" if exempts is None else len(exempts),
        )

    async def apply_delta(
        self,
        *,
        block_upserts: Sequence[BlockEntry] = (),
        block_deletes: Sequence[str] = (),
        exempt_upserts: Sequence[ExemptEntry] = (),
        exempt_deletes: Sequence[str] = (),
    ) -> None:
        async with aiosqlite.connect(self._path) as db:
            if block_upserts:
                await db.executemany(_UPSERT_BLOCK, [_block_params(e) for e in block_upserts])
            if block_deletes:
                await db.executemany(
                    "DELETE FROM block_entries WHERE identity_id = ?",
                    [(str(uid),) for uid in block_deletes],
                )
            if exempt_upserts:
                await db.executemany(_UPSERT_EXEMPT, [_exempt_params(e) for e in exempt_upserts])
            if exempt_deletes:
                await db.executemany(
                    "DELETE FROM exempt_entries WHERE identity_id = ?",
                    [(str(uid),) for uid in exempt_deletes],
                )
            await db.commit()
