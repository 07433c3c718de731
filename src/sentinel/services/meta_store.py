from __future__ import annotations

import uuid
from typing import Optional

import aiosqlite

from ..constants import META_INSTANCE_UUID, META_SYNC_REVISION
from .base import BaseService


class MetaStore(BaseService):
    """Key/value rows for the sync revision and this client's instance id."""

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS sync_meta (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL
            )
            """
        )

    async def get(self, key: str) -> Optional[str]:
        async with aiosqlite.connect(self._path) as db:
            async with db.execute("SELECT value FROM sync_meta WHERE key = ?", (key,)) as cur:
                row = await cur.fetchone()
        return str(row[0]) if row else None

    async def set(self, key: str, value: str) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                "INSERT INTO sync_meta (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, str(value)),
            )
            await db.commit()

    async def get_revision(self) -> str:
        """Current sync revision; empty string means never synced."""
        return await self.get(META_SYNC_REVISION) or ""

    async def set_revision(self, revision: str) -> None:
        await self.set(META_SYNC_REVISION, revision or "")

    async def ensure_instance_uuid(self) -> str:
        """Return the stored instance id, creating it on first start."""
        candidate = str(uuid.uuid4())
        async with aiosqlite.connect(self._path) as db:
            cur = await db.execute(
                "INSERT OR IGNORE INTO sync_meta (key, value) VALUES (?, ?)",
                (META_INSTANCE_UUID, candidate),
            )
            created = cur.rowcount > 0
            await db.commit()
            async with db.execute("SELECT value FROM sync_meta WHERE key = ?", (META_INSTANCE_UUID,)) as cur:
                row = await cur.fetchone()

        instance_id = str(row[0])
        if created:
            self._logger.info("Initialized instance UUID: %s", instance_id)
        else:
            self._logger.info("Current instance UUID: %s", instance_id)
        return instance_id
