from __future__ import annotations

import aiosqlite

from ..blocklist.models import GuildMode
from .base import BaseService
from .cache import TTLCache


class GuildSettingsStore(BaseService):
    """Per-guild enforcement mode with a TTL cache front.

    Guilds without a row use the configured default mode.
    """

    def __init__(self, sqlite_path: str, default_mode: GuildMode, cache_ttl_seconds: int = 120) -> None:
        super().__init__(sqlite_path)
        self.default_mode = default_mode
        self._cache: TTLCache[str, GuildMode] = TTLCache(default_ttl_seconds=cache_ttl_seconds)

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS guild_settings (
              guild_id TEXT PRIMARY KEY,
              mode TEXT NOT NULL
            )
            """
        )

    async def get_mode(self, guild_id: str) -> GuildMode:
        key = str(guild_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        async with aiosqlite.connect(self._path) as db:
            async with db.execute("SELECT mode FROM guild_settings WHERE guild_id = ?", (key,)) as cur:
                row = await cur.fetchone()

        if row is None:
            mode = self.default_mode
        else:
            mode = GuildMode.parse(row[0], default=self.default_mode)
        self._cache.set(key, mode)
        return mode

    async def set_mode(self, guild_id: str, mode: GuildMode) -> None:
        key = str(guild_id)
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                """
                INSERT INTO guild_settings (guild_id, mode) VALUES (?, ?)
                ON CONFLICT(guild_id) DO UPDATE SET mode = excluded.mode
                """,
                (key, mode.value),
            )
            await db.commit()
        self._cache.set(key, mode)
        self._logger.info("Guild %s mode set to %s", key, mode.value)
