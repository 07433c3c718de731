from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import aiosqlite


class BaseService(ABC):
    """Base class for the SQLite-backed record stores."""

    def __init__(self, sqlite_path: str) -> None:
        self._path = sqlite_path
        self._logger = logging.getLogger(f"sentinel.{self.__class__.__name__.lower()}")

    async def init(self) -> None:
        """Initialize the database schema."""
        async with aiosqlite.connect(self._path) as db:
            await self._create_tables(db)
            await db.commit()

    @abstractmethod
    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        """Create the necessary database tables."""
        pass

    async def _count(self, table: str) -> int:
        async with aiosqlite.connect(self._path) as db:
            async with db.execute(f"SELECT COUNT(*) FROM {table}") as cur:
                row = await cur.fetchone()
        return int(row[0]) if row else 0
