from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

K = TypeVar("K")
V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[K, V]):
    """Small in-memory TTL cache used in front of per-guild lookups."""

    def __init__(self, default_ttl_seconds: int = 120) -> None:
        self._default_ttl = max(1, int(default_ttl_seconds))
        self._store: dict[K, _Entry[V]] = {}

    def get(self, key: K) -> Optional[V]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.expires_at < time.monotonic():
            self._store.pop(key, None)
            return None
        return entry.value

    def set(self, key: K, value: V) -> None:
        self._store[key] = _Entry(value=value, expires_at=time.monotonic() + self._default_ttl)

    def __len__(self) -> int:
        return len(self._store)
