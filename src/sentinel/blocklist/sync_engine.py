from __future__ import annotations

import logging
import time
from typing import Any, Iterable, Optional

from ..services.blocklist_store import BlocklistStore
from ..services.meta_store import MetaStore
from ..services.remote_client import RemoteAuthorityClient
from ..services.stats import RuntimeStats
from .models import BlockEntry, ExemptEntry

log = logging.getLogger("sentinel.sync")

STRATEGY_UP_TO_DATE = "up-to-date"
STRATEGY_FULL_REPLACE = "full_replace"
STRATEGY_INCREMENTAL = "incremental"


class SyncProtocolError(Exception):
    pass


def _parse_rows(rows: Any, factory) -> list:
    if not rows:
        return []
    if not isinstance(rows, list):
        raise SyncProtocolError(f"expected a list of rows, got {type(rows).__name__}")
    parsed = []
    for row in rows:
        entry = factory(row) if isinstance(row, dict) else None
        if entry is None:
            log.warning("Skipping malformed sync row: %r", row)
            continue
        parsed.append(entry)
    return parsed


def _has_active(entries: Iterable[BlockEntry]) -> bool:
    return any(not e.disabled for e in entries)


def _parse_ids(ids: Any) -> list[str]:
    if not ids:
        return []
    if not isinstance(ids, list):
        raise SyncProtocolError(f"expected a list of ids, got {type(ids).__name__}")
    return [str(i) for i in ids if i is not None and str(i) != ""]


class SyncEngine:
    """Pulls revision deltas from the remote authority into the local cache.

    The revision marker is written only after the strategy's writes have been
    committed, so an interrupted sync is retried from the old revision and the
    keyed upserts/deletes make the replay harmless.
    """

    def __init__(
        self,
        *,
        remote: RemoteAuthorityClient,
        blocklist: BlocklistStore,
        meta: MetaStore,
        instance_id: str,
        stats: Optional[RuntimeStats] = None,
    ) -> None:
        self.remote = remote
        self.blocklist = blocklist
        self.meta = meta
        self.instance_id = instance_id
        self.stats = stats or RuntimeStats()

    async def sync(self) -> bool:
        """Run one sync. Returns True when new block entries arrived; never raises."""
        try:
            local_revision = await self.meta.get_revision()
            log.debug("Sync started (local revision: %s)", local_revision or "INIT")

            response = await self.remote.pull_sync(local_revision, self.instance_id)
            strategy = response.get("strategy")
            new_revision = response.get("newRevision")
            data = response.get("data")

            if strategy == STRATEGY_UP_TO_DATE:
                log.debug("Blocklist already up to date")
                self._record(ok=True)
                return False

            if new_revision is None:
                raise SyncProtocolError(f"{strategy} response without newRevision")

            if strategy == STRATEGY_FULL_REPLACE:
                has_new = await self._apply_full_replace(data)
            elif strategy == STRATEGY_INCREMENTAL:
                has_new = await self._apply_incremental(data)
            else:
                raise SyncProtocolError(f"unknown sync strategy {strategy!r}")

            await self.meta.set_revision(str(new_revision))
            log.info("Sync complete (revision %s -> %s)", local_revision or "INIT", new_revision)
            self._record(ok=True)
            return has_new

        except Exception as e:
            log.warning("Sync failed: %s", e)
            self._record(ok=False)
            return False

    async def _apply_full_replace(self, data: Any) -> bool:
        log.info("Running full sync")
        # Older servers send the block list as a bare array.
        if isinstance(data, list):
            block_rows: Any = data
            exempt_rows: Optional[Iterable] = None
        elif isinstance(data, dict):
            block_rows = data.get("blacklist") or []
            exempt_rows = (data.get("whitelist") or []) if "whitelist" in data else None
        else:
            raise SyncProtocolError("full_replace response without data")

        blocks = _parse_rows(block_rows, BlockEntry.from_remote)
        exempts = None if exempt_rows is None else _parse_rows(exempt_rows, ExemptEntry.from_remote)
        if exempts is None:
            log.info("Full sync carried no whitelist key; keeping local exempt entries")

        await self.blocklist.replace_all(blocks, exempts)
        return _has_active(blocks)

    async def _apply_incremental(self, data: Any) -> bool:
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise SyncProtocolError("incremental response data is not an object")

        block_upserts = _parse_rows(data.get("upserts"), BlockEntry.from_remote)
        block_deletes = _parse_ids(data.get("deletes"))
        exempt_upserts = _parse_rows(data.get("whitelist_upserts"), ExemptEntry.from_remote)
        exempt_deletes = _parse_ids(data.get("whitelist_deletes"))

        log.info(
            "Incremental sync: +%d/-%d blocks, +%d/-%d exempts",
            len(block_upserts),
            len(block_deletes),
            len(exempt_upserts),
            len(exempt_deletes),
        )
        await self.blocklist.apply_delta(
            block_upserts=block_upserts,
            block_deletes=block_deletes,
            exempt_upserts=exempt_upserts,
            exempt_deletes=exempt_deletes,
        )
        # Exempt changes never create enforcement work.
        return _has_active(block_upserts)

    def _record(self, *, ok: bool) -> None:
        if ok:
            self.stats.syncs_ok += 1
            self.stats.last_sync_at = time.time()
        else:
            self.stats.syncs_failed += 1
