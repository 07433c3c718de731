from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from ..config import Settings
from ..constants import SCAN_BATCH_SIZE
from ..services.blocklist_store import BlocklistStore
from ..services.stats import RuntimeStats
from .decision_engine import DecisionEngine
from .directory import GroupDirectory, MemberInfo
from .models import ScanResult, ScanSummary

log = logging.getLogger("sentinel.scanner")


class GroupScanner:
    """Runs the decision engine over existing members, a few at a time."""

    def __init__(
        self,
        *,
        settings: Settings,
        blocklist: BlocklistStore,
        decision_engine: DecisionEngine,
        batch_size: int = SCAN_BATCH_SIZE,
        stats: Optional[RuntimeStats] = None,
    ) -> None:
        self.settings = settings
        self.blocklist = blocklist
        self.engine = decision_engine
        self.batch_size = max(1, int(batch_size))
        self.stats = stats or RuntimeStats()

    async def scan_group(self, group_id: str, directory: GroupDirectory) -> ScanResult:
        try:
            members = await directory.list_members(group_id)

            # Load both lists once; filtering is then pure in-memory work.
            blocked = await self.blocklist.active_block_ids()
            exempt = await self.blocklist.exempt_ids()
            protected = self.settings.protected_users

            targets: list[MemberInfo] = []
            for m in members:
                uid = m.user_id
                if not uid:
                    continue
                if self.settings.skip_bot_members and m.is_bot:
                    continue
                if uid in protected or uid in exempt:
                    continue
                if uid in blocked:
                    targets.append(m)

            if not targets:
                return ScanResult(handled=0, total=0)

            handled = 0
            for i in range(0, len(targets), self.batch_size):
                batch = targets[i:i + self.batch_size]
                results = await asyncio.gather(*(self._handle(group_id, m, directory) for m in batch))
                handled += sum(1 for r in results if r)

            self.stats.scans_run += 1
            return ScanResult(handled=handled, total=len(targets))
        except Exception as e:
            log.warning("[guild %s] Scan failed: %s", group_id, e)
            return ScanResult(handled=0, total=0, error=str(e) or type(e).__name__)

    async def _handle(self, group_id: str, member: MemberInfo, directory: GroupDirectory) -> bool:
        try:
            return await self.engine.evaluate_and_act(group_id, member.user_id, directory)
        except Exception:
            log.exception("[guild %s] Failed to evaluate member %s", group_id, member.user_id)
            return False

    async def scan_all_groups(self, directories: Iterable[GroupDirectory]) -> ScanSummary:
        log.info("Starting scan of all guilds")
        summary = ScanSummary()

        for directory in directories:
            try:
                group_ids = await directory.list_group_ids()
                for group_id in group_ids:
                    result = await self.scan_group(group_id, directory)
                    if result.error:
                        log.warning("[scan] guild %s: %s", group_id, result.error)
                    elif result.handled > 0:
                        log.info("[scan] guild %s: handled %d/%d", group_id, result.handled, result.total)
                    summary.handled += result.handled
                    summary.processed_groups += 1
            except Exception as e:
                summary.failed_instances += 1
                log.warning("Scan failed for %s: %s", getattr(directory, "name", directory), e)

        log.info(
            "Scan complete. Guilds scanned: %d, members handled: %d",
            summary.processed_groups,
            summary.handled,
        )
        return summary
