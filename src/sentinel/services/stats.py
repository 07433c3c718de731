from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class RuntimeStats:
    started_at: float = field(default_factory=time.time)
    syncs_ok: int = 0
    syncs_failed: int = 0
    last_sync_at: Optional[float] = None
    queue_delivered: int = 0
    queue_dead_lettered: int = 0
    members_kicked: int = 0
    kicks_failed: int = 0
    notices_sent: int = 0
    join_requests_rejected: int = 0
    scans_run: int = 0

    def uptime_seconds(self) -> int:
        return int(time.time() - self.started_at)
