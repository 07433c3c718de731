from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from ..constants import OFFLINE_RETRY_TIMEOUT_SECONDS, QUEUE_DRAIN_LIMIT, QUEUE_MAX_RETRIES
from ..services.remote_client import RemoteAuthorityClient, RemoteRejectedError, RemoteUnavailableError
from ..services.request_queue_store import RequestQueueStore
from ..services.stats import RuntimeStats
from .models import DrainReport, OutboundRequest, QueuedRequest, parse_request

log = logging.getLogger("sentinel.queue")


class OfflineQueue:
    """Durable retry queue for requests the remote authority never received.

    Transport failures leave an item untouched; only a response that rejects
    the request counts toward the dead-letter budget.
    """

    def __init__(
        self,
        *,
        store: RequestQueueStore,
        remote: RemoteAuthorityClient,
        instance_id: str,
        stats: Optional[RuntimeStats] = None,
        drain_limit: int = QUEUE_DRAIN_LIMIT,
        max_retries: int = QUEUE_MAX_RETRIES,
    ) -> None:
        self.store = store
        self.remote = remote
        self.instance_id = instance_id
        self.stats = stats or RuntimeStats()
        self.drain_limit = drain_limit
        self.max_retries = max_retries
        self._lock = asyncio.Lock()

    @property
    def draining(self) -> bool:
        return self._lock.locked()

    async def enqueue(self, kind: str, payload: dict[str, Any]) -> str:
        """Persist a request for later delivery and return its request id."""
        request = parse_request(kind, payload)
        return await self.enqueue_request(request)

    async def enqueue_request(self, request: OutboundRequest) -> str:
        item = QueuedRequest(
            request_id=request.request_id,
            kind=request.kind,
            payload=request.to_payload(),
            # Microseconds keep FIFO order stable for bursts of enqueues.
            created_at=datetime.now(timezone.utc).isoformat(timespec="microseconds"),
            retry_count=0,
        )
        await self.store.create(item)
        log.info("Queued %s request %s for offline delivery", item.kind, item.request_id)
        return item.request_id

    async def drain(self) -> DrainReport:
        if self._lock.locked():
            log.debug("Queue drain already running; skipping")
            return DrainReport(skipped=True)

        async with self._lock:
            report = DrainReport()
            try:
                items = await self.store.oldest(self.drain_limit)
                report.fetched = len(items)
                if not items:
                    return report

                log.info("Processing offline queue (backlog: %d)", len(items))
                for item in items:
                    await self._process(item, report)
                log.info(
                    "Offline queue drained: delivered=%d deferred=%d rejected=%d dead_lettered=%d",
                    report.delivered,
                    report.deferred,
                    report.rejected,
                    report.dead_lettered,
                )
            except Exception:
                log.exception("Unexpected error while draining the offline queue")
            return report

    async def _process(self, item: QueuedRequest, report: DrainReport) -> None:
        if item.retry_count > self.max_retries:
            log.warning(
                "Request %s (%s) dead-lettered after %d failed attempts; dropped. Payload: %s",
                item.request_id,
                item.kind,
                item.retry_count,
                json.dumps(item.payload, ensure_ascii=False),
            )
            await self.store.delete(item.request_id)
            report.dead_lettered += 1
            self.stats.queue_dead_lettered += 1
            return

        try:
            request = item.to_request()
        except ValueError as e:
            # Rows written before validation existed; let the dead-letter path collect them.
            log.warning("Queued request %s is malformed: %s", item.request_id, e)
            await self.store.increment_retry(item.request_id)
            report.rejected += 1
            return

        try:
            await self.remote.submit(
                request,
                instance_id=self.instance_id,
                offline_retry=True,
                timeout=OFFLINE_RETRY_TIMEOUT_SECONDS,
            )
        except RemoteUnavailableError as e:
            log.debug("Offline request %s could not reach the server, waiting: %s", item.request_id, e)
            report.deferred += 1
            return
        except RemoteRejectedError as e:
            log.warning("Offline request %s rejected: %s", item.request_id, e)
            await self.store.increment_retry(item.request_id)
            report.rejected += 1
            return

        await self.store.delete(item.request_id)
        report.delivered += 1
        self.stats.queue_delivered += 1
        log.info("Offline request %s delivered", item.request_id)
