from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

log = logging.getLogger("sentinel.periodic")


class PeriodicTask:
    """Runs a coroutine every ``interval_seconds`` until stopped.

    The first run happens one interval after ``start()``. A failing run is
    logged and does not stop the loop.
    """

    def __init__(self, name: str, fn: Callable[[], Awaitable[object]], interval_seconds: float) -> None:
        self.name = name
        self._fn = fn
        self.interval = max(0.01, float(interval_seconds))
        self._task: Optional[asyncio.Task[None]] = None
        self._stop = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name=f"sentinel-{self.name}")
        log.info("Periodic task %s started (every %ss)", self.name, self.interval)

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            await self._task
            self._task = None
        log.info("Periodic task %s stopped", self.name)

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self._fn()
            except Exception:
                log.exception("Periodic task %s failed", self.name)
