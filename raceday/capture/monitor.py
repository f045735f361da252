from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..settings import settings
from .client import StoreClient
from .queue import CaptureQueue

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """
    Probes the store's health endpoint on an interval and keeps the capture
    queue's online flag current. A successful probe after a failure triggers
    the queue's pending sweep. Each tick also purges expired synced items.

    Usage:
        monitor = ConnectivityMonitor(client, queue)
        await monitor.start()
        # ... later ...
        await monitor.stop()
    """

    def __init__(self, client: StoreClient, queue: CaptureQueue, interval: Optional[float] = None):
        self.client = client
        self.queue = queue
        self.interval = interval if interval is not None else settings.CONNECTIVITY_PROBE_SECONDS
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Connectivity monitor started (every %.1fs)", self.interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Connectivity monitor stopped")

    async def check(self) -> bool:
        ok = await self.client.health()
        self.queue.set_online(ok)
        self.queue.purge_synced()
        return ok

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.check()
            except Exception as e:
                logger.error(f"Connectivity check error: {e}")
            await asyncio.sleep(self.interval)
