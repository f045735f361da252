"""
Live results feed for display screens.

Polls the results endpoint on an interval and keeps the last good group
sequence. ``invalidate()`` wakes the loop early, so a screen next to the
capture console shows a synced finish without waiting a full interval.
The placement and categorization functions stay pure; all I/O lives here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from pydantic import ValidationError

from .capture.client import StoreClient, SubmissionRejected, SubmissionUnavailable
from .capture.store import SYNCED, QueueItem
from .categorize import GroupRotation
from .schemas import NamedGroupOut, ResultsOut
from .settings import settings

logger = logging.getLogger(__name__)


class ResultsFeed:
    def __init__(
        self,
        client: StoreClient,
        race_id: int,
        scheme: str = "overall",
        age_scheme: str = "standard",
        interval: Optional[float] = None,
    ):
        self.client = client
        self.race_id = race_id
        self.scheme = scheme
        self.age_scheme = age_scheme
        self.interval = interval if interval is not None else settings.RESULTS_POLL_MS / 1000
        self.latest: Optional[ResultsOut] = None
        self.rotation = GroupRotation()
        self.last_error: Optional[str] = None
        self._stale = asyncio.Event()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def groups(self) -> list[NamedGroupOut]:
        return list(self.latest.groups) if self.latest else []

    def invalidate(self) -> None:
        self._stale.set()

    def on_queue_item(self, item: QueueItem) -> None:
        """Queue listener: refetch once the store has acknowledged a finish."""
        if item.state == SYNCED and item.race_id == self.race_id:
            self.invalidate()

    async def refresh(self) -> bool:
        self._stale.clear()
        try:
            data = await self.client.get_results(self.race_id, self.scheme, self.age_scheme)
        except (SubmissionUnavailable, SubmissionRejected) as e:
            # keep showing the last good results
            self.last_error = str(e)
            logger.warning("Results refresh for race %s failed: %s", self.race_id, e)
            return False
        try:
            latest = ResultsOut.model_validate(data)
        except ValidationError as e:
            self.last_error = "Malformed results payload"
            logger.warning("Results refresh for race %s returned a malformed payload: %s", self.race_id, e)
            return False
        self.latest = latest
        self.last_error = None
        self.rotation.replace(self.latest.groups)
        return True

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.refresh()
            except Exception as e:
                logger.error(f"Results refresh error: {e}")
            try:
                await asyncio.wait_for(self._stale.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
