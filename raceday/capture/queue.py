"""
Finish capture queue.

Every captured bib is written to the local ``CaptureStore`` first and only
then sent to the record store. Sending happens in background tasks, so the
operator can keep typing while earlier submissions are in flight.

Item lifecycle::

    pending --(2xx)--> synced --(retention elapsed)--> purged
    pending --(4xx)--> error   (kept until the operator dismisses it)
    pending --(network / 5xx)--> pending   (queue goes offline, retried on reconnect)

Pending items never expire.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from ..settings import settings
from .client import StoreClient, SubmissionRejected, SubmissionUnavailable
from .store import CaptureStore, QueueItem

logger = logging.getLogger(__name__)

Listener = Callable[[QueueItem], None]


@dataclass
class QueueStatus:
    online: bool
    pending_count: int
    in_flight: int
    error_items: list[QueueItem] = field(default_factory=list)
    recently_synced: list[QueueItem] = field(default_factory=list)


class CaptureQueue:
    """Offline-tolerant queue of finish captures for one race."""

    def __init__(
        self,
        race_id: int,
        client: StoreClient,
        store: CaptureStore,
        *,
        online: bool = True,
        synced_retention: Optional[timedelta] = None,
    ):
        self.race_id = race_id
        self.client = client
        self.store = store
        self._online = online
        self.synced_retention = synced_retention or timedelta(seconds=settings.CAPTURE_SYNCED_RETENTION_SECONDS)
        self._in_flight: dict[int, asyncio.Task] = {}
        self._listeners: list[Listener] = []

    @property
    def online(self) -> bool:
        return self._online

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self, item: Optional[QueueItem]) -> None:
        if item is None:
            return
        for listener in self._listeners:
            try:
                listener(item)
            except Exception:
                logger.exception("Queue listener failed for item %s", item.id)

    # ---------------------------
    # Capture
    # ---------------------------

    async def submit(self, bib_numbers: Iterable[int], timestamp: Optional[datetime] = None) -> list[QueueItem]:
        """Queue one item per bib, all sharing ``timestamp`` (default: now).

        Returns once the items are durable; network attempts run in the
        background when the queue is online.
        """
        bibs = list(bib_numbers)
        if not bibs:
            return []
        captured_at = timestamp or datetime.now(timezone.utc)
        # store I/O runs off the event loop so the console keeps accepting input
        items = await asyncio.to_thread(self.store.add, self.race_id, bibs, captured_at)
        logger.info(
            "Queued %d finish(es) for race %s at %s: %s",
            len(items), self.race_id, captured_at.isoformat(), ", ".join(str(b) for b in bibs),
        )
        if self._online:
            for item in items:
                self._schedule(item)
        return items

    def _schedule(self, item: QueueItem) -> bool:
        if item.id in self._in_flight:
            return False
        task = asyncio.create_task(self._send(item))
        self._in_flight[item.id] = task
        task.add_done_callback(lambda _t, item_id=item.id: self._in_flight.pop(item_id, None))
        return True

    async def _send(self, item: QueueItem) -> None:
        await asyncio.to_thread(self.store.record_attempt, item.id)
        try:
            data = await self.client.submit_finish(self.race_id, item.bib_number, item.captured_at)
        except SubmissionRejected as e:
            logger.warning("Bib %s rejected by store (%s): %s", item.bib_number, e.status, e.detail)
            self._notify(await asyncio.to_thread(self.store.mark_error, item.id, e.detail))
        except SubmissionUnavailable as e:
            logger.info("Bib %s left pending, store unavailable: %s", item.bib_number, e)
            self._go_offline()
        else:
            finish_time_id = data.get("id") if isinstance(data, dict) else None
            logger.info("Bib %s synced (finish time %s)", item.bib_number, finish_time_id)
            self._notify(await asyncio.to_thread(self.store.mark_synced, item.id, finish_time_id))

    # ---------------------------
    # Connectivity
    # ---------------------------

    def _go_offline(self) -> None:
        if self._online:
            logger.warning("Capture queue for race %s is offline", self.race_id)
        self._online = False

    def set_online(self, online: bool) -> int:
        """Set connectivity. Online sweeps pending items; returns how many were scheduled."""
        if not online:
            self._go_offline()
            return 0
        if not self._online:
            logger.info("Capture queue for race %s is back online", self.race_id)
        self._online = True
        return self.sweep()

    def connectivity_restored(self) -> int:
        return self.set_online(True)

    def sweep(self) -> int:
        """Resubmit every pending item that is not already in flight."""
        if not self._online:
            return 0
        scheduled = 0
        for item in self.store.pending(self.race_id):
            if self._schedule(item):
                scheduled += 1
        if scheduled:
            logger.info("Resubmitting %d pending finish(es) for race %s", scheduled, self.race_id)
        return scheduled

    async def drain(self) -> None:
        """Wait until every in-flight submission has settled."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    # ---------------------------
    # Operator feedback
    # ---------------------------

    def status(self, now: Optional[datetime] = None) -> QueueStatus:
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.synced_retention
        return QueueStatus(
            online=self._online,
            pending_count=len(self.store.pending(self.race_id)),
            in_flight=len(self._in_flight),
            error_items=self.store.errors(self.race_id),
            recently_synced=[
                i for i in self.store.synced(self.race_id) if i.settled_at is None or i.settled_at > cutoff
            ],
        )

    def purge_synced(self, now: Optional[datetime] = None) -> int:
        return self.store.purge_synced(self.race_id, self.synced_retention, now=now)

    def dismiss(self, item_id: int) -> bool:
        """Drop an error item once the operator has acknowledged it."""
        item = self.store.get(item_id)
        if item is None or item.race_id != self.race_id or item.is_pending:
            return False
        return self.store.remove(item_id)
