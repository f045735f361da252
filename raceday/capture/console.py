"""Terminal capture console: type bib numbers, press Enter, repeat.

    python -m raceday.capture.console RACE_ID

Several bibs on one line (``12 13`` or ``12,13``) share one finish time.
Empty line prints the queue status, ``q`` quits.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime, timezone

from ..log import setup_logging
from ..utils import parse_bib_list
from .client import StoreClient
from .monitor import ConnectivityMonitor
from .queue import CaptureQueue, QueueStatus
from .store import CaptureStore, QueueItem

logger = logging.getLogger(__name__)


def format_status(status: QueueStatus) -> str:
    lines = [f"{'online' if status.online else 'OFFLINE'} | pending: {status.pending_count}"]
    for item in status.recently_synced:
        lines.append(f"  ok    bib #{item.bib_number}")
    for item in status.error_items:
        lines.append(f"  ERROR bib #{item.bib_number}: {item.error}  (item {item.id})")
    return "\n".join(lines)


def print_outcome(item: QueueItem) -> None:
    if item.state == "error":
        print(f"!! bib #{item.bib_number}: {item.error}")
    else:
        print(f"   bib #{item.bib_number} recorded")


async def run(race_id: int, base_url: str | None, queue_url: str | None) -> None:
    client = StoreClient(base_url)
    store = CaptureStore(queue_url)
    queue = CaptureQueue(race_id, client, store)
    queue.add_listener(print_outcome)
    monitor = ConnectivityMonitor(client, queue)
    await monitor.start()
    loop = asyncio.get_running_loop()
    try:
        while True:
            line = (await loop.run_in_executor(None, input, "bib> ")).strip()
            if line.lower() in ("q", "quit", "exit"):
                break
            if not line:
                print(format_status(queue.status()))
                continue
            stamp = datetime.now(timezone.utc)
            try:
                bibs = parse_bib_list(line)
            except ValueError as e:
                print(f"!! {e}")
                continue
            await queue.submit(bibs, stamp)
    finally:
        await monitor.stop()
        await queue.drain()
        await client.aclose()
        store.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Record finish times by bib number")
    parser.add_argument("race_id", type=int)
    parser.add_argument("--api-url", default=None)
    parser.add_argument("--queue-url", default=None)
    args = parser.parse_args()
    setup_logging()
    asyncio.run(run(args.race_id, args.api_url, args.queue_url))


if __name__ == "__main__":
    main()
