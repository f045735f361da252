"""
Tests for the live results feed used by display screens.
"""

import asyncio

import httpx

from raceday import services
from raceday.capture.client import StoreClient
from raceday.capture.store import ERROR, SYNCED, QueueItem
from raceday.feed import ResultsFeed
from raceday.main import app

from .conftest import at


def results_payload(*labels):
    return {
        "race": {"id": 1, "name": "Harbour 10K", "race_date": "2024-06-01", "start_time": "2024-06-01T08:00:00Z"},
        "started": True,
        "scheme": "gender",
        "finishers": 0,
        "groups": [{"label": label, "results": []} for label in labels],
        "anomalies": [],
    }


class ScriptedResults:
    """Serves a queue of canned (status, body) replies; the last one repeats."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = 0

    def __call__(self, request):
        self.calls += 1
        status, body = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return httpx.Response(status, json=body)


def feed_for(handler, **kwargs):
    client = StoreClient("http://raceday.test", transport=httpx.MockTransport(handler))
    return ResultsFeed(client, 1, scheme="gender", **kwargs)


def queue_item(state, race_id=1):
    return QueueItem(id=1, race_id=race_id, bib_number=5, captured_at=at(8, 30), state=state)


class TestResultsFeed:
    async def test_refresh_loads_groups(self):
        feed = feed_for(ScriptedResults((200, results_payload("Male", "Female"))))
        assert await feed.refresh() is True
        assert [g.label for g in feed.groups] == ["Male", "Female"]
        assert feed.rotation.current().label == "Male"
        await feed.client.aclose()

    async def test_failed_refresh_keeps_last_good(self):
        feed = feed_for(
            ScriptedResults(
                (200, results_payload("Male")),
                (503, {"detail": "unavailable"}),
            )
        )
        await feed.refresh()
        assert await feed.refresh() is False
        assert [g.label for g in feed.groups] == ["Male"]
        assert feed.last_error
        await feed.client.aclose()

    async def test_rotation_follows_label_across_refresh(self):
        feed = feed_for(
            ScriptedResults(
                (200, results_payload("Male", "Female")),
                (200, results_payload("Male", "Female", "Unassigned Gender")),
            )
        )
        await feed.refresh()
        feed.rotation.next()
        await feed.refresh()
        assert feed.rotation.current().label == "Female"
        await feed.client.aclose()

    def test_only_synced_items_for_this_race_invalidate(self):
        feed = feed_for(ScriptedResults((200, results_payload())))
        feed.on_queue_item(queue_item(ERROR))
        feed.on_queue_item(queue_item(SYNCED, race_id=2))
        assert not feed._stale.is_set()
        feed.on_queue_item(queue_item(SYNCED))
        assert feed._stale.is_set()

    async def test_invalidate_wakes_loop(self):
        handler = ScriptedResults((200, results_payload("Male")))
        feed = feed_for(handler, interval=60)
        await feed.start()
        for _ in range(100):
            if handler.calls >= 1:
                break
            await asyncio.sleep(0.01)
        feed.invalidate()
        for _ in range(100):
            if handler.calls >= 2:
                break
            await asyncio.sleep(0.01)
        await feed.stop()
        await feed.client.aclose()
        assert handler.calls == 2

    async def test_against_record_store(self, api, session, started_race, register):
        register(started_race, 5, gender="Male")
        register(started_race, 7, gender="Female")
        services.record_finish_time(session, started_race.id, 7, at(8, 20))

        client = StoreClient("http://raceday.test", transport=httpx.ASGITransport(app=app))
        feed = ResultsFeed(client, started_race.id, scheme="gender")
        assert await feed.refresh() is True
        assert feed.latest.finishers == 1
        assert [g.label for g in feed.groups] == ["Female"]
        await client.aclose()


class TestUnexpectedReplies:
    """Something in front of the store (a captive portal) answers 200 with HTML."""

    async def test_html_reply_keeps_last_good(self):
        def handler(request):
            return httpx.Response(200, text="<html>captive portal</html>")

        feed = feed_for(ScriptedResults((200, results_payload("Male"))))
        await feed.refresh()
        feed.client = StoreClient("http://raceday.test", transport=httpx.MockTransport(handler))
        assert await feed.refresh() is False
        assert [g.label for g in feed.groups] == ["Male"]
        assert feed.last_error
        await feed.client.aclose()

    async def test_malformed_payload_keeps_last_good(self):
        feed = feed_for(ScriptedResults((200, results_payload("Male")), (200, {"groups": "nope"})))
        await feed.refresh()
        assert await feed.refresh() is False
        assert feed.last_error == "Malformed results payload"
        assert [g.label for g in feed.groups] == ["Male"]
        await feed.client.aclose()

    async def test_loop_survives_bad_replies(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(200, text="<html>captive portal</html>")
            return httpx.Response(200, json=results_payload("Female"))

        client = StoreClient("http://raceday.test", transport=httpx.MockTransport(handler))
        feed = ResultsFeed(client, 1, interval=0.01)
        await feed.start()
        for _ in range(200):
            if feed.latest is not None:
                break
            await asyncio.sleep(0.01)
        task_alive = not feed._task.done()
        await feed.stop()
        await client.aclose()

        assert task_alive
        assert len(calls) >= 3
        assert [g.label for g in feed.groups] == ["Female"]
