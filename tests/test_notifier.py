# =============================================================================
# Unit Tests — Completion Notifier and Status Feeds
# =============================================================================
#
# Polling feed against SQLite; Redis feed with a mocked client.
# =============================================================================

import asyncio
import json
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import redis

from paperchat.db.models import DocumentStatus
from paperchat.services.notifier import (
    CompletionNotifier,
    PollingStatusFeed,
    RedisStatusFeed,
)

DOC_ID = "doc-1"
INTERVAL = 0.01


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


async def _take(feed, document_id: str, count: int) -> list:
    events = []
    stream = feed.watch(document_id)
    try:
        async for event in stream:
            events.append(event)
            if len(events) == count:
                break
    finally:
        await stream.aclose()
    return events


class TestPollingStatusFeed:
    def test_emits_current_state_then_changes(self, records):
        records.create(DOC_ID, "paper.pdf", 10)
        feed = PollingStatusFeed(records, interval=INTERVAL)

        async def scenario():
            watcher = asyncio.create_task(_take(feed, DOC_ID, 2))
            await asyncio.sleep(INTERVAL * 5)
            await asyncio.to_thread(records.update_summary, DOC_ID, "Done.")
            return await asyncio.wait_for(watcher, timeout=5)

        events = _run(scenario())

        assert [e.status for e in events] == [DocumentStatus.PROCESSING, DocumentStatus.COMPLETED]
        assert events[1].record.summary == "Done."
        assert events[1].is_terminal

    def test_unknown_document_emits_nothing(self, records):
        feed = PollingStatusFeed(records, interval=INTERVAL)
        with pytest.raises(asyncio.TimeoutError):
            _run(asyncio.wait_for(_take(feed, "missing", 1), timeout=INTERVAL * 10))


class TestCompletionNotifier:
    def test_callback_fires_once_on_completion(self, records):
        records.create(DOC_ID, "paper.pdf", 10)
        notifier = CompletionNotifier(PollingStatusFeed(records, interval=INTERVAL))
        received = []

        async def scenario():
            subscription = notifier.subscribe(DOC_ID, received.append)
            await asyncio.sleep(INTERVAL * 3)
            assert received == []
            await asyncio.to_thread(records.update_summary, DOC_ID, "Done.")
            event = await asyncio.wait_for(subscription.wait(), timeout=5)
            assert not subscription.active
            return event

        event = _run(scenario())

        assert len(received) == 1
        assert received[0] is event
        assert event.status is DocumentStatus.COMPLETED

    def test_failed_status_is_terminal(self, records):
        records.create(DOC_ID, "paper.pdf", 10)
        records.mark_failed(DOC_ID, "boom")
        notifier = CompletionNotifier(PollingStatusFeed(records, interval=INTERVAL))
        callback = AsyncMock()

        async def scenario():
            subscription = notifier.subscribe(DOC_ID, callback)
            return await asyncio.wait_for(subscription.wait(), timeout=5)

        event = _run(scenario())

        assert event.status is DocumentStatus.FAILED
        callback.assert_awaited_once_with(event)

    def test_cancel_is_idempotent_for_unknown_document(self, records):
        notifier = CompletionNotifier(PollingStatusFeed(records, interval=INTERVAL))
        callback = MagicMock()

        async def scenario():
            subscription = notifier.subscribe("never-created", callback)
            await asyncio.sleep(INTERVAL * 3)
            subscription.cancel()
            subscription.cancel()
            result = await subscription.wait()
            subscription.cancel()
            return result

        assert _run(scenario()) is None
        callback.assert_not_called()

    def test_wait_for_completion_times_out(self, records):
        records.create(DOC_ID, "paper.pdf", 10)
        notifier = CompletionNotifier(PollingStatusFeed(records, interval=INTERVAL))

        with pytest.raises(asyncio.TimeoutError):
            _run(notifier.wait_for_completion(DOC_ID, timeout=INTERVAL * 5))

    def test_wait_for_completion_returns_terminal_event(self, records):
        records.create(DOC_ID, "paper.pdf", 10)
        records.update_summary(DOC_ID, "Done.")
        notifier = CompletionNotifier(PollingStatusFeed(records, interval=INTERVAL))

        event = _run(notifier.wait_for_completion(DOC_ID, timeout=5))

        assert event.record.summary == "Done."


class TestRedisStatusFeed:
    def test_publish_sends_record_to_document_channel(self, records):
        feed = RedisStatusFeed("redis://localhost:6379/2", records)
        client = MagicMock()
        record = records.create(DOC_ID, "paper.pdf", 10)

        with patch("paperchat.services.notifier.redis.Redis.from_url", return_value=client):
            feed.publish(record)

        channel, data = client.publish.call_args.args
        assert channel == "document-status:doc-1"
        assert json.loads(data)["status"] == "processing"

    def test_watch_yields_snapshot_then_published_change(self, records):
        records.create(DOC_ID, "paper.pdf", 10)
        completed = records.update_summary(DOC_ID, "Done.")
        snapshot_store = MagicMock()
        snapshot_store.get.return_value = replace(
            completed, status=DocumentStatus.PROCESSING, summary=None,
        )

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.get_message = AsyncMock(
            return_value={"type": "message", "data": json.dumps(completed.to_dict())},
        )
        pubsub.aclose = AsyncMock()
        client = MagicMock()
        client.pubsub.return_value = pubsub
        client.aclose = AsyncMock()

        feed = RedisStatusFeed("redis://localhost:6379/2", snapshot_store, fallback_interval=INTERVAL)
        with patch("paperchat.services.notifier.aioredis.from_url", return_value=client):
            events = _run(_take(feed, DOC_ID, 2))

        assert [e.status for e in events] == [DocumentStatus.PROCESSING, DocumentStatus.COMPLETED]
        pubsub.subscribe.assert_awaited_once_with("document-status:doc-1")
        pubsub.aclose.assert_awaited_once()
        client.aclose.assert_awaited_once()

    def test_falls_back_to_polling_when_redis_is_down(self, records):
        records.create(DOC_ID, "paper.pdf", 10)
        records.update_summary(DOC_ID, "Done.")

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock(side_effect=redis.ConnectionError("refused"))
        pubsub.aclose = AsyncMock()
        client = MagicMock()
        client.pubsub.return_value = pubsub
        client.aclose = AsyncMock()

        feed = RedisStatusFeed("redis://localhost:6379/2", records, fallback_interval=INTERVAL)
        notifier = CompletionNotifier(feed)
        with patch("paperchat.services.notifier.aioredis.from_url", return_value=client):
            event = _run(notifier.wait_for_completion(DOC_ID, timeout=5))

        assert event.status is DocumentStatus.COMPLETED
