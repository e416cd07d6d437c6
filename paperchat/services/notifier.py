# =============================================================================
# Completion Notifier — Status Feeds and Subscriptions
# =============================================================================
#
# Lets a client learn that a document's summary is ready (or failed) without
# polling the HTTP API.
#
#   StatusFeed.watch(document_id)
#       Async iterator of StatusEvents: the current record first (if it
#       exists), then every change. Never ends on its own; the consumer
#       stops iterating or is cancelled.
#
#   CompletionNotifier.subscribe(document_id, callback) → Subscription
#       Calls `callback` once, on the first terminal status, then stops.
#       Subscription.cancel() is idempotent.
#
# FEED BACKENDS:
#   PollingStatusFeed — re-reads the record store every `interval` seconds.
#   RedisStatusFeed   — Redis pub/sub channel `document-status:{id}`. The
#       record store publishes to it after every committed write, so API and
#       Celery processes share one feed. The store is re-read on subscribe
#       and on every quiet `fallback_interval`, so a lost message only delays
#       an event. If Redis is unreachable the feed degrades to polling.
# =============================================================================

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import redis
import redis.asyncio as aioredis

from paperchat.db.models import DocumentStatus
from paperchat.errors import NotFoundError
from paperchat.services.records import FileRecord, FileRecordStore

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "document-status"


@dataclass(frozen=True)
class StatusEvent:
    record: FileRecord

    @property
    def document_id(self) -> str:
        return self.record.document_id

    @property
    def status(self) -> DocumentStatus:
        return self.record.status

    @property
    def is_terminal(self) -> bool:
        return self.record.status.is_terminal

    def to_dict(self) -> dict:
        return self.record.to_dict()


class StatusFeed(Protocol):
    def watch(self, document_id: str) -> AsyncIterator[StatusEvent]:
        ...


def _change_key(record: FileRecord) -> tuple:
    return (record.status, record.summary, record.error_message)


async def _read_record(records: FileRecordStore, document_id: str) -> FileRecord | None:
    try:
        return await asyncio.to_thread(records.get, document_id)
    except NotFoundError:
        return None


# ---------------------------------------------------------------------------
# Polling Feed
# ---------------------------------------------------------------------------


class PollingStatusFeed:
    """Emits a StatusEvent whenever a re-read record differs from the last."""

    def __init__(self, records: FileRecordStore, interval: float = 1.0) -> None:
        self._records = records
        self._interval = interval

    async def watch(self, document_id: str) -> AsyncIterator[StatusEvent]:
        last_key = None
        while True:
            record = await _read_record(self._records, document_id)
            if record is not None and _change_key(record) != last_key:
                last_key = _change_key(record)
                yield StatusEvent(record)
            await asyncio.sleep(self._interval)


# ---------------------------------------------------------------------------
# Redis Pub/Sub Feed
# ---------------------------------------------------------------------------


class RedisStatusFeed:
    """
    Publisher (registered on the FileRecordStore) and feed in one.

    publish() is called from sync code paths (request threads, workers), so
    it uses the blocking client; watch() uses redis.asyncio.
    """

    def __init__(
        self,
        redis_url: str,
        records: FileRecordStore,
        fallback_interval: float = 5.0,
    ) -> None:
        self._redis_url = redis_url
        self._records = records
        self._fallback_interval = fallback_interval
        self._client: redis.Redis | None = None

    @staticmethod
    def channel(document_id: str) -> str:
        return f"{CHANNEL_PREFIX}:{document_id}"

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def publish(self, record: FileRecord) -> None:
        self._get_client().publish(
            self.channel(record.document_id), json.dumps(record.to_dict()),
        )

    async def watch(self, document_id: str) -> AsyncIterator[StatusEvent]:
        client = aioredis.from_url(self._redis_url, decode_responses=True)
        pubsub = client.pubsub()
        channel = self.channel(document_id)

        try:
            try:
                await pubsub.subscribe(channel)
            except redis.RedisError as exc:
                logger.warning(
                    "Status feed unavailable (Redis error): %s. "
                    "Falling back to polling for %s.",
                    exc, document_id,
                )
                fallback = PollingStatusFeed(self._records, self._fallback_interval)
                async for event in fallback.watch(document_id):
                    yield event
                return

            last = None
            # Read after subscribing so no change can fall between the two.
            record = await _read_record(self._records, document_id)
            while True:
                if record is not None and _is_newer(record, last):
                    last = record
                    yield StatusEvent(record)

                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self._fallback_interval,
                )
                if message is None:
                    record = await _read_record(self._records, document_id)
                else:
                    record = FileRecord.from_dict(json.loads(message["data"]))
        finally:
            await pubsub.aclose()
            await client.aclose()


def _is_newer(record: FileRecord, last: FileRecord | None) -> bool:
    if last is None:
        return True
    if _change_key(record) == _change_key(last):
        return False
    if record.updated_at and last.updated_at:
        return record.updated_at >= last.updated_at
    return True


# ---------------------------------------------------------------------------
# Completion Notifier
# ---------------------------------------------------------------------------


class Subscription:
    """Handle for one pending completion callback."""

    def __init__(self, document_id: str, task: asyncio.Task) -> None:
        self.document_id = document_id
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()
            logger.debug("Cancelled completion subscription for %s", self.document_id)

    async def wait(self) -> StatusEvent | None:
        """The terminal event that fired the callback, or None if cancelled."""
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._task.cancelled():
                return None
            raise


class CompletionNotifier:
    def __init__(self, feed: StatusFeed) -> None:
        self._feed = feed

    def subscribe(
        self,
        document_id: str,
        callback: Callable[[StatusEvent], Any],
    ) -> Subscription:
        """
        Call `callback(event)` once when `document_id` reaches completed or
        failed. Must be called from a running event loop.
        """
        task = asyncio.create_task(
            self._listen(document_id, callback),
            name=f"completion:{document_id}",
        )
        task.add_done_callback(_log_task_failure)
        return Subscription(document_id, task)

    async def wait_for_completion(
        self,
        document_id: str,
        timeout: float | None = None,
    ) -> StatusEvent:
        """
        Raises:
            TimeoutError: No terminal status within `timeout` seconds.
        """
        return await asyncio.wait_for(self._first_terminal(document_id), timeout)

    async def _first_terminal(self, document_id: str) -> StatusEvent:
        events = self._feed.watch(document_id)
        try:
            async for event in events:
                if event.is_terminal:
                    return event
        finally:
            await events.aclose()
        raise RuntimeError(f"Status feed for {document_id} ended unexpectedly")

    async def _listen(
        self,
        document_id: str,
        callback: Callable[[StatusEvent], Any],
    ) -> StatusEvent:
        event = await self._first_terminal(document_id)
        logger.info(
            "Document %s reached %s, notifying subscriber",
            document_id, event.status.value,
        )
        result = callback(event)
        if inspect.isawaitable(result):
            await result
        return event


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Completion subscription %s failed: %s", task.get_name(), exc,
            exc_info=exc,
        )
