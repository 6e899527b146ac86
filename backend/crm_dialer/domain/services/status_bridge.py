"""
Status Notification Bridge
Pushes call and lead state to the UI over Redis pub/sub, and polls live
state for consumers that cannot subscribe
"""
import asyncio
import inspect
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


CALL_STATUS_CHANNEL = "call.status.{session_id}"
LEAD_DATA_CHANNEL = "lead.data.{lead_id}"


def call_status_channel(session_id: str) -> str:
    return CALL_STATUS_CHANNEL.format(session_id=session_id)


def lead_data_channel(lead_id: Any) -> str:
    return LEAD_DATA_CHANNEL.format(lead_id=lead_id)


class StatusPublisher:
    """
    Publishes JSON events to Redis channels.

    Publishing never fails the caller: with Redis down or unconfigured the
    event is logged and dropped. Persisted status records cover late or
    disconnected subscribers.
    """

    def __init__(self, redis_client=None, redis_url: Optional[str] = None):
        self._redis = redis_client
        self._redis_url = redis_url
        self.dropped = 0

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    @property
    def client(self):
        return self._redis

    async def initialize(self) -> None:
        if self._redis is not None or not self._redis_url:
            return
        try:
            self._redis = redis.from_url(self._redis_url, decode_responses=True)
            await self._redis.ping()
            logger.info(f"StatusPublisher connected to Redis: {self._redis_url}")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            logger.warning("Status events will not be published")
            self._redis = None

    async def publish(self, channel: str, payload: Dict[str, Any]) -> bool:
        if self._redis is None:
            self.dropped += 1
            logger.debug(f"Redis disabled - dropped event on {channel}")
            return False
        try:
            await self._redis.publish(channel, json.dumps(payload, default=str))
            return True
        except Exception as e:
            self.dropped += 1
            logger.warning(f"Failed to publish to {channel}: {e}")
            return False

    async def publish_call_status(self, session_id: str, payload: Dict[str, Any]) -> bool:
        return await self.publish(call_status_channel(session_id), {
            "type": "call_status_update",
            "data": payload,
        })

    async def publish_lead_update(self, lead_id: Any, payload: Dict[str, Any]) -> bool:
        return await self.publish(lead_data_channel(lead_id), {
            "type": "lead_data_update",
            "leadId": str(lead_id),
            "data": payload,
        })

    async def close(self) -> None:
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None


class StatusSubscriber:
    """
    Async iterator over the events of one channel.

    Usage:
        async with StatusSubscriber(client, call_status_channel(sid)) as sub:
            async for event in sub.events():
                ...
    """

    def __init__(self, redis_client, channel: str):
        self._redis = redis_client
        self.channel = channel
        self._pubsub = None

    async def __aenter__(self) -> "StatusSubscriber":
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self.channel)
        logger.info(f"Subscribed to {self.channel}")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
            self._pubsub = None

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        async for message in self._pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                yield json.loads(message["data"])
            except (TypeError, ValueError):
                logger.warning(f"Ignoring malformed event on {self.channel}")


class StatusPoller:
    """
    Polls ``fetch(subject)`` every ``interval_seconds`` and hands each
    result to ``on_result``.

    One poll at a time per poller: the next fetch is only issued after the
    previous one returned. ``fetch`` returning None (no active call) is a
    normal result. Setting the subject to None stops the loop.
    """

    def __init__(
        self,
        fetch: Callable[[str], Awaitable[Optional[Any]]],
        on_result: Callable[[Optional[Any]], Any],
        interval_seconds: float = 0.5,
    ):
        self._fetch = fetch
        self._on_result = on_result
        self.interval_seconds = interval_seconds
        self._subject: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self.polls = 0

    @property
    def subject(self) -> Optional[str]:
        return self._subject

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, subject: str) -> None:
        self._subject = subject
        if not self.running:
            self._task = asyncio.create_task(self._run())

    def set_subject(self, subject: Optional[str]) -> None:
        if subject is None:
            self._subject = None
            return
        self.start(subject)

    async def stop(self) -> None:
        self._subject = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while self._subject is not None:
            subject = self._subject
            try:
                result = await self._fetch(subject)
                self.polls += 1
                # Subject may have been cleared while the fetch was in flight
                if self._subject is None:
                    break
                outcome = self._on_result(result)
                if inspect.isawaitable(outcome):
                    await outcome
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Status poll for {subject} failed: {e}")
            await asyncio.sleep(self.interval_seconds)
