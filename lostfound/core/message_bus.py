"""
Message bus for realtime fan-out.

Channels are plain strings ("room:<room_id>", "user:<user_id>"). The bus is
a delivery cache only: the durable chat log is the source of truth, so a
dropped or reordered realtime event is never a correctness problem.

- InMemoryMessageBus: single-process fan-out over asyncio queues.
- RedisMessageBus: cross-worker fan-out over Redis pub/sub.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Protocol

from lostfound.core.redis_client import get_async_redis_client

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 1000
REDIS_CHANNEL_PREFIX = "lostfound:"


def room_channel(room_id: str) -> str:
    return f"room:{room_id}"


def user_channel(user_id: Any) -> str:
    return f"user:{user_id}"


class Subscription(Protocol):
    channel: str

    def __aiter__(self) -> AsyncIterator[dict]: ...

    async def close(self) -> None: ...


class MessageBus(Protocol):
    async def publish(self, channel: str, event: dict) -> None: ...

    async def subscribe(self, channel: str) -> Subscription: ...


# =============================================================================
# In-memory bus
# =============================================================================

_CLOSED = object()


class InMemorySubscription:
    """Queue-backed subscription; iteration ends once closed."""

    def __init__(self, bus: "InMemoryMessageBus", channel: str):
        self.channel = channel
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._closed = False

    def _deliver(self, event: dict) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Subscriber queue full, dropping realtime event on %s", self.channel)

    async def __aiter__(self) -> AsyncIterator[dict]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._unregister(self)
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Drain one slot so the iterator can observe the close marker
            self._queue.get_nowait()
            self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed


class InMemoryMessageBus:
    """Per-channel subscription registry for a single process."""

    def __init__(self):
        self._subscribers: dict[str, set[InMemorySubscription]] = {}

    async def publish(self, channel: str, event: dict) -> None:
        for subscription in list(self._subscribers.get(channel, ())):
            subscription._deliver(event)

    async def subscribe(self, channel: str) -> InMemorySubscription:
        subscription = InMemorySubscription(self, channel)
        self._subscribers.setdefault(channel, set()).add(subscription)
        return subscription

    def _unregister(self, subscription: InMemorySubscription) -> None:
        subscribers = self._subscribers.get(subscription.channel)
        if not subscribers:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.channel]

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))


# =============================================================================
# Redis bus
# =============================================================================

class RedisSubscription:
    def __init__(self, pubsub, channel: str):
        self.channel = channel
        self._pubsub = pubsub
        self._closed = False

    async def __aiter__(self) -> AsyncIterator[dict]:
        async for message in self._pubsub.listen():
            if self._closed:
                return
            if message.get("type") != "message":
                continue
            data = message.get("data")
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            try:
                yield json.loads(data)
            except (TypeError, json.JSONDecodeError):
                logger.warning("Ignoring malformed realtime event on %s", self.channel)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._pubsub.unsubscribe(REDIS_CHANNEL_PREFIX + self.channel)
        await self._pubsub.aclose()


class RedisMessageBus:
    """Redis pub/sub fan-out shared by every API worker."""

    def __init__(self, client):
        self._client = client

    async def publish(self, channel: str, event: dict) -> None:
        await self._client.publish(REDIS_CHANNEL_PREFIX + channel, json.dumps(event, default=str))

    async def subscribe(self, channel: str) -> RedisSubscription:
        pubsub = self._client.pubsub()
        await pubsub.subscribe(REDIS_CHANNEL_PREFIX + channel)
        return RedisSubscription(pubsub, channel)


_bus: MessageBus | None = None


def get_message_bus() -> MessageBus:
    """Return the process-wide bus (Redis when configured, else in-memory)."""
    global _bus
    if _bus is None:
        client = get_async_redis_client()
        _bus = RedisMessageBus(client) if client is not None else InMemoryMessageBus()
    return _bus


async def publish_safely(bus: MessageBus, channel: str, event: dict) -> bool:
    """
    Publish without failing the caller.

    Used after the durable write has committed: a realtime failure only
    degrades latency, the log still has the data.
    """
    try:
        await bus.publish(channel, event)
        return True
    except Exception:
        logger.warning("Realtime publish failed on %s", channel, exc_info=True)
        return False
