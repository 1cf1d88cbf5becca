"""Client-side realtime channel.

RealtimeChannel is what the chat session and unread tracker depend on. The
in-repo implementation rides the server's MessageBus (same process or the
shared Redis), which is what tests and server-side consumers use.

Every subscription first delivers a "subscribed" event once it is live and
a "disconnected" event if the underlying stream ends without close(). On the
bus the ack is emitted as soon as the bus subscription exists, which is the
same point at which /ws/rooms and /ws/notifications send theirs. A remote
transport over those endpoints must relay the server's "subscribed" frame
rather than synthesize one on connect: UnreadTracker only leaves polling
mode when that ack arrives.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Protocol, Union

from lostfound.core.message_bus import MessageBus
from lostfound.db.enums import RealtimeEventType

logger = logging.getLogger(__name__)

DISCONNECTED = "disconnected"

EventHandler = Callable[[dict], Union[None, Awaitable[None]]]


class RealtimeSubscription(Protocol):
    channel: str

    @property
    def active(self) -> bool: ...

    async def close(self) -> None: ...


class RealtimeChannel(Protocol):
    async def subscribe(self, channel: str, on_event: EventHandler) -> RealtimeSubscription: ...

    async def publish(self, channel: str, event: dict) -> None: ...


async def _dispatch(handler: EventHandler, event: dict) -> None:
    result = handler(event)
    if inspect.isawaitable(result):
        await result


class BusSubscription:
    """Pumps bus events into a handler until closed."""

    def __init__(
        self,
        channel: str,
        subscription: Any,
        on_event: EventHandler,
        on_close: Callable[["BusSubscription"], None] | None = None,
    ):
        self.channel = channel
        self._subscription = subscription
        self._on_event = on_event
        self._on_close = on_close
        self._closed = False
        self._task = asyncio.create_task(self._pump())

    @property
    def active(self) -> bool:
        return not self._closed and not self._task.done()

    async def _pump(self) -> None:
        await _dispatch(
            self._on_event,
            {"type": RealtimeEventType.SUBSCRIBED.value, "channel": self.channel},
        )
        async for event in self._subscription:
            try:
                await _dispatch(self._on_event, event)
            except Exception:
                logger.warning("Realtime handler failed on %s", self.channel, exc_info=True)
        if not self._closed:
            await _dispatch(self._on_event, {"type": DISCONNECTED, "channel": self.channel})

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._subscription.close()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        if self._on_close is not None:
            self._on_close(self)


class BusRealtimeChannel:
    """RealtimeChannel over a MessageBus; tracks live subscriptions."""

    def __init__(self, bus: MessageBus):
        self._bus = bus
        self._subscriptions: set[BusSubscription] = set()

    async def subscribe(self, channel: str, on_event: EventHandler) -> BusSubscription:
        bus_subscription = await self._bus.subscribe(channel)
        subscription = BusSubscription(
            channel, bus_subscription, on_event, on_close=self._subscriptions.discard
        )
        self._subscriptions.add(subscription)
        return subscription

    async def publish(self, channel: str, event: dict) -> None:
        await self._bus.publish(channel, event)

    def active_count(self, channel: str | None = None) -> int:
        return sum(
            1
            for s in self._subscriptions
            if s.active and (channel is None or s.channel == channel)
        )
