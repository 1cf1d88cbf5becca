"""Tests for the in-memory message bus and safe publishing."""

import asyncio

import pytest

from lostfound.core.message_bus import (
    InMemoryMessageBus,
    publish_safely,
    room_channel,
    user_channel,
)


async def _next(subscription):
    return await asyncio.wait_for(anext(aiter(subscription)), timeout=1.0)


def test_channel_names():
    assert room_channel("claim-abc") == "room:claim-abc"
    assert user_channel("42") == "user:42"


@pytest.mark.asyncio
async def test_publish_reaches_every_subscriber_on_channel():
    bus = InMemoryMessageBus()
    first = await bus.subscribe("room:a")
    second = await bus.subscribe("room:a")
    other = await bus.subscribe("room:b")

    await bus.publish("room:a", {"type": "message", "n": 1})

    assert await _next(first) == {"type": "message", "n": 1}
    assert await _next(second) == {"type": "message", "n": 1}
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(anext(aiter(other)), timeout=0.05)


@pytest.mark.asyncio
async def test_close_ends_iteration_and_unregisters():
    bus = InMemoryMessageBus()
    subscription = await bus.subscribe("room:a")
    assert bus.subscriber_count("room:a") == 1

    await subscription.close()
    await subscription.close()

    assert subscription.closed is True
    assert bus.subscriber_count("room:a") == 0
    received = [event async for event in subscription]
    assert received == []


@pytest.mark.asyncio
async def test_events_after_close_are_dropped():
    bus = InMemoryMessageBus()
    subscription = await bus.subscribe("room:a")
    await bus.publish("room:a", {"n": 1})
    await subscription.close()
    await bus.publish("room:a", {"n": 2})

    received = [event async for event in subscription]
    assert received == [{"n": 1}]


@pytest.mark.asyncio
async def test_events_arrive_in_publish_order():
    bus = InMemoryMessageBus()
    subscription = await bus.subscribe("user:1")
    for n in range(5):
        await bus.publish("user:1", {"n": n})
    await subscription.close()

    assert [event["n"] async for event in subscription] == [0, 1, 2, 3, 4]


class _BrokenBus:
    async def publish(self, channel, event):
        raise ConnectionError("redis down")


@pytest.mark.asyncio
async def test_publish_safely_reports_failure():
    assert await publish_safely(_BrokenBus(), "room:a", {"type": "message"}) is False


@pytest.mark.asyncio
async def test_publish_safely_reports_success():
    bus = InMemoryMessageBus()
    assert await publish_safely(bus, "room:a", {"type": "message"}) is True
