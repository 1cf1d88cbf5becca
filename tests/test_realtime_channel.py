"""Tests for the bus-backed client realtime channel."""

import asyncio

import pytest

from lostfound.client.realtime import DISCONNECTED, BusRealtimeChannel
from lostfound.core.message_bus import InMemoryMessageBus, user_channel


async def _settle():
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def bus():
    return InMemoryMessageBus()


@pytest.fixture
def channel(bus):
    return BusRealtimeChannel(bus)


@pytest.mark.asyncio
async def test_ack_arrives_before_any_event(bus, channel):
    events = []
    subscription = await channel.subscribe(user_channel("7"), events.append)
    await bus.publish(user_channel("7"), {"type": "count_update", "totalUnread": 2})
    await _settle()

    assert [e["type"] for e in events] == ["subscribed", "count_update"]
    await subscription.close()


@pytest.mark.asyncio
async def test_stream_ending_without_close_reports_disconnect(channel):
    events = []
    subscription = await channel.subscribe(user_channel("7"), events.append)
    await _settle()

    # The bus side goes away (worker restart, Redis drop)
    await subscription._subscription.close()
    await _settle()

    assert events[-1]["type"] == DISCONNECTED
    assert subscription.active is False
    await subscription.close()


@pytest.mark.asyncio
async def test_closed_subscriptions_are_dropped(channel):
    first = await channel.subscribe("room:a", lambda event: None)
    second = await channel.subscribe("room:a", lambda event: None)
    await _settle()

    await first.close()
    assert channel.active_count("room:a") == 1
    assert channel._subscriptions == {second}

    await second.close()
    await second.close()
    assert channel._subscriptions == set()
