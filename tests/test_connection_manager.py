"""Tests for the websocket connection registry."""

import pytest

from lostfound.core.websocket import REPLACED_CLOSE_CODE, ConnectionManager


class FakeWebSocket:
    def __init__(self):
        self.closed_with = None

    async def close(self, code: int = 1000, reason: str | None = None):
        self.closed_with = code


class GoneWebSocket:
    async def close(self, code: int = 1000, reason: str | None = None):
        raise RuntimeError("Cannot call close once a close message has been sent")


@pytest.mark.asyncio
async def test_new_subscription_replaces_previous():
    manager = ConnectionManager()
    first, second = FakeWebSocket(), FakeWebSocket()

    await manager.register_room("claim-a", "tab-1", first)
    await manager.register_room("claim-a", "tab-1", second)

    assert first.closed_with == REPLACED_CLOSE_CODE
    assert second.closed_with is None
    assert manager.is_current("claim-a", "tab-1", second)
    assert not manager.is_current("claim-a", "tab-1", first)
    assert manager.room_subscription_count("claim-a") == 1


@pytest.mark.asyncio
async def test_distinct_clients_keep_their_own_subscriptions():
    manager = ConnectionManager()
    owner_socket, claimer_socket = FakeWebSocket(), FakeWebSocket()

    await manager.register_room("claim-a", "owner-tab", owner_socket)
    await manager.register_room("claim-a", "claimer-tab", claimer_socket)

    assert manager.room_subscription_count("claim-a") == 2
    assert owner_socket.closed_with is None


@pytest.mark.asyncio
async def test_reregistering_same_socket_does_not_close_it():
    manager = ConnectionManager()
    socket = FakeWebSocket()

    await manager.register_room("claim-a", "tab-1", socket)
    await manager.register_room("claim-a", "tab-1", socket)

    assert socket.closed_with is None


@pytest.mark.asyncio
async def test_replacing_already_closed_socket_is_tolerated():
    manager = ConnectionManager()
    replacement = FakeWebSocket()

    await manager.register_room("claim-a", "tab-1", GoneWebSocket())
    await manager.register_room("claim-a", "tab-1", replacement)

    assert manager.is_current("claim-a", "tab-1", replacement)


@pytest.mark.asyncio
async def test_stale_unregister_keeps_replacement():
    manager = ConnectionManager()
    first, second = FakeWebSocket(), FakeWebSocket()
    await manager.register_room("claim-a", "tab-1", first)
    await manager.register_room("claim-a", "tab-1", second)

    # The replaced socket's handler cleans up after the replacement registered
    await manager.unregister_room("claim-a", "tab-1", first)
    assert manager.is_current("claim-a", "tab-1", second)

    await manager.unregister_room("claim-a", "tab-1", second)
    assert manager.room_subscription_count("claim-a") == 0


@pytest.mark.asyncio
async def test_user_connection_counts():
    manager = ConnectionManager()

    await manager.register_user("user:1")
    await manager.register_user("user:1")
    await manager.register_room("claim-a", "tab-1", FakeWebSocket())
    assert manager.get_connected_count("user:1") == 2
    assert manager.get_total_connections() == 3

    await manager.unregister_user("user:1")
    await manager.unregister_user("user:1")
    await manager.unregister_user("user:1")
    assert manager.get_connected_count("user:1") == 0
    assert manager.get_total_connections() == 1
