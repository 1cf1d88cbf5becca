"""
WebSocket connection registry for realtime chat and unread counts.

Tracks which websocket holds the subscription for each (room, client) pair
so a client never has more than one live subscription per open room: a new
connection for the same pair replaces (and closes) the previous one.
"""

import asyncio
import logging
from typing import Dict

from fastapi import WebSocket

logger = logging.getLogger(__name__)

REPLACED_CLOSE_CODE = 4009


class ConnectionManager:
    """Manages room subscriptions per client and user notification sockets."""

    def __init__(self):
        # (room_id, client_id) -> active websocket
        self._room_connections: Dict[tuple[str, str], WebSocket] = {}
        # user_key -> number of notification sockets
        self._user_counts: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def register_room(self, room_id: str, client_id: str, websocket: WebSocket) -> None:
        """Register a room subscription, closing any previous one for the client."""
        async with self._lock:
            previous = self._room_connections.get((room_id, client_id))
            self._room_connections[(room_id, client_id)] = websocket

        if previous is not None and previous is not websocket:
            try:
                await previous.close(code=REPLACED_CLOSE_CODE, reason="Subscription replaced")
            except Exception:
                # Connection already gone
                logger.debug("Previous room socket already closed", exc_info=True)

    async def unregister_room(self, room_id: str, client_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            if self._room_connections.get((room_id, client_id)) is websocket:
                del self._room_connections[(room_id, client_id)]

    def is_current(self, room_id: str, client_id: str, websocket: WebSocket) -> bool:
        return self._room_connections.get((room_id, client_id)) is websocket

    def room_subscription_count(self, room_id: str) -> int:
        return sum(1 for (rid, _cid) in self._room_connections if rid == room_id)

    async def register_user(self, user_key: str) -> None:
        async with self._lock:
            self._user_counts[user_key] = self._user_counts.get(user_key, 0) + 1

    async def unregister_user(self, user_key: str) -> None:
        async with self._lock:
            remaining = self._user_counts.get(user_key, 0) - 1
            if remaining <= 0:
                self._user_counts.pop(user_key, None)
            else:
                self._user_counts[user_key] = remaining

    def get_connected_count(self, user_key: str) -> int:
        return self._user_counts.get(user_key, 0)

    def get_total_connections(self) -> int:
        return len(self._room_connections) + sum(self._user_counts.values())


# Singleton instance
manager = ConnectionManager()
