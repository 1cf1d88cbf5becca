"""
Aggregate unread tracker for an authenticated user.

Counts come from GET /me/unread and from count_update events on the
user's realtime channel. Recomputes happen on message and read events,
when the app regains visibility, and on a polling interval whenever
realtime is not confirmed:

- after connecting, polling is armed if no "subscribed" ack arrives
  within REALTIME_ACK_TIMEOUT_SECONDS
- while realtime is healthy, polling is suppressed
- a dropped realtime stream re-arms polling
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable
from uuid import UUID

import httpx

from lostfound.client.api import ApiError, LostFoundApi
from lostfound.client.realtime import DISCONNECTED, RealtimeChannel, RealtimeSubscription
from lostfound.core.config import settings
from lostfound.core.message_bus import user_channel
from lostfound.db.enums import RealtimeEventType

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class UnreadTracker:
    def __init__(
        self,
        api: LostFoundApi,
        realtime: RealtimeChannel,
        user_id: UUID,
        *,
        ack_timeout: float | None = None,
        poll_interval: float | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.api = api
        self.realtime = realtime
        self.user_id = user_id
        self.ack_timeout = (
            settings.REALTIME_ACK_TIMEOUT_SECONDS if ack_timeout is None else ack_timeout
        )
        self.poll_interval = (
            settings.UNREAD_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        )
        self._sleep = sleep
        self.counts_by_room: dict[str, int] = {}
        self.total_unread = 0
        self.realtime_healthy = False
        self.visible = True
        self._subscription: RealtimeSubscription | None = None
        self._ack_task: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self) -> None:
        """Fetch current counts, subscribe, and arm the ack timeout."""
        await self.recompute()
        self._subscription = await self.realtime.subscribe(
            user_channel(self.user_id), self.handle_event
        )
        self._ack_task = asyncio.create_task(self._await_ack())

    async def stop(self) -> None:
        for task in (self._ack_task, self._poll_task):
            if task is not None:
                task.cancel()
        for task in (self._ack_task, self._poll_task):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._ack_task = self._poll_task = None
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()
        self.realtime_healthy = False

    async def recompute(self) -> dict[str, int]:
        """Refetch counts; a failed fetch keeps the previous numbers."""
        try:
            data = await self.api.get_unread()
        except (ApiError, httpx.HTTPError):
            logger.warning("Unread count refresh failed", exc_info=True)
            return self.counts_by_room
        self._apply_counts(data)
        return self.counts_by_room

    def _apply_counts(self, data: dict) -> None:
        self.counts_by_room = dict(data.get("unreadCountsByRoom", {}))
        self.total_unread = int(data.get("totalUnread", sum(self.counts_by_room.values())))

    async def handle_event(self, event: dict) -> None:
        event_type = event.get("type")
        if event_type == RealtimeEventType.SUBSCRIBED.value:
            self.realtime_healthy = True
            await self._stop_polling()
        elif event_type == DISCONNECTED:
            self.realtime_healthy = False
            self._start_polling()
        elif event_type == RealtimeEventType.COUNT_UPDATE.value:
            self._apply_counts(event)
        elif event_type in (
            RealtimeEventType.MESSAGE.value,
            RealtimeEventType.READ_RECEIPT.value,
        ):
            await self.recompute()

    async def on_visibility_change(self, visible: bool) -> None:
        """Recompute when the app comes back to the foreground."""
        regained = visible and not self.visible
        self.visible = visible
        if regained:
            await self.recompute()

    async def _await_ack(self) -> None:
        await self._sleep(self.ack_timeout)
        if not self.realtime_healthy:
            logger.info("Realtime not confirmed, polling unread counts")
            self._start_polling()

    def _start_polling(self) -> None:
        if self.polling:
            return
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def _stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _poll_loop(self) -> None:
        while not self.realtime_healthy:
            await self._sleep(self.poll_interval)
            if self.realtime_healthy:
                return
            await self.recompute()
