"""
Chat room session for a client.

- One realtime subscription per open room; close() tears it down.
- History and realtime events are merged by message id and re-sorted by
  createdAt, so duplicates and out-of-order delivery are harmless.
- Sending writes to the durable log first. If that fails the send is
  reported as failed; a best-effort realtime-only publish may still be
  attempted, but the message is not considered delivered.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import UUID

import httpx

from lostfound.client.api import ApiError, LostFoundApi
from lostfound.client.realtime import DISCONNECTED, RealtimeChannel, RealtimeSubscription
from lostfound.core.message_bus import room_channel
from lostfound.db.enums import RealtimeEventType

logger = logging.getLogger(__name__)


class MessageSendError(Exception):
    """The durable write failed; the message is not stored."""

    def __init__(self, message: dict, cause: Exception, *, published_degraded: bool = False):
        self.message = message
        self.cause = cause
        self.published_degraded = published_degraded
        super().__init__(f"Message {message['id']} was not stored: {cause}")


def _created_at_key(message: dict) -> datetime:
    value = message.get("createdAt")
    if isinstance(value, datetime):
        parsed = value
    elif value:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    else:
        return datetime.max.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def merge_messages(existing: Iterable[dict], incoming: Iterable[dict]) -> list[dict]:
    """
    Union by id, later copies win field-by-field, sorted by createdAt.

    Ties on createdAt fall back to id so the order is stable across clients.
    """
    by_id: dict[str, dict] = {}
    for message in list(existing) + list(incoming):
        key = str(message["id"])
        by_id[key] = {**by_id.get(key, {}), **message}
    return sorted(by_id.values(), key=lambda m: (_created_at_key(m), str(m["id"])))


class ChatRoomSession:
    """Client view of one claim room."""

    def __init__(
        self,
        api: LostFoundApi,
        realtime: RealtimeChannel,
        room_id: str,
        *,
        sender_name: str,
        sender_id: UUID | None = None,
        sender_email: str | None = None,
        allow_degraded_publish: bool = True,
    ):
        self.api = api
        self.realtime = realtime
        self.room_id = room_id
        self.sender_name = sender_name
        self.sender_id = sender_id
        self.sender_email = sender_email
        self.allow_degraded_publish = allow_degraded_publish
        self.messages: list[dict] = []
        self.realtime_ready = False
        self.claim_status: str | None = None
        self._subscription: RealtimeSubscription | None = None

    @property
    def is_open(self) -> bool:
        return self._subscription is not None

    async def open(self) -> list[dict]:
        """
        Subscribe, then load history.

        Subscribing first means nothing published between the two steps is
        lost; the merge drops the overlap. Opening twice is a no-op.
        """
        if self._subscription is None:
            self._subscription = await self.realtime.subscribe(
                room_channel(self.room_id), self._on_event
            )
        await self.refresh()
        return self.messages

    async def refresh(self) -> list[dict]:
        """Reload history (which marks the caller's unread messages read)."""
        history = await self.api.get_messages(self.room_id)
        self.messages = merge_messages(self.messages, history)
        return self.messages

    async def close(self) -> None:
        subscription, self._subscription = self._subscription, None
        self.realtime_ready = False
        if subscription is not None:
            await subscription.close()

    async def __aenter__(self) -> "ChatRoomSession":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _on_event(self, event: dict) -> None:
        event_type = event.get("type")
        if event_type == RealtimeEventType.SUBSCRIBED.value:
            self.realtime_ready = True
        elif event_type == DISCONNECTED:
            self.realtime_ready = False
        elif event_type == RealtimeEventType.MESSAGE.value:
            message = event.get("message")
            if message and message.get("roomId", self.room_id) == self.room_id:
                self.messages = merge_messages(self.messages, [message])
        elif event_type == RealtimeEventType.READ_RECEIPT.value:
            read_ids = {str(i) for i in event.get("messageIds", [])}
            self.messages = [
                {**m, "isRead": True} if str(m["id"]) in read_ids else m
                for m in self.messages
            ]
        elif event_type == RealtimeEventType.CLAIM_STATUS.value:
            self.claim_status = event.get("status")

    def _new_message(self, body: str) -> dict[str, Any]:
        return {
            "id": str(uuid.uuid4()),
            "roomId": self.room_id,
            "senderId": str(self.sender_id) if self.sender_id else None,
            "senderName": self.sender_name,
            "senderEmail": self.sender_email,
            "body": body,
        }

    async def send(self, body: str) -> dict:
        """
        Durable write, then merge the stored row.

        Raises:
            MessageSendError: The durable write failed. The message is not
                added to the local log.
        """
        message = self._new_message(body)
        try:
            stored = await self.api.post_message(message)
        except (ApiError, httpx.HTTPError) as e:
            published = False
            if self.allow_degraded_publish:
                published = await self._publish_degraded(message)
            raise MessageSendError(message, e, published_degraded=published) from e

        self.messages = merge_messages(self.messages, [stored])
        return stored

    async def _publish_degraded(self, message: dict) -> bool:
        event = {
            "type": RealtimeEventType.MESSAGE.value,
            "roomId": self.room_id,
            "message": {
                **message,
                "isRead": False,
                "createdAt": datetime.now(timezone.utc).isoformat(),
            },
        }
        try:
            await self.realtime.publish(room_channel(self.room_id), event)
            return True
        except Exception:
            logger.warning("Degraded realtime publish failed", exc_info=True)
            return False
