"""
WebSocket router for realtime chat and unread counts.

- /ws/rooms/{room_id}: message, read_receipt and claim_status events for one
  room. One live subscription per (room, client_id); a reconnect replaces
  the older socket.
- /ws/notifications: count_update and claim_status events for the user.

Both endpoints send a "subscribed" event once the bus subscription is live,
which clients use as the realtime-healthy signal.
"""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from lostfound.core.claim_access import caller_can_access
from lostfound.core.deps import COOKIE_NAME, resolve_claimer_session, resolve_user_session
from lostfound.core.message_bus import Subscription, get_message_bus, room_channel, user_channel
from lostfound.core.websocket import manager
from lostfound.db.enums import RealtimeEventType
from lostfound.db.session import SessionLocal
from lostfound.schemas.auth import CallerSession
from lostfound.services import unread_service
from lostfound.services.claim_service import get_claim_by_room

router = APIRouter(prefix="/ws", tags=["WebSocket"])
logger = logging.getLogger(__name__)

CLOSE_UNAUTHENTICATED = 4001
CLOSE_FORBIDDEN = 4003
CLOSE_NOT_FOUND = 4004


def _authenticate(
    websocket: WebSocket, token: str | None, claimer_token: str | None
) -> CallerSession | None:
    session_token = token or websocket.cookies.get(COOKIE_NAME)
    try:
        if session_token:
            with SessionLocal() as db:
                return resolve_user_session(db, session_token)
        if claimer_token:
            return resolve_claimer_session(claimer_token)
    except HTTPException:
        return None
    return None


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json(event)


async def _serve(
    websocket: WebSocket, subscription: Subscription, greetings: list[dict], is_current
) -> None:
    """Send the greetings, pump bus events out and answer pings until disconnect."""
    forwarder = asyncio.create_task(_forward(websocket, subscription))
    try:
        for event in greetings:
            await websocket.send_json(event)
        while is_current():
            try:
                data = await websocket.receive_text()
            except (WebSocketDisconnect, RuntimeError):
                # RuntimeError: socket already closed by a replacing subscription
                break
            if data == "ping":
                await websocket.send_text("pong")
    finally:
        forwarder.cancel()
        await subscription.close()
        try:
            await forwarder
        except asyncio.CancelledError:
            pass
        except Exception:
            # Send failed because the client went away mid-event
            logger.debug("Realtime forwarder stopped", exc_info=True)


@router.websocket("/rooms/{room_id}")
async def websocket_room(
    websocket: WebSocket,
    room_id: str,
    client_id: str = Query(..., min_length=1, max_length=100),
    token: str | None = Query(None),
    claimer_token: str | None = Query(None),
):
    """
    Room subscription.

    Authenticates via ?token= / session cookie, or a room-scoped
    ?claimer_token=. Non-participants are closed with 4003.
    """
    caller = _authenticate(websocket, token, claimer_token)
    if caller is None:
        await websocket.close(code=CLOSE_UNAUTHENTICATED, reason="Authentication required")
        return

    with SessionLocal() as db:
        claim = get_claim_by_room(db, room_id)
        allowed = claim is not None and caller_can_access(claim, caller)
    if claim is None:
        await websocket.close(code=CLOSE_NOT_FOUND, reason="Room not found")
        return
    if not allowed:
        await websocket.close(code=CLOSE_FORBIDDEN, reason="Not a participant")
        return

    await websocket.accept()
    await manager.register_room(room_id, client_id, websocket)
    subscription = await get_message_bus().subscribe(room_channel(room_id))
    try:
        await _serve(
            websocket,
            subscription,
            [{"type": RealtimeEventType.SUBSCRIBED.value, "roomId": room_id}],
            lambda: manager.is_current(room_id, client_id, websocket),
        )
    finally:
        await manager.unregister_room(room_id, client_id, websocket)


@router.websocket("/notifications")
async def websocket_notifications(
    websocket: WebSocket,
    token: str | None = Query(None),
):
    """Per-user channel for unread counts; sends current counts after the ack."""
    caller = _authenticate(websocket, token, None)
    if caller is None or caller.user_id is None:
        await websocket.close(code=CLOSE_UNAUTHENTICATED, reason="Authentication required")
        return

    await websocket.accept()
    user_key = str(caller.user_id)
    await manager.register_user(user_key)
    subscription = await get_message_bus().subscribe(user_channel(caller.user_id))
    try:
        with SessionLocal() as db:
            counts = unread_service.get_unread_counts(db, caller.user_id, caller.email)
        await _serve(
            websocket,
            subscription,
            [
                {"type": RealtimeEventType.SUBSCRIBED.value, "channel": "notifications"},
                unread_service.count_update_event(counts),
            ],
            lambda: True,
        )
    finally:
        await manager.unregister_user(user_key)
