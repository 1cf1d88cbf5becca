"""Room message endpoints: durable history (with read receipts) and posting."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from lostfound.core.deps import get_caller, get_db, require_csrf_header
from lostfound.core.rate_limit import limiter, message_limit
from lostfound.core.structured_logging import build_log_context
from lostfound.schemas.auth import CallerSession
from lostfound.schemas.chat import ChatMessageCreate, ChatMessageRead
from lostfound.services import chat_service, realtime_service
from lostfound.services.chat_service import (
    ChatValidationError,
    MessageIdConflictError,
    NotParticipantError,
    RoomNotFoundError,
    SenderMismatchError,
)

router = APIRouter()
logger = logging.getLogger(__name__)

REQUIRED_MESSAGE_FIELDS = ("id", "room_id", "sender_name", "body")


def _load_room(db: Session, room_id: str, caller: CallerSession):
    try:
        return chat_service.get_room_for_caller(db, room_id, caller)
    except RoomNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NotParticipantError as e:
        raise HTTPException(status_code=403, detail=str(e))


@router.get("/{room_id}/messages", response_model=list[ChatMessageRead])
async def get_messages(
    room_id: str,
    caller: CallerSession = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """
    Room history in created_at order.

    Side effect: every unread message the caller did not send is marked
    read, and a read receipt goes out to the room.
    """
    claim = _load_room(db, room_id, caller)
    history = chat_service.list_messages(db, claim, caller)
    if history.marked_read_ids:
        await realtime_service.publish_read_receipt(
            db, claim, history.marked_read_ids, caller.user_id, caller.email
        )
    return history.messages


@router.post(
    "/{room_id}/messages",
    response_model=ChatMessageRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit(message_limit)
async def post_message(
    request: Request,
    room_id: str,
    data: ChatMessageCreate,
    response: Response,
    caller: CallerSession = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """
    Store a message, then fan it out.

    201 for a new message; 200 with the stored row when the same client id
    is resent (retry after a lost response).
    """
    missing = [
        to_camel(name)
        for name in REQUIRED_MESSAGE_FIELDS
        if getattr(data, name) in (None, "")
    ]
    if missing:
        raise HTTPException(
            status_code=400, detail=f"Missing required fields: {', '.join(missing)}"
        )
    if data.room_id != room_id:
        raise HTTPException(status_code=400, detail="roomId does not match the room")

    claim = _load_room(db, room_id, caller)
    try:
        message, created = chat_service.post_message(
            db,
            claim,
            caller,
            message_id=data.id,
            sender_id=data.sender_id,
            sender_name=data.sender_name,
            sender_email=data.sender_email,
            body=data.body,
        )
    except ChatValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SenderMismatchError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except MessageIdConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    if not created:
        response.status_code = status.HTTP_200_OK
        return message

    delivered = await realtime_service.publish_message(db, claim, message)
    if not delivered:
        logger.info(
            "Message stored without realtime delivery",
            extra=build_log_context(room_id=room_id),
        )
    return message
