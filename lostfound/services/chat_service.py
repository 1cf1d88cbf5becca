"""Durable chat log for claim rooms: history, mark-read, and message posting."""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import and_, func, or_, select, true, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lostfound.core.claim_access import caller_can_access
from lostfound.core.structured_logging import build_log_context
from lostfound.db.enums import RealtimeEventType
from lostfound.db.models import ChatMessage, Claim
from lostfound.schemas.auth import CallerSession
from lostfound.schemas.chat import ChatMessageRead, ReadReceipt
from lostfound.services.claim_service import get_claim_by_room

logger = logging.getLogger(__name__)

MAX_BODY_LENGTH = 4000


class ChatServiceError(Exception):
    """Base exception for chat service errors."""

    pass


class ChatValidationError(ChatServiceError):
    """Message payload is missing fields or malformed."""

    pass


class RoomNotFoundError(ChatServiceError):
    """No claim backs this room."""

    pass


class NotParticipantError(ChatServiceError):
    """Caller does not participate in the room's claim."""

    pass


class SenderMismatchError(ChatServiceError):
    """Message claims to be from someone other than the caller."""

    pass


class MessageIdConflictError(ChatServiceError):
    """Message id already used for a different room or sender."""

    pass


@dataclass
class MessageHistory:
    messages: list[ChatMessage]
    marked_read_ids: list[UUID]


# =============================================================================
# Ownership predicates
# =============================================================================

def _normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    return email.strip().lower() or None


def is_own_message(message: ChatMessage, user_id: UUID | None, email: str | None) -> bool:
    """A message is the caller's own by sender id, or by email for guest senders."""
    if user_id is not None and message.sender_id == user_id:
        return True
    email = _normalize_email(email)
    return (
        message.sender_id is None
        and email is not None
        and _normalize_email(message.sender_email) == email
    )


def not_own_message_clause(user_id: UUID | None, email: str | None):
    """SQL counterpart of `not is_own_message` (NULL-safe)."""
    conditions = []
    if user_id is not None:
        conditions.append(
            or_(ChatMessage.sender_id.is_(None), ChatMessage.sender_id != user_id)
        )
    email = _normalize_email(email)
    if email is not None:
        conditions.append(
            or_(
                ChatMessage.sender_id.is_not(None),
                func.lower(func.coalesce(ChatMessage.sender_email, "")) != email,
            )
        )
    return and_(true(), *conditions)


def unread_for_caller_clause(user_id: UUID | None, email: str | None):
    return and_(ChatMessage.is_read.is_(False), not_own_message_clause(user_id, email))


# =============================================================================
# Room access
# =============================================================================

def get_room_for_caller(db: Session, room_id: str, caller: CallerSession) -> Claim:
    """
    Load the claim behind a room and check the caller participates.

    Raises:
        RoomNotFoundError: no claim for this room
        NotParticipantError: caller is not a participant
    """
    claim = get_claim_by_room(db, room_id)
    if not claim:
        raise RoomNotFoundError("Room not found")
    if not caller_can_access(claim, caller):
        raise NotParticipantError("You are not a participant in this room")
    return claim


# =============================================================================
# History and read receipts
# =============================================================================

def list_messages(db: Session, claim: Claim, caller: CallerSession) -> MessageHistory:
    """
    Return the room's messages in created_at order, marking every message
    the caller did not send as read in one batch update.
    """
    unread_filter = and_(
        ChatMessage.room_id == claim.room_id,
        unread_for_caller_clause(caller.user_id, caller.email),
    )
    marked_ids = list(db.execute(select(ChatMessage.id).where(unread_filter)).scalars().all())
    if marked_ids:
        db.execute(
            update(ChatMessage)
            .where(ChatMessage.id.in_(marked_ids), ChatMessage.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        db.commit()

    messages = list(
        db.execute(
            select(ChatMessage)
            .where(ChatMessage.room_id == claim.room_id)
            .order_by(ChatMessage.created_at, ChatMessage.id)
            .execution_options(populate_existing=True)
        )
        .scalars()
        .all()
    )
    if marked_ids:
        logger.debug(
            "Marked %d messages read",
            len(marked_ids),
            extra=build_log_context(room_id=claim.room_id),
        )
    return MessageHistory(messages=messages, marked_read_ids=marked_ids)


def count_unread_in_room(db: Session, room_id: str, caller: CallerSession) -> int:
    return db.execute(
        select(func.count(ChatMessage.id)).where(
            ChatMessage.room_id == room_id,
            unread_for_caller_clause(caller.user_id, caller.email),
        )
    ).scalar_one()


# =============================================================================
# Posting
# =============================================================================

def _check_sender(caller: CallerSession, sender_id: UUID | None, sender_email: str | None) -> None:
    if caller.user_id is not None:
        if sender_id != caller.user_id:
            raise SenderMismatchError("Sender does not match the authenticated user")
        return
    if sender_id is not None or _normalize_email(sender_email) != _normalize_email(caller.email):
        raise SenderMismatchError("Sender does not match the verified claimer")


def _same_sender(message: ChatMessage, sender_id: UUID | None, sender_email: str | None) -> bool:
    return message.sender_id == sender_id and _normalize_email(
        message.sender_email
    ) == _normalize_email(sender_email)


def post_message(
    db: Session,
    claim: Claim,
    caller: CallerSession,
    *,
    message_id: UUID,
    sender_id: UUID | None,
    sender_name: str,
    sender_email: str | None,
    body: str,
) -> tuple[ChatMessage, bool]:
    """
    Append a message to the room's durable log.

    The client-generated id makes retries safe: resending the same id for
    the same room and sender returns the stored row (created=False).

    Returns:
        (message, created)
    """
    body = body.strip()
    sender_name = sender_name.strip()
    if not body or not sender_name:
        raise ChatValidationError("Message body and sender name are required")
    if len(body) > MAX_BODY_LENGTH:
        raise ChatValidationError(f"Message body exceeds {MAX_BODY_LENGTH} characters")

    _check_sender(caller, sender_id, sender_email)

    existing = db.get(ChatMessage, message_id)
    if existing:
        if existing.room_id == claim.room_id and _same_sender(existing, sender_id, sender_email):
            return existing, False
        raise MessageIdConflictError("Message id already in use")

    message = ChatMessage(
        id=message_id,
        room_id=claim.room_id,
        sender_id=sender_id,
        sender_name=sender_name[:100],
        sender_email=_normalize_email(sender_email),
        body=body,
        is_read=False,
    )
    db.add(message)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # Concurrent retry with the same id won the insert
        existing = db.get(ChatMessage, message_id)
        if existing and existing.room_id == claim.room_id and _same_sender(
            existing, sender_id, sender_email
        ):
            return existing, False
        raise MessageIdConflictError("Message id already in use")
    db.refresh(message)

    logger.info(
        "Chat message stored",
        extra=build_log_context(
            room_id=claim.room_id,
            user_id=str(sender_id) if sender_id else None,
        ),
    )
    return message, True


# =============================================================================
# Realtime payloads
# =============================================================================

def message_event(message: ChatMessage) -> dict:
    return {
        "type": RealtimeEventType.MESSAGE.value,
        "roomId": message.room_id,
        "message": ChatMessageRead.model_validate(message).to_wire(),
    }


def read_receipt_event(room_id: str, message_ids: list[UUID], reader_id: UUID | None) -> dict:
    receipt = ReadReceipt(room_id=room_id, message_ids=message_ids, reader_id=reader_id)
    return {"type": RealtimeEventType.READ_RECEIPT.value, **receipt.to_wire()}
