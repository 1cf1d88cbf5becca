"""Realtime push helpers (room events and per-user unread counts).

Everything here runs after the durable write has committed and never
raises: a lost realtime event only delays the UI until the next fetch.
"""

from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from lostfound.core.claim_access import is_participant
from lostfound.core.message_bus import (
    get_message_bus,
    publish_safely,
    room_channel,
    user_channel,
)
from lostfound.db.enums import RealtimeEventType
from lostfound.db.models import ChatMessage, Claim, User
from lostfound.services import chat_service, unread_service


def participant_users(db: Session, claim: Claim) -> list[User]:
    """Registered users on either side of a claim."""
    candidates = [func.lower(User.email) == claim.claimer_email.strip().lower()]
    candidates += [
        User.id == user_id
        for user_id in (claim.item.owner_user_id, claim.claimer_user_id)
        if user_id is not None
    ]
    users = db.execute(select(User).where(or_(*candidates))).scalars().all()
    return [user for user in users if is_participant(claim, user.id, user.email)]


async def push_unread_counts(db: Session, user: User) -> None:
    counts = unread_service.get_unread_counts(db, user.id, user.email)
    await publish_safely(
        get_message_bus(), user_channel(user.id), unread_service.count_update_event(counts)
    )


async def push_unread_counts_for_room(
    db: Session, claim: Claim, exclude_user_id: UUID | None = None
) -> None:
    for user in participant_users(db, claim):
        if user.id != exclude_user_id:
            await push_unread_counts(db, user)


async def publish_message(db: Session, claim: Claim, message: ChatMessage) -> bool:
    """Fan out a stored message to the room and refresh recipients' counts."""
    delivered = await publish_safely(
        get_message_bus(), room_channel(claim.room_id), chat_service.message_event(message)
    )
    await push_unread_counts_for_room(db, claim, exclude_user_id=message.sender_id)
    return delivered


async def publish_read_receipt(
    db: Session,
    claim: Claim,
    message_ids: list[UUID],
    reader_id: UUID | None,
    reader_email: str | None = None,
) -> None:
    if not message_ids:
        return
    await publish_safely(
        get_message_bus(),
        room_channel(claim.room_id),
        chat_service.read_receipt_event(claim.room_id, message_ids, reader_id),
    )
    reader = None
    if reader_id is not None:
        reader = db.get(User, reader_id)
    elif reader_email:
        reader = db.execute(
            select(User).where(func.lower(User.email) == reader_email.strip().lower())
        ).scalar_one_or_none()
    if reader is not None:
        await push_unread_counts(db, reader)


async def publish_claim_status(db: Session, claim: Claim) -> None:
    event = {
        "type": RealtimeEventType.CLAIM_STATUS.value,
        "roomId": claim.room_id,
        "claimId": str(claim.id),
        "status": claim.status,
    }
    bus = get_message_bus()
    await publish_safely(bus, room_channel(claim.room_id), event)
    for user in participant_users(db, claim):
        await publish_safely(bus, user_channel(user.id), event)
