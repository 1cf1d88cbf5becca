"""Unread message aggregation across a caller's rooms."""

from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from lostfound.core.claim_access import participant_clause
from lostfound.db.enums import RealtimeEventType
from lostfound.db.models import ChatMessage, Claim, Item
from lostfound.services.chat_service import unread_for_caller_clause


def participant_rooms_query(user_id: UUID | None, email: str | None):
    """Rooms where the caller is item owner or claimer (by id or email)."""
    clause = participant_clause(user_id, email)
    if clause is None:
        return None
    return select(Claim.room_id).join(Item, Item.id == Claim.item_id).where(clause)


def list_participant_rooms(db: Session, user_id: UUID | None, email: str | None) -> list[str]:
    query = participant_rooms_query(user_id, email)
    if query is None:
        return []
    return list(db.execute(query.order_by(Claim.created_at)).scalars().all())


def get_unread_counts(db: Session, user_id: UUID | None, email: str | None) -> dict[str, int]:
    """
    Unread count per participant room (rooms with nothing unread report 0).

    Unread means is_read is false and the caller did not send the message.
    """
    rooms = list_participant_rooms(db, user_id, email)
    if not rooms:
        return {}

    rows = db.execute(
        select(ChatMessage.room_id, func.count(ChatMessage.id))
        .where(
            and_(
                ChatMessage.room_id.in_(rooms),
                unread_for_caller_clause(user_id, email),
            )
        )
        .group_by(ChatMessage.room_id)
    ).all()
    counts = {room_id: 0 for room_id in rooms}
    for room_id, count in rows:
        counts[room_id] = count
    return counts


def count_update_event(counts: dict[str, int]) -> dict:
    return {
        "type": RealtimeEventType.COUNT_UPDATE.value,
        "unreadCountsByRoom": counts,
        "totalUnread": sum(counts.values()),
    }
