"""Claim access control - the single participant predicate for claims and rooms.

A caller participates in a claim (and its chat room) when they are:
- the owning user of the claimed item, or
- the claim's claimer_user_id, or
- presenting an email equal to the claim's claimer_email (case-insensitive).

Every read or mutation of a claim, its messages, or its payments goes
through is_participant.
"""

from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func, or_

from lostfound.db.enums import ClaimActor
from lostfound.db.models import Claim, Item
from lostfound.schemas.auth import CallerSession


def _normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    normalized = email.strip().lower()
    return normalized or None


def is_item_owner(claim: Claim, caller_id: UUID | None) -> bool:
    owner_id = claim.item.owner_user_id if claim.item else None
    return caller_id is not None and owner_id is not None and owner_id == caller_id


def is_claimer(claim: Claim, caller_id: UUID | None, caller_email: str | None) -> bool:
    if caller_id is not None and claim.claimer_user_id == caller_id:
        return True
    email = _normalize_email(caller_email)
    return email is not None and email == _normalize_email(claim.claimer_email)


def is_participant(claim: Claim, caller_id: UUID | None, caller_email: str | None) -> bool:
    """Pure participant predicate (no I/O)."""
    return is_item_owner(claim, caller_id) or is_claimer(claim, caller_id, caller_email)


def participant_clause(caller_id: UUID | None, caller_email: str | None):
    """
    is_participant as a SQL condition over Claim joined to Item.

    Returns None when the caller has neither an id nor an email.
    """
    conditions = []
    if caller_id is not None:
        conditions.append(Item.owner_user_id == caller_id)
        conditions.append(Claim.claimer_user_id == caller_id)
    email = _normalize_email(caller_email)
    if email is not None:
        conditions.append(func.lower(Claim.claimer_email) == email)
    if not conditions:
        return None
    return or_(*conditions)


def actor_for(claim: Claim, caller: CallerSession) -> ClaimActor | None:
    """
    Map a caller to their claim actor role.

    Item ownership wins when a user is somehow both owner and claimer.
    """
    if is_item_owner(claim, caller.user_id):
        return ClaimActor.ITEM_OWNER
    if is_claimer(claim, caller.user_id, caller.email):
        return ClaimActor.CLAIMER
    return None


def caller_can_access(claim: Claim, caller: CallerSession) -> bool:
    """Participant check that also honours room-scoped claimer tokens."""
    if caller.room_scope is not None and caller.room_scope != claim.room_id:
        return False
    return is_participant(claim, caller.user_id, caller.email)


def check_claim_access(claim: Claim, caller: CallerSession) -> None:
    """
    Raise 403 unless the caller participates in the claim.

    Raises:
        HTTPException: 403 if access denied
    """
    if not caller_can_access(claim, caller):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You don't have access to this claim",
        )
