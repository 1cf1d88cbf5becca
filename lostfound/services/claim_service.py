"""Claim submission, lookup and claimer email verification."""

import logging
import re
import uuid
from uuid import UUID

import jwt
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lostfound.core.security import decode_claimer_token
from lostfound.core.structured_logging import build_log_context
from lostfound.db.enums import ClaimStatus
from lostfound.db.models import Claim, Item

logger = logging.getLogger(__name__)

ROOM_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,100}$")

# Claims that still hold a place in the item's queue
ACTIVE_CLAIM_STATUSES = (
    ClaimStatus.PENDING.value,
    ClaimStatus.ACCEPTED.value,
    ClaimStatus.PAID.value,
    ClaimStatus.SHIPPED.value,
    ClaimStatus.DELIVERED.value,
)


class ClaimServiceError(Exception):
    """Base exception for claim service errors."""

    pass


class ClaimValidationError(ClaimServiceError):
    """Submitted claim fields are invalid."""

    pass


class ItemNotFoundError(ClaimServiceError):
    """Item not found."""

    pass


class ClaimNotFoundError(ClaimServiceError):
    """Claim or room not found."""

    pass


class ItemUnavailableError(ClaimServiceError):
    """Item already has an accepted claim."""

    pass


class DuplicateClaimError(ClaimServiceError):
    """Same claimer already has an active claim on the item."""

    pass


class RoomIdTakenError(ClaimServiceError):
    """Requested room id is already in use."""

    pass


class ClaimerVerificationError(ClaimServiceError):
    """Claimer token invalid or does not match the email."""

    pass


def new_room_id() -> str:
    return f"claim-{uuid.uuid4().hex}"


def get_claim(db: Session, claim_id: UUID) -> Claim | None:
    return db.get(Claim, claim_id)


def get_claim_by_room(db: Session, room_id: str) -> Claim | None:
    return db.execute(select(Claim).where(Claim.room_id == room_id)).scalar_one_or_none()


def submit_claim(
    db: Session,
    *,
    item_id: UUID,
    claimer_name: str,
    claimer_email: str,
    description: str,
    claimer_phone: str | None = None,
    claimer_user_id: UUID | None = None,
    room_id: str | None = None,
) -> Claim:
    """
    Create a pending claim with its own chat room.

    A rejected claim does not block a new claim; a claimer with an active
    claim on the same item cannot open a second one.
    """
    claimer_name = (claimer_name or "").strip()
    claimer_email = (claimer_email or "").strip().lower()
    description = (description or "").strip()
    if not claimer_name or not claimer_email or not description:
        raise ClaimValidationError("Missing required fields")
    if "@" not in claimer_email:
        raise ClaimValidationError("Invalid email address")
    if room_id is not None and not ROOM_ID_PATTERN.match(room_id):
        raise ClaimValidationError("Invalid room id")

    item = db.get(Item, item_id)
    if not item:
        raise ItemNotFoundError("Item not found")
    if item.is_claimed:
        raise ItemUnavailableError("Item has already been claimed")

    duplicate = db.execute(
        select(Claim.id).where(
            Claim.item_id == item_id,
            func.lower(Claim.claimer_email) == claimer_email,
            Claim.status.in_(ACTIVE_CLAIM_STATUSES),
        )
    ).first()
    if duplicate:
        raise DuplicateClaimError("You already have an open claim on this item")

    claim = Claim(
        item_id=item_id,
        claimer_user_id=claimer_user_id,
        claimer_name=claimer_name,
        claimer_email=claimer_email,
        claimer_phone=(claimer_phone or "").strip() or None,
        description=description,
        room_id=room_id or new_room_id(),
        status=ClaimStatus.PENDING.value,
    )
    db.add(claim)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise RoomIdTakenError("Room id already in use")
    db.refresh(claim)

    logger.info(
        "Claim submitted",
        extra=build_log_context(claim_id=str(claim.id), room_id=claim.room_id),
    )
    return claim


def verify_claimer(db: Session, token: str, email: str) -> Claim:
    """
    Check a claimer token against the email the claimer typed in.

    Returns the claim backing the token's room.
    """
    try:
        payload = decode_claimer_token(token)
    except jwt.InvalidTokenError:
        raise ClaimerVerificationError("Invalid or expired verification token")

    if payload["email"] != (email or "").strip().lower():
        raise ClaimerVerificationError("Email address doesn't match the verification token")

    claim = get_claim_by_room(db, payload["room_id"])
    if not claim:
        raise ClaimNotFoundError("Chat room not found")
    if claim.claimer_email.strip().lower() != payload["email"]:
        raise ClaimerVerificationError("Email address doesn't match the verification token")
    return claim
