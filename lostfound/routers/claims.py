"""Claim endpoints: submission, lookup, status changes and claimer verification."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from lostfound.core import claim_rules
from lostfound.core.claim_access import actor_for, check_claim_access
from lostfound.core.deps import get_caller, get_db, get_optional_session, require_csrf_header
from lostfound.db.enums import ClaimStatus
from lostfound.schemas.auth import CallerSession
from lostfound.schemas.claim import (
    ClaimCreate,
    ClaimRead,
    ClaimStatusUpdate,
    ClaimerVerifyRequest,
    ClaimerVerifyResponse,
)
from lostfound.services import claim_service, claim_status_service, realtime_service
from lostfound.services.claim_service import (
    ClaimNotFoundError,
    ClaimValidationError,
    ClaimerVerificationError,
    DuplicateClaimError,
    ItemNotFoundError,
    ItemUnavailableError,
    RoomIdTakenError,
)
from lostfound.services.claim_status_service import (
    ActorNotAllowedError,
    ClaimTransitionError,
)

router = APIRouter()


class ClaimDetail(ClaimRead):
    next_statuses: list[ClaimStatus] = []


def _to_detail(claim, caller: CallerSession) -> ClaimDetail:
    detail = ClaimDetail.model_validate(claim)
    actor = actor_for(claim, caller)
    if actor is not None:
        detail.next_statuses = claim_rules.next_statuses(ClaimStatus(claim.status), actor)
    return detail


@router.post(
    "",
    response_model=ClaimRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_csrf_header)],
)
def submit_claim(
    data: ClaimCreate,
    session: CallerSession | None = Depends(get_optional_session),
    db: Session = Depends(get_db),
):
    """Submit a claim on an item; opens the claim's chat room."""
    try:
        return claim_service.submit_claim(
            db,
            item_id=data.item_id,
            claimer_name=data.claimer_name,
            claimer_email=data.claimer_email,
            claimer_phone=data.claimer_phone,
            description=data.description,
            claimer_user_id=session.user_id if session else None,
            room_id=data.room_id,
        )
    except ClaimValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (ItemUnavailableError, DuplicateClaimError, RoomIdTakenError) as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/verify", response_model=ClaimerVerifyResponse)
def verify_claimer(
    data: ClaimerVerifyRequest,
    db: Session = Depends(get_db),
):
    """Confirm a claimer's emailed token and return their room."""
    try:
        claim = claim_service.verify_claimer(db, data.token, data.email)
    except ClaimerVerificationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ClaimNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return ClaimerVerifyResponse(room_id=claim.room_id, claim_id=claim.id)


@router.get("/{claim_id}", response_model=ClaimDetail)
def get_claim(
    claim_id: UUID,
    caller: CallerSession = Depends(get_caller),
    db: Session = Depends(get_db),
):
    claim = claim_service.get_claim(db, claim_id)
    if not claim:
        raise HTTPException(status_code=404, detail="Claim not found")
    check_claim_access(claim, caller)
    return _to_detail(claim, caller)


@router.post(
    "/{claim_id}/status",
    response_model=ClaimDetail,
    dependencies=[Depends(require_csrf_header)],
)
async def change_claim_status(
    claim_id: UUID,
    data: ClaimStatusUpdate,
    caller: CallerSession = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """
    Move a claim along its lifecycle.

    The item owner accepts or rejects and marks a paid claim shipped;
    either participant marks it delivered. Paid is only ever set by settlement.
    """
    claim = claim_service.get_claim(db, claim_id)
    if not claim:
        raise HTTPException(status_code=404, detail="Claim not found")
    check_claim_access(claim, caller)

    actor = actor_for(claim, caller)
    if actor is None:
        raise HTTPException(status_code=403, detail="You don't have access to this claim")

    previous = claim.status
    try:
        claim_status_service.transition(db, claim, data.status, actor)
        db.commit()
    except ActorNotAllowedError as e:
        db.rollback()
        raise HTTPException(status_code=403, detail=str(e))
    except ClaimTransitionError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))

    if claim.status != previous:
        await realtime_service.publish_claim_status(db, claim)
    return _to_detail(claim, caller)
