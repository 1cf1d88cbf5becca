"""Payout account endpoints for item owners."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from lostfound.core.deps import get_caller, get_current_session, get_db, require_csrf_header
from lostfound.db.models import Claim, User
from lostfound.schemas.auth import CallerSession
from lostfound.schemas.base import CamelModel
from lostfound.schemas.payout import OnboardingLink, PayoutAccountStatus, RecipientStatus
from lostfound.services import payout_account_service
from lostfound.services.payment_processor import (
    PaymentProcessor,
    PaymentProcessorError,
    get_payment_processor,
)
from lostfound.services.payout_account_service import (
    PayoutAccessError,
    PayoutAccountNotFoundError,
)

router = APIRouter()


class OnboardingRequest(CamelModel):
    return_url: str | None = None


@router.post(
    "/onboarding",
    response_model=OnboardingLink,
    dependencies=[Depends(require_csrf_header)],
)
async def start_onboarding(
    data: OnboardingRequest | None = None,
    session: CallerSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    """Create the caller's connected account if needed and return an onboarding link."""
    user = db.get(User, session.user_id)
    try:
        account_id, url = await payout_account_service.start_onboarding(
            db, processor, user, return_url=data.return_url if data else None
        )
    except PaymentProcessorError:
        raise HTTPException(
            status_code=502,
            detail={"code": "processor_unavailable", "message": "Could not start onboarding"},
        )
    return OnboardingLink(account_id=account_id, url=url)


@router.get("/status", response_model=PayoutAccountStatus)
async def get_status(
    force: bool = Query(False),
    session: CallerSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    """Live account status; falls back to the stored flags if the processor is down."""
    result = await payout_account_service.refresh_status(
        db, processor, session.user_id, force=force
    )
    return PayoutAccountStatus.model_validate(result)


@router.get("/recipient-status", response_model=RecipientStatus)
def get_recipient_status(
    claim_id: UUID = Query(...),
    caller: CallerSession = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Whether the claim's item owner can receive payments."""
    try:
        result = payout_account_service.recipient_status(db, db.get(Claim, claim_id), caller)
    except PayoutAccountNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PayoutAccessError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return RecipientStatus(ready=result.enabled, has_account=result.has_account)
