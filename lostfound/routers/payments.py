"""Payment endpoints: create, settlement status poll, readiness."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from lostfound.core.claim_access import check_claim_access
from lostfound.core.deps import get_caller, get_db, require_csrf_header
from lostfound.db.models import Claim, Payment
from lostfound.schemas.auth import CallerSession
from lostfound.schemas.payment import (
    PaymentCreate,
    PaymentCreated,
    PaymentRead,
    PaymentReadinessResponse,
    PaymentStatusResponse,
)
from lostfound.services import payment_service, realtime_service, settlement_service
from lostfound.services.payment_processor import PaymentProcessor, get_payment_processor
from lostfound.services.payment_service import (
    CannotPayError,
    FeeOutOfRangeError,
    NotClaimerError,
    PaymentAttemptFailedError,
    PaymentClaimNotFoundError,
    PaymentServiceError,
    TipNotAllowedError,
)

router = APIRouter()


def _error_detail(exc: PaymentServiceError) -> dict:
    return {"code": exc.code, "message": str(exc)}


def _payment_http_error(exc: PaymentServiceError) -> HTTPException:
    """Map payment errors so clients can tell cannot-pay, failed and invalid apart."""
    if isinstance(exc, PaymentClaimNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, NotClaimerError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, CannotPayError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, (FeeOutOfRangeError, TipNotAllowedError)):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, PaymentAttemptFailedError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=_error_detail(exc))


def _load_claim(db: Session, claim_id: UUID, caller: CallerSession) -> Claim:
    claim = db.get(Claim, claim_id)
    if not claim:
        raise HTTPException(status_code=404, detail="Claim not found")
    check_claim_access(claim, caller)
    return claim


@router.post(
    "",
    response_model=PaymentCreated,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_csrf_header)],
)
async def create_payment(
    data: PaymentCreate,
    caller: CallerSession = Depends(get_caller),
    db: Session = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    """
    Start a shipping payment for an accepted claim (claimer only).

    The fee must fall within the item owner's configured range unless
    custom fees are disabled, in which case the default fee is charged.
    """
    try:
        result = await payment_service.create_payment(
            db,
            processor,
            caller,
            claim_id=data.claim_id,
            shipping_fee=data.shipping_fee,
            tip_amount=data.tip_amount,
            shipping_address=data.shipping_address,
        )
    except PaymentServiceError as e:
        raise _payment_http_error(e)

    payment = result.payment
    return PaymentCreated(
        payment_id=payment.id,
        client_secret=result.client_secret,
        intent_id=payment.external_intent_id,
        amount=result.split.total,
        shipping_fee=result.split.shipping_fee,
        tip_amount=result.split.tip_amount,
        platform_fee=result.split.platform_fee,
        transfer_to_recipient=result.split.transfer_to_recipient,
        currency=payment.currency,
    )


@router.get("", response_model=list[PaymentRead])
def list_payments(
    claim_id: UUID = Query(...),
    caller: CallerSession = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Payment attempts for a claim, newest first."""
    claim = _load_claim(db, claim_id, caller)
    return list(
        db.execute(
            select(Payment)
            .where(Payment.claim_id == claim.id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
        )
        .scalars()
        .all()
    )


@router.get("/status", response_model=PaymentStatusResponse)
async def get_payment_status(
    claim_id: UUID = Query(...),
    caller: CallerSession = Depends(get_caller),
    db: Session = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    """
    Settlement status poll: "paid" once the claim is paid, else the latest
    payment's status, else "pending". A pending intent is re-checked with
    the processor when reachable.
    """
    claim = _load_claim(db, claim_id, caller)
    previous = claim.status
    result = await settlement_service.poll_settlement_status(db, claim, processor)
    if claim.status != previous:
        await realtime_service.publish_claim_status(db, claim)
    return PaymentStatusResponse(status=result)


@router.get("/readiness", response_model=PaymentReadinessResponse)
def get_payment_readiness(
    claim_id: UUID = Query(...),
    caller: CallerSession = Depends(get_caller),
    db: Session = Depends(get_db),
):
    claim = _load_claim(db, claim_id, caller)
    readiness = payment_service.payment_readiness(db, claim)
    return PaymentReadinessResponse(
        state=readiness.state,
        reason=readiness.reason,
        claim_status=claim.status,
        payment_status=readiness.payment_status,
    )
