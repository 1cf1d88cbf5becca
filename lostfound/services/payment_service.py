"""Payment creation for accepted claims and payment readiness.

Amounts are always derived server-side: the fee is validated against the
resolved shipping config and the platform split is recomputed here. The
Payment row is written before the external intent exists, so a processor
failure never leaves an intent without a record (and the record is closed
out as failed when the intent cannot be created).
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from lostfound.core import claim_rules
from lostfound.core.claim_access import is_claimer
from lostfound.core.config import settings
from lostfound.core.structured_logging import build_log_context
from lostfound.db.enums import ClaimStatus, PaymentReadiness, PaymentStatus
from lostfound.db.models import Claim, Payment, ShippingDetail
from lostfound.schemas.auth import CallerSession
from lostfound.schemas.shipping import ShippingAddress
from lostfound.services import payout_account_service, shipping_config_service
from lostfound.services.fees import FeeSplit, compute_fee_split
from lostfound.services.payment_processor import PaymentProcessor, PaymentProcessorError
from lostfound.services.settlement_service import (
    DUPLICATE_SETTLEMENT,
    SETTLED_CLAIM_STATUSES,
    latest_payment,
)

logger = logging.getLogger(__name__)


class PaymentServiceError(Exception):
    """Base exception for payment errors; code is stable for clients."""

    code = "payment_error"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        if code:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class PaymentClaimNotFoundError(PaymentServiceError):
    code = "claim_not_found"


class NotClaimerError(PaymentServiceError):
    code = "not_claimer"


class CannotPayError(PaymentServiceError):
    """Payment not possible yet (distinct from a failed attempt)."""

    code = "cannot_pay"


class ClaimNotAcceptedError(CannotPayError):
    code = "claim_not_accepted"


class RecipientNotReadyError(CannotPayError):
    code = "recipient_not_ready"


class AlreadyPaidError(CannotPayError):
    code = "already_paid"


class FeeOutOfRangeError(PaymentServiceError):
    code = "fee_out_of_range"


class TipNotAllowedError(PaymentServiceError):
    code = "tip_not_allowed"


class PaymentAttemptFailedError(PaymentServiceError):
    """Processor rejected or could not create the intent."""

    code = "payment_attempt_failed"

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


@dataclass
class PaymentCreation:
    payment: Payment
    split: FeeSplit
    client_secret: str | None


# =============================================================================
# Validation
# =============================================================================

def _has_succeeded_payment(db: Session, claim_id: UUID) -> bool:
    return (
        db.execute(
            select(Payment.id).where(
                Payment.claim_id == claim_id,
                Payment.status == PaymentStatus.SUCCEEDED.value,
            )
        ).first()
        is not None
    )


def _has_refund_due(db: Session, claim_id: UUID) -> bool:
    return (
        db.execute(
            select(Payment.id).where(
                Payment.claim_id == claim_id,
                Payment.status == PaymentStatus.REFUND_DUE.value,
            )
        ).first()
        is not None
    )


def _check_can_pay(db: Session, claim: Claim) -> None:
    status = ClaimStatus(claim.status)
    if status in SETTLED_CLAIM_STATUSES or _has_succeeded_payment(db, claim.id):
        raise AlreadyPaidError("This claim has already been paid")
    if not claim_rules.can_pay(status):
        raise ClaimNotAcceptedError("Payment can only be made for accepted claims")
    if not payout_account_service.is_enabled(db, claim.item.owner_user_id):
        raise RecipientNotReadyError(
            "The item owner doesn't have a properly set up payment account"
        )


def resolve_amounts(
    config: shipping_config_service.ResolvedShippingConfig,
    shipping_fee: int | None,
    tip_amount: int,
) -> FeeSplit:
    """Validate the requested fee and tip against the config and split them."""
    if not config.allow_custom_fee or shipping_fee is None:
        fee = config.default_fee
    else:
        fee = shipping_fee
        if not config.check_fee(fee):
            raise FeeOutOfRangeError(
                f"Shipping fee must be between {config.min_fee} and {config.max_fee}"
            )
    if tip_amount < 0:
        raise FeeOutOfRangeError("Tip cannot be negative")
    if tip_amount and not config.allow_tipping:
        raise TipNotAllowedError("Tipping is not enabled for this item")
    return compute_fee_split(fee, tip_amount)


# =============================================================================
# Creation
# =============================================================================

async def _cancel_superseded(db: Session, processor: PaymentProcessor, claim: Claim) -> None:
    """Cancel open intents before renegotiated terms create a new one."""
    pending = db.execute(
        select(Payment).where(
            Payment.claim_id == claim.id,
            Payment.status == PaymentStatus.PENDING.value,
        )
    ).scalars().all()
    for payment in pending:
        if payment.external_intent_id:
            try:
                await processor.cancel_payment_intent(payment.external_intent_id)
            except PaymentProcessorError:
                # A late success on this intent is still reconciled by settlement
                logger.warning(
                    "Could not cancel superseded intent",
                    extra=build_log_context(
                        claim_id=str(claim.id), intent_id=payment.external_intent_id
                    ),
                )
        payment.status = PaymentStatus.CANCELED.value
        payment.error_message = "superseded"
    if pending:
        db.commit()


async def create_payment(
    db: Session,
    processor: PaymentProcessor,
    caller: CallerSession,
    *,
    claim_id: UUID,
    shipping_fee: int | None,
    tip_amount: int = 0,
    shipping_address: ShippingAddress | None = None,
) -> PaymentCreation:
    """
    Create a Payment and its destination-transfer intent for an accepted claim.

    Raises:
        PaymentClaimNotFoundError, NotClaimerError: lookup / authorization
        CannotPayError subclasses: claim or recipient not ready, already paid
        FeeOutOfRangeError, TipNotAllowedError: validation
        PaymentAttemptFailedError: processor failure (payment marked failed)
    """
    claim = db.get(Claim, claim_id)
    if not claim:
        raise PaymentClaimNotFoundError("Claim not found")
    if caller.room_scope is not None and caller.room_scope != claim.room_id:
        raise NotClaimerError("Only the claimer can pay for shipping")
    if not is_claimer(claim, caller.user_id, caller.email):
        raise NotClaimerError("Only the claimer can pay for shipping")

    # Status may have moved since the caller last looked
    db.refresh(claim)
    _check_can_pay(db, claim)

    config = shipping_config_service.resolve_for_claim(db, claim)
    split = resolve_amounts(config, shipping_fee, tip_amount)
    log_context = build_log_context(
        claim_id=str(claim.id),
        user_id=str(caller.user_id) if caller.user_id else None,
    )

    await _cancel_superseded(db, processor, claim)

    recipient_id = claim.item.owner_user_id
    account = payout_account_service.get_account(db, recipient_id)
    payment = Payment(
        claim_id=claim.id,
        payer_user_id=caller.user_id,
        payer_email=(caller.email or claim.claimer_email).strip().lower(),
        recipient_user_id=recipient_id,
        amount=split.total,
        shipping_fee=split.shipping_fee,
        tip_amount=split.tip_amount,
        platform_fee_amount=split.platform_fee,
        currency=settings.PAYMENT_CURRENCY,
        status=PaymentStatus.PENDING.value,
    )
    if shipping_address is not None:
        payment.shipping_detail = ShippingDetail(
            address_line1=shipping_address.address_line1,
            address_line2=shipping_address.address_line2,
            city=shipping_address.city,
            state=shipping_address.state,
            postal_code=shipping_address.postal_code,
            country=shipping_address.country.upper(),
        )
    db.add(payment)
    db.commit()
    db.refresh(payment)

    try:
        intent = await processor.create_payment_intent(
            amount=split.total,
            currency=payment.currency,
            destination_account_id=account.external_account_id,
            transfer_amount=split.transfer_to_recipient,
            metadata={
                "claimId": str(claim.id),
                "itemId": str(claim.item_id),
                "paymentId": str(payment.id),
                "shippingFee": str(split.shipping_fee),
                "tipAmount": str(split.tip_amount),
                "platformFee": str(split.platform_fee),
                "transferAmount": str(split.transfer_to_recipient),
            },
            description=f"Shipping for claimed item: {claim.item.title}",
            idempotency_key=f"payment:{payment.id}",
        )
    except PaymentProcessorError as exc:
        payment.status = PaymentStatus.FAILED.value
        payment.error_message = str(exc)[:500]
        db.commit()
        logger.warning("Payment intent creation failed", extra=log_context)
        raise PaymentAttemptFailedError(
            "Payment could not be started, please try again", retryable=exc.retryable
        ) from exc

    payment.external_intent_id = intent.id
    try:
        db.commit()
    except Exception:
        db.rollback()
        try:
            await processor.cancel_payment_intent(intent.id)
        except PaymentProcessorError:
            logger.error(
                "Orphaned intent could not be canceled",
                extra={**log_context, "intent_id": intent.id},
            )
        payment = db.get(Payment, payment.id)
        if payment is not None:
            payment.status = PaymentStatus.FAILED.value
            payment.error_message = "intent_record_failed"
            db.commit()
        raise

    logger.info(
        "Payment intent created",
        extra={**log_context, "intent_id": intent.id},
    )
    return PaymentCreation(payment=payment, split=split, client_secret=intent.client_secret)


# =============================================================================
# Readiness
# =============================================================================

@dataclass
class Readiness:
    state: PaymentReadiness
    reason: str | None = None
    payment_status: str | None = None


def payment_readiness(db: Session, claim: Claim) -> Readiness:
    """Which of the distinct payment UI states applies to a claim."""
    status = ClaimStatus(claim.status)
    if status in SETTLED_CLAIM_STATUSES or _has_succeeded_payment(db, claim.id):
        reason = DUPLICATE_SETTLEMENT if _has_refund_due(db, claim.id) else None
        return Readiness(
            PaymentReadiness.PAID, reason=reason, payment_status=PaymentStatus.SUCCEEDED.value
        )
    if not claim_rules.can_pay(status):
        return Readiness(PaymentReadiness.CANNOT_PAY, reason=ClaimNotAcceptedError.code)
    if not payout_account_service.is_enabled(db, claim.item.owner_user_id):
        return Readiness(PaymentReadiness.CANNOT_PAY, reason=RecipientNotReadyError.code)

    latest = latest_payment(db, claim.id)
    if latest is None:
        return Readiness(PaymentReadiness.READY)
    if latest.status == PaymentStatus.FAILED.value:
        return Readiness(
            PaymentReadiness.FAILED, reason=latest.error_message, payment_status=latest.status
        )
    if latest.status == PaymentStatus.PENDING.value:
        return Readiness(PaymentReadiness.PROCESSING, payment_status=latest.status)
    return Readiness(PaymentReadiness.READY, payment_status=latest.status)
