"""Settlement reconciliation: the single place external payment outcomes
change Payment and Claim state.

Both the processor webhook and the status-poll fallback call
apply_settlement_event. Calls are keyed by the external intent id, so
duplicate or concurrent deliveries converge on the same final state.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lostfound.core.structured_logging import build_log_context
from lostfound.db.enums import (
    ClaimActor,
    ClaimStatus,
    PaymentStatus,
    SettlementOutcome,
)
from lostfound.db.models import Claim, Payment
from lostfound.services import claim_status_service
from lostfound.services.payment_processor import PaymentProcessor, PaymentProcessorError

logger = logging.getLogger(__name__)

DUPLICATE_SETTLEMENT = "duplicate_settlement"

# Claim statuses at or past settlement
SETTLED_CLAIM_STATUSES = frozenset({ClaimStatus.PAID, ClaimStatus.SHIPPED, ClaimStatus.DELIVERED})


class SettlementError(Exception):
    """Base exception for settlement errors."""

    pass


@dataclass
class SettlementResult:
    payment: Payment | None
    claim: Claim | None
    changed: bool
    claim_status_changed: bool = False


def get_payment_by_intent(db: Session, intent_id: str) -> Payment | None:
    return db.execute(
        select(Payment).where(Payment.external_intent_id == intent_id)
    ).scalar_one_or_none()


def latest_payment(db: Session, claim_id: UUID) -> Payment | None:
    return db.execute(
        select(Payment)
        .where(Payment.claim_id == claim_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _other_succeeded_payment(db: Session, payment: Payment) -> Payment | None:
    return db.execute(
        select(Payment).where(
            Payment.claim_id == payment.claim_id,
            Payment.status == PaymentStatus.SUCCEEDED.value,
            Payment.id != payment.id,
        )
    ).scalar_one_or_none()


def _mark_duplicate(db: Session, payment: Payment, log_context: dict) -> SettlementResult:
    """Record funds captured for an already settled claim as owed back to the payer."""
    payment.status = PaymentStatus.REFUND_DUE.value
    payment.error_message = DUPLICATE_SETTLEMENT
    db.commit()
    logger.error(
        "Second payment succeeded for an already settled claim; needs refund",
        extra=log_context,
    )
    return SettlementResult(payment=payment, claim=payment.claim, changed=True)


def _advance_claim_to_paid(db: Session, claim: Claim, log_context: dict) -> bool:
    status = claim_status_service.current_status(claim)
    if status in SETTLED_CLAIM_STATUSES:
        return False
    if status != ClaimStatus.ACCEPTED:
        logger.error(
            "Payment succeeded for claim in status %s; claim left unchanged",
            status.value,
            extra=log_context,
        )
        return False
    try:
        claim_status_service.transition(db, claim, ClaimStatus.PAID, ClaimActor.SETTLEMENT)
    except claim_status_service.ClaimTransitionError:
        logger.exception("Could not mark claim paid", extra=log_context)
        return False
    return claim_status_service.current_status(claim) == ClaimStatus.PAID


def _apply_success(db: Session, payment: Payment, log_context: dict) -> SettlementResult:
    claim = payment.claim
    changed = False

    if payment.status == PaymentStatus.REFUND_DUE.value:
        return SettlementResult(payment=payment, claim=claim, changed=False)

    if payment.status != PaymentStatus.SUCCEEDED.value:
        if _other_succeeded_payment(db, payment):
            return _mark_duplicate(db, payment, log_context)
        payment.status = PaymentStatus.SUCCEEDED.value
        payment.error_message = None
        try:
            db.flush()
        except IntegrityError:
            # Another payment for this claim settled concurrently
            db.rollback()
            payment = db.get(Payment, payment.id)
            return _mark_duplicate(db, payment, log_context)
        changed = True

    claim_changed = _advance_claim_to_paid(db, claim, log_context)
    db.commit()

    if changed:
        logger.info("Payment settled", extra=log_context)
    return SettlementResult(
        payment=payment,
        claim=claim,
        changed=changed or claim_changed,
        claim_status_changed=claim_changed,
    )


def _apply_failure(db: Session, payment: Payment, log_context: dict) -> SettlementResult:
    if payment.status != PaymentStatus.PENDING.value:
        # Failed already, or superseded by a success / cancellation
        return SettlementResult(payment=payment, claim=payment.claim, changed=False)

    payment.status = PaymentStatus.FAILED.value
    payment.error_message = payment.error_message or "payment_failed"
    db.commit()
    logger.info("Payment failed; claim stays accepted", extra=log_context)
    return SettlementResult(payment=payment, claim=payment.claim, changed=True)


def apply_settlement_event(
    db: Session,
    intent_id: str,
    outcome: SettlementOutcome,
    *,
    claim_id: UUID | None = None,
) -> SettlementResult:
    """
    Reconcile one processor outcome for an intent.

    Success marks the payment succeeded and moves the claim accepted -> paid.
    Failure marks a pending payment failed and leaves the claim accepted.
    A success overrides an earlier failed attempt on the same intent (the
    processor allows retrying an intent); nothing overrides a success.
    Repeat deliveries are no-ops that return the current state.
    """
    payment = get_payment_by_intent(db, intent_id)
    claim_ref = payment.claim_id if payment else claim_id
    log_context = build_log_context(
        intent_id=intent_id,
        claim_id=str(claim_ref) if claim_ref else None,
    )
    if payment is None:
        logger.warning("Settlement event for unknown intent", extra=log_context)
        return SettlementResult(payment=None, claim=None, changed=False)

    if claim_id is not None and claim_id != payment.claim_id:
        logger.error(
            "Intent metadata claim id does not match the recorded payment; using the record",
            extra=log_context,
        )

    if outcome == SettlementOutcome.SUCCEEDED:
        return _apply_success(db, payment, log_context)
    return _apply_failure(db, payment, log_context)


async def poll_settlement_status(
    db: Session,
    claim: Claim,
    processor: PaymentProcessor | None = None,
) -> str:
    """
    Settlement status for a claim: "paid" once settled, else the latest
    payment's status, else "pending".

    With a processor, a pending intent is re-checked and any terminal
    outcome is fed through apply_settlement_event. Processor errors fall
    back to the recorded status.
    """
    if claim_status_service.current_status(claim) in SETTLED_CLAIM_STATUSES:
        return ClaimStatus.PAID.value

    payment = latest_payment(db, claim.id)
    if payment is None:
        return PaymentStatus.PENDING.value

    if (
        processor is not None
        and payment.status == PaymentStatus.PENDING.value
        and payment.external_intent_id
    ):
        try:
            intent = await processor.retrieve_payment_intent(payment.external_intent_id)
        except PaymentProcessorError:
            logger.warning(
                "Intent re-check failed, using recorded status",
                extra=build_log_context(
                    claim_id=str(claim.id), intent_id=payment.external_intent_id
                ),
            )
        else:
            if intent.outcome is not None:
                apply_settlement_event(
                    db, payment.external_intent_id, intent.outcome, claim_id=claim.id
                )
                db.refresh(claim)
                db.refresh(payment)
                if claim_status_service.current_status(claim) in SETTLED_CLAIM_STATUSES:
                    return ClaimStatus.PAID.value

    return payment.status
