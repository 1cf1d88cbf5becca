"""Claim status transitions (compare-and-set against the stored status)."""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from lostfound.core import claim_rules
from lostfound.core.structured_logging import build_log_context
from lostfound.db.enums import ClaimActor, ClaimStatus, PaymentStatus, ShippingDetailStatus
from lostfound.db.models import Claim, Item, Payment, PayoutAccount, ShippingDetail

logger = logging.getLogger(__name__)


class ClaimTransitionError(Exception):
    """Base exception for claim status transitions."""

    pass


class IllegalTransitionError(ClaimTransitionError):
    """Requested move is not in the transition table."""

    def __init__(self, current: ClaimStatus, target: ClaimStatus):
        super().__init__(f"Cannot move claim from {current.value} to {target.value}")
        self.current = current
        self.target = target


class ActorNotAllowedError(ClaimTransitionError):
    """Caller's role may not perform this transition."""

    pass


class ItemAlreadyClaimedError(ClaimTransitionError):
    """Another claim on the item was already accepted."""

    pass


class StaleClaimStatusError(ClaimTransitionError):
    """Claim status changed underneath the caller."""

    pass


class SettlementRequiredError(ClaimTransitionError):
    """Claim cannot be marked paid without a succeeded payment."""

    pass


def current_status(claim: Claim) -> ClaimStatus:
    return ClaimStatus(claim.status)


def _has_succeeded_payment(db: Session, claim: Claim) -> bool:
    return (
        db.execute(
            select(Payment.id).where(
                Payment.claim_id == claim.id,
                Payment.status == PaymentStatus.SUCCEEDED.value,
            )
        ).first()
        is not None
    )


def _recipient_enabled(db: Session, claim: Claim) -> bool:
    owner_id = claim.item.owner_user_id if claim.item else None
    if owner_id is None:
        return False
    account = db.execute(
        select(PayoutAccount).where(PayoutAccount.user_id == owner_id)
    ).scalar_one_or_none()
    return bool(account and account.enabled)


def _claim_item(db: Session, claim: Claim) -> bool:
    """Flip item.is_claimed false -> true; False when someone got there first."""
    result = db.execute(
        update(Item)
        .where(Item.id == claim.item_id, Item.is_claimed.is_(False))
        .values(is_claimed=True, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


SHIPPING_STATUS_FOR_CLAIM = {
    ClaimStatus.SHIPPED: ShippingDetailStatus.SHIPPED,
    ClaimStatus.DELIVERED: ShippingDetailStatus.DELIVERED,
}


def _advance_shipping_detail(db: Session, claim: Claim, status: ShippingDetailStatus) -> None:
    """Mirror the claim's shipping progress onto the settled payment's address row."""
    settled = select(Payment.id).where(
        Payment.claim_id == claim.id,
        Payment.status == PaymentStatus.SUCCEEDED.value,
    )
    db.execute(
        update(ShippingDetail)
        .where(ShippingDetail.payment_id.in_(settled))
        .values(status=status.value, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )


def transition(
    db: Session,
    claim: Claim,
    target: ClaimStatus,
    actor: ClaimActor,
) -> Claim:
    """
    Move a claim to target status on behalf of actor.

    The write is a conditional UPDATE on the status the caller observed, so
    concurrent writers cannot skip or reverse a step. If the stored status
    already equals target (a concurrent writer applied the same move) the
    call succeeds without changes.

    Does not commit; callers own the transaction.

    Raises:
        IllegalTransitionError: move not in the table
        ActorNotAllowedError: actor may not perform the move
        ItemAlreadyClaimedError: accepting while the item is already claimed
        SettlementRequiredError: marking paid without a succeeded payment
        StaleClaimStatusError: stored status changed to something else
    """
    observed = current_status(claim)
    if observed == target:
        return claim

    if not claim_rules.is_legal_transition(observed, target):
        raise IllegalTransitionError(observed, target)
    if actor not in claim_rules.allowed_actors(observed, target):
        raise ActorNotAllowedError(
            f"{actor.value} may not move a claim from {observed.value} to {target.value}"
        )

    log_context = build_log_context(claim_id=str(claim.id), room_id=claim.room_id)

    if target == ClaimStatus.ACCEPTED:
        db.refresh(claim.item)
        if claim.item.is_claimed or not _claim_item(db, claim):
            raise ItemAlreadyClaimedError("Item has already been claimed")

    if target == ClaimStatus.PAID:
        if not _has_succeeded_payment(db, claim):
            raise SettlementRequiredError("Claim has no succeeded payment")
        if not _recipient_enabled(db, claim):
            # Funds were already captured by the processor; record and proceed
            logger.warning(
                "Claim paid while recipient payout account is not enabled",
                extra=log_context,
            )

    result = db.execute(
        update(Claim)
        .where(Claim.id == claim.id, Claim.status == observed.value)
        .values(status=target.value, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    db.refresh(claim)

    if result.rowcount != 1:
        if current_status(claim) == target:
            return claim
        raise StaleClaimStatusError(
            f"Claim status changed to {claim.status} before {target.value} could be applied"
        )

    if target in SHIPPING_STATUS_FOR_CLAIM:
        _advance_shipping_detail(db, claim, SHIPPING_STATUS_FOR_CLAIM[target])

    logger.info(
        "Claim status %s -> %s by %s",
        observed.value,
        target.value,
        actor.value,
        extra=log_context,
    )
    return claim
