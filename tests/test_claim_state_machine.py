"""Tests for claim transition rules and the compare-and-set transition service."""

import pytest
from sqlalchemy import select

from lostfound.core import claim_rules
from lostfound.db.enums import ClaimActor, ClaimStatus, PaymentStatus, ShippingDetailStatus
from lostfound.db.models import Claim, Payment, ShippingDetail
from lostfound.services import claim_status_service
from lostfound.services.claim_status_service import (
    ActorNotAllowedError,
    IllegalTransitionError,
    ItemAlreadyClaimedError,
    SettlementRequiredError,
    StaleClaimStatusError,
)


# =============================================================================
# Transition table
# =============================================================================

def test_transition_table_only_moves_forward():
    for (source, target) in claim_rules.CLAIM_TRANSITIONS:
        assert claim_rules.STATUS_RANK[target] > claim_rules.STATUS_RANK[source]


@pytest.mark.parametrize(
    "source,target",
    [
        (ClaimStatus.ACCEPTED, ClaimStatus.PENDING),
        (ClaimStatus.PAID, ClaimStatus.ACCEPTED),
        (ClaimStatus.REJECTED, ClaimStatus.ACCEPTED),
        (ClaimStatus.PENDING, ClaimStatus.PAID),
        (ClaimStatus.ACCEPTED, ClaimStatus.SHIPPED),
        (ClaimStatus.DELIVERED, ClaimStatus.SHIPPED),
    ],
)
def test_backwards_and_skipping_moves_are_illegal(source, target):
    assert not claim_rules.is_legal_transition(source, target)


def test_paid_is_settlement_only():
    assert claim_rules.allowed_actors(ClaimStatus.ACCEPTED, ClaimStatus.PAID) == {
        ClaimActor.SETTLEMENT
    }


def test_next_statuses_by_actor():
    assert claim_rules.next_statuses(ClaimStatus.PENDING, ClaimActor.ITEM_OWNER) == [
        ClaimStatus.ACCEPTED,
        ClaimStatus.REJECTED,
    ]
    assert claim_rules.next_statuses(ClaimStatus.PENDING, ClaimActor.CLAIMER) == []
    assert claim_rules.next_statuses(ClaimStatus.PAID, ClaimActor.CLAIMER) == []
    assert claim_rules.next_statuses(ClaimStatus.PAID, ClaimActor.ITEM_OWNER) == [
        ClaimStatus.SHIPPED
    ]
    assert claim_rules.next_statuses(ClaimStatus.SHIPPED, ClaimActor.CLAIMER) == [
        ClaimStatus.DELIVERED
    ]
    assert claim_rules.next_statuses(ClaimStatus.DELIVERED, ClaimActor.ITEM_OWNER) == []


def test_only_accepted_claims_can_pay():
    payable = [s for s in ClaimStatus if claim_rules.can_pay(s)]
    assert payable == [ClaimStatus.ACCEPTED]


# =============================================================================
# Transition service
# =============================================================================

def test_accept_sets_item_claimed(db, claim, item):
    claim_status_service.transition(db, claim, ClaimStatus.ACCEPTED, ClaimActor.ITEM_OWNER)
    db.commit()

    db.refresh(item)
    assert claim.status == ClaimStatus.ACCEPTED.value
    assert item.is_claimed is True


def test_accept_rejected_when_item_already_claimed(db, claim, item):
    second = Claim(
        item_id=item.id,
        claimer_name="Other",
        claimer_email="other@test.com",
        description="Mine too",
        room_id="claim-second",
    )
    db.add(second)
    db.commit()

    claim_status_service.transition(db, claim, ClaimStatus.ACCEPTED, ClaimActor.ITEM_OWNER)
    db.commit()

    with pytest.raises(ItemAlreadyClaimedError):
        claim_status_service.transition(db, second, ClaimStatus.ACCEPTED, ClaimActor.ITEM_OWNER)
    db.rollback()
    db.refresh(second)
    assert second.status == ClaimStatus.PENDING.value


def test_claimer_cannot_accept_own_claim(db, claim):
    with pytest.raises(ActorNotAllowedError):
        claim_status_service.transition(db, claim, ClaimStatus.ACCEPTED, ClaimActor.CLAIMER)


def test_illegal_move_raises(db, claim):
    with pytest.raises(IllegalTransitionError):
        claim_status_service.transition(db, claim, ClaimStatus.SHIPPED, ClaimActor.ITEM_OWNER)


def test_same_status_is_noop(db, accepted_claim):
    result = claim_status_service.transition(
        db, accepted_claim, ClaimStatus.ACCEPTED, ClaimActor.ITEM_OWNER
    )
    assert result.status == ClaimStatus.ACCEPTED.value


def test_paid_requires_succeeded_payment(db, accepted_claim, payout_account):
    with pytest.raises(SettlementRequiredError):
        claim_status_service.transition(
            db, accepted_claim, ClaimStatus.PAID, ClaimActor.SETTLEMENT
        )


def test_paid_with_succeeded_payment(db, accepted_claim, payout_account, owner, claimer):
    db.add(
        Payment(
            claim_id=accepted_claim.id,
            payer_user_id=claimer.id,
            payer_email=claimer.email,
            recipient_user_id=owner.id,
            amount=500,
            shipping_fee=500,
            tip_amount=0,
            platform_fee_amount=50,
            status=PaymentStatus.SUCCEEDED.value,
            external_intent_id="pi_done",
        )
    )
    db.commit()

    claim_status_service.transition(db, accepted_claim, ClaimStatus.PAID, ClaimActor.SETTLEMENT)
    db.commit()
    assert accepted_claim.status == ClaimStatus.PAID.value


def test_stale_status_detected(db, claim):
    # Another writer rejects the claim after we loaded it
    db.execute(
        Claim.__table__.update()
        .where(Claim.__table__.c.id == claim.id)
        .values(status=ClaimStatus.REJECTED.value)
    )
    db.commit()
    claim.status = ClaimStatus.PENDING.value  # what the caller observed

    with pytest.raises(StaleClaimStatusError):
        claim_status_service.transition(db, claim, ClaimStatus.ACCEPTED, ClaimActor.ITEM_OWNER)
    db.rollback()


# =============================================================================
# API
# =============================================================================

@pytest.mark.asyncio
async def test_owner_accepts_via_api(client, claim, owner_auth, item, db):
    response = await client.post(
        f"/claims/{claim.id}/status",
        json={"status": "accepted"},
        headers=owner_auth.headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "accepted"
    assert data["nextStatuses"] == []

    db.refresh(item)
    assert item.is_claimed is True


@pytest.mark.asyncio
async def test_claimer_cannot_accept_via_api(client, claim, claimer_auth):
    response = await client.post(
        f"/claims/{claim.id}/status",
        json={"status": "accepted"},
        headers=claimer_auth.headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_backwards_move_via_api_is_conflict(client, accepted_claim, owner_auth):
    response = await client.post(
        f"/claims/{accepted_claim.id}/status",
        json={"status": "pending"},
        headers=owner_auth.headers,
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_paid_cannot_be_set_by_participants(client, accepted_claim, owner_auth):
    response = await client.post(
        f"/claims/{accepted_claim.id}/status",
        json={"status": "paid"},
        headers=owner_auth.headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_outsider_cannot_change_status(client, claim, outsider_auth):
    response = await client.post(
        f"/claims/{claim.id}/status",
        json={"status": "rejected"},
        headers=outsider_auth.headers,
    )
    assert response.status_code == 403


# =============================================================================
# Shipping progression
# =============================================================================

@pytest.fixture
def paid_claim(db, accepted_claim, owner, claimer) -> Claim:
    payment = Payment(
        claim_id=accepted_claim.id,
        payer_user_id=claimer.id,
        payer_email=claimer.email,
        recipient_user_id=owner.id,
        amount=500,
        shipping_fee=500,
        tip_amount=0,
        platform_fee_amount=50,
        status=PaymentStatus.SUCCEEDED.value,
        external_intent_id="pi_shipping",
    )
    payment.shipping_detail = ShippingDetail(
        address_line1="1 Main St", city="Springfield", state="IL", postal_code="62701"
    )
    db.add(payment)
    accepted_claim.status = ClaimStatus.PAID.value
    db.commit()
    return accepted_claim


@pytest.mark.asyncio
async def test_claimer_cannot_mark_shipped(client, db, paid_claim, claimer_auth):
    response = await client.post(
        f"/claims/{paid_claim.id}/status",
        json={"status": "shipped"},
        headers=claimer_auth.headers,
    )
    assert response.status_code == 403

    db.refresh(paid_claim)
    assert paid_claim.status == ClaimStatus.PAID.value


@pytest.mark.asyncio
async def test_owner_ships_and_claimer_confirms_delivery(
    client, db, paid_claim, owner_auth, claimer_auth
):
    shipped = await client.post(
        f"/claims/{paid_claim.id}/status",
        json={"status": "shipped"},
        headers=owner_auth.headers,
    )
    assert shipped.status_code == 200
    assert shipped.json()["status"] == "shipped"

    detail = db.execute(select(ShippingDetail)).scalar_one()
    db.refresh(detail)
    assert detail.status == ShippingDetailStatus.SHIPPED.value

    delivered = await client.post(
        f"/claims/{paid_claim.id}/status",
        json={"status": "delivered"},
        headers=claimer_auth.headers,
    )
    assert delivered.status_code == 200

    db.refresh(detail)
    assert detail.status == ShippingDetailStatus.DELIVERED.value
