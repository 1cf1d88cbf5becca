"""Tests for payment creation, readiness and the settlement status poll."""

import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from lostfound.db.enums import ClaimStatus, PaymentStatus, SettlementOutcome
from lostfound.db.models import Payment, ShippingConfig
from lostfound.schemas.auth import CallerSession
from lostfound.services import payment_service
from lostfound.services.payment_processor import PaymentProcessorError
from lostfound.services.settlement_service import apply_settlement_event


def _payments(db, claim_id):
    return list(db.execute(select(Payment).where(Payment.claim_id == claim_id)).scalars().all())


# =============================================================================
# Creation
# =============================================================================

@pytest.mark.asyncio
async def test_fee_and_tip_split_server_side(
    client, db, accepted_claim, payout_account, claimer_auth, fake_processor
):
    response = await client.post(
        "/payments",
        json={"claimId": str(accepted_claim.id), "shippingFee": 500, "tipAmount": 200},
        headers=claimer_auth.headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["amount"] == 700
    assert data["platformFee"] == 70
    assert data["transferToRecipient"] == 630
    assert data["clientSecret"].endswith("_secret")

    # The intent routes the transfer to the owner's connected account
    created = fake_processor.created[0]
    assert created["amount"] == 700
    assert created["transfer_amount"] == 630
    assert created["destination_account_id"] == "acct_owner"
    assert created["metadata"]["claimId"] == str(accepted_claim.id)

    [payment] = _payments(db, accepted_claim.id)
    assert payment.status == PaymentStatus.PENDING.value
    assert payment.platform_fee_amount == 70
    assert payment.external_intent_id == data["intentId"]


@pytest.mark.asyncio
async def test_fee_above_max_rejected_before_intent(
    client, db, accepted_claim, payout_account, claimer_auth, fake_processor
):
    response = await client.post(
        "/payments",
        json={"claimId": str(accepted_claim.id), "shippingFee": 2500},
        headers=claimer_auth.headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "fee_out_of_range"
    assert fake_processor.created == []
    assert _payments(db, accepted_claim.id) == []

    db.refresh(accepted_claim)
    assert accepted_claim.status == ClaimStatus.ACCEPTED.value


@pytest.mark.asyncio
async def test_recipient_without_enabled_account_cannot_be_paid(
    client, db, accepted_claim, claimer_auth, fake_processor
):
    response = await client.post(
        "/payments",
        json={"claimId": str(accepted_claim.id), "shippingFee": 500},
        headers=claimer_auth.headers,
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "recipient_not_ready"
    assert fake_processor.created == []

    db.refresh(accepted_claim)
    assert accepted_claim.status == ClaimStatus.ACCEPTED.value


@pytest.mark.asyncio
async def test_pending_claim_cannot_be_paid(client, claim, payout_account, claimer_auth):
    response = await client.post(
        "/payments",
        json={"claimId": str(claim.id), "shippingFee": 500},
        headers=claimer_auth.headers,
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "claim_not_accepted"


@pytest.mark.asyncio
async def test_paid_claim_cannot_be_paid_again(
    client, db, accepted_claim, payout_account, claimer_auth
):
    accepted_claim.status = ClaimStatus.PAID.value
    db.commit()

    response = await client.post(
        "/payments",
        json={"claimId": str(accepted_claim.id), "shippingFee": 500},
        headers=claimer_auth.headers,
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "already_paid"


@pytest.mark.asyncio
async def test_only_claimer_can_pay(client, accepted_claim, payout_account, owner_auth):
    response = await client.post(
        "/payments",
        json={"claimId": str(accepted_claim.id), "shippingFee": 500},
        headers=owner_auth.headers,
    )
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "not_claimer"


@pytest.mark.asyncio
async def test_unknown_claim_is_404(client, claimer_auth):
    response = await client.post(
        "/payments",
        json={"claimId": str(uuid.uuid4()), "shippingFee": 500},
        headers=claimer_auth.headers,
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_tip_rejected_when_tipping_disabled(
    client, db, accepted_claim, item, owner, payout_account, claimer_auth
):
    db.add(
        ShippingConfig(
            user_id=owner.id,
            item_id=item.id,
            default_fee=600,
            min_fee=400,
            max_fee=900,
            allow_custom_fee=True,
            allow_tipping=False,
        )
    )
    db.commit()

    response = await client.post(
        "/payments",
        json={"claimId": str(accepted_claim.id), "shippingFee": 600, "tipAmount": 100},
        headers=claimer_auth.headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "tip_not_allowed"


@pytest.mark.asyncio
async def test_default_fee_forced_when_custom_fee_disabled(
    client, db, accepted_claim, item, owner, payout_account, claimer_auth
):
    db.add(
        ShippingConfig(
            user_id=owner.id,
            item_id=item.id,
            default_fee=800,
            min_fee=800,
            max_fee=800,
            allow_custom_fee=False,
            allow_tipping=True,
        )
    )
    db.commit()

    response = await client.post(
        "/payments",
        json={"claimId": str(accepted_claim.id), "shippingFee": 100},
        headers=claimer_auth.headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["shippingFee"] == 800
    assert data["amount"] == 800
    assert data["platformFee"] == 80


@pytest.mark.asyncio
async def test_processor_failure_marks_payment_failed(
    client, db, accepted_claim, payout_account, claimer_auth, fake_processor
):
    fake_processor.fail_create = PaymentProcessorError(
        "Your card was declined", status_code=402, code="card_declined"
    )

    response = await client.post(
        "/payments",
        json={"claimId": str(accepted_claim.id), "shippingFee": 500},
        headers=claimer_auth.headers,
    )
    assert response.status_code == 502
    assert response.json()["detail"]["code"] == "payment_attempt_failed"

    [payment] = _payments(db, accepted_claim.id)
    assert payment.status == PaymentStatus.FAILED.value
    assert payment.external_intent_id is None

    readiness = await client.get(
        "/payments/readiness",
        params={"claim_id": str(accepted_claim.id)},
        headers=claimer_auth.headers,
    )
    assert readiness.json()["state"] == "failed"


@pytest.mark.asyncio
async def test_intent_canceled_when_payment_cannot_be_recorded(
    db, accepted_claim, payout_account, claimer, fake_processor, monkeypatch
):
    real_commit = db.commit
    create_intent = fake_processor.create_payment_intent

    def lost_connection_commit():
        monkeypatch.setattr(db, "commit", real_commit)
        raise OperationalError("UPDATE payments", {}, Exception("connection lost"))

    async def create_then_fail_commit(**kwargs):
        intent = await create_intent(**kwargs)
        monkeypatch.setattr(db, "commit", lost_connection_commit)
        return intent

    monkeypatch.setattr(fake_processor, "create_payment_intent", create_then_fail_commit)

    with pytest.raises(OperationalError):
        await payment_service.create_payment(
            db,
            fake_processor,
            CallerSession(user_id=claimer.id, email=claimer.email),
            claim_id=accepted_claim.id,
            shipping_fee=500,
        )

    assert fake_processor.canceled == ["pi_test_1"]
    [payment] = _payments(db, accepted_claim.id)
    assert payment.status == PaymentStatus.FAILED.value
    assert payment.error_message == "intent_record_failed"
    assert payment.external_intent_id is None


@pytest.mark.asyncio
async def test_renegotiation_cancels_previous_intent(
    client, db, accepted_claim, payout_account, claimer_auth, fake_processor
):
    first = await client.post(
        "/payments",
        json={"claimId": str(accepted_claim.id), "shippingFee": 500},
        headers=claimer_auth.headers,
    )
    second = await client.post(
        "/payments",
        json={"claimId": str(accepted_claim.id), "shippingFee": 700},
        headers=claimer_auth.headers,
    )
    assert first.status_code == 201
    assert second.status_code == 201
    assert fake_processor.canceled == [first.json()["intentId"]]

    statuses = {p.external_intent_id: p.status for p in _payments(db, accepted_claim.id)}
    assert statuses[first.json()["intentId"]] == PaymentStatus.CANCELED.value
    assert statuses[second.json()["intentId"]] == PaymentStatus.PENDING.value


@pytest.mark.asyncio
async def test_shipping_address_stored_with_payment(
    client, db, accepted_claim, payout_account, claimer_auth
):
    response = await client.post(
        "/payments",
        json={
            "claimId": str(accepted_claim.id),
            "shippingFee": 500,
            "shippingAddress": {
                "addressLine1": "1 Main St",
                "city": "Springfield",
                "state": "IL",
                "postalCode": "62701",
            },
        },
        headers=claimer_auth.headers,
    )
    assert response.status_code == 201

    [payment] = _payments(db, accepted_claim.id)
    assert payment.shipping_detail.city == "Springfield"
    assert payment.shipping_detail.country == "US"


# =============================================================================
# Readiness
# =============================================================================

@pytest.mark.asyncio
async def test_readiness_states_are_distinct(
    client, db, claim, item, payout_account, claimer_auth
):
    async def readiness():
        response = await client.get(
            "/payments/readiness",
            params={"claim_id": str(claim.id)},
            headers=claimer_auth.headers,
        )
        assert response.status_code == 200
        return response.json()

    data = await readiness()
    assert data["state"] == "cannot_pay"
    assert data["reason"] == "claim_not_accepted"

    claim.status = ClaimStatus.ACCEPTED.value
    item.is_claimed = True
    db.commit()
    assert (await readiness())["state"] == "ready"

    await client.post(
        "/payments",
        json={"claimId": str(claim.id), "shippingFee": 500},
        headers=claimer_auth.headers,
    )
    assert (await readiness())["state"] == "processing"


@pytest.mark.asyncio
async def test_readiness_reports_recipient_not_ready(client, accepted_claim, claimer_auth):
    response = await client.get(
        "/payments/readiness",
        params={"claim_id": str(accepted_claim.id)},
        headers=claimer_auth.headers,
    )
    assert response.json()["state"] == "cannot_pay"
    assert response.json()["reason"] == "recipient_not_ready"


# =============================================================================
# Status poll
# =============================================================================

@pytest.mark.asyncio
async def test_status_requires_auth(client, accepted_claim):
    response = await client.get("/payments/status", params={"claim_id": str(accepted_claim.id)})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_status_unknown_claim_is_404(client, claimer_auth):
    response = await client.get(
        "/payments/status", params={"claim_id": str(uuid.uuid4())}, headers=claimer_auth.headers
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_status_for_outsider_is_403(client, accepted_claim, outsider_auth):
    response = await client.get(
        "/payments/status",
        params={"claim_id": str(accepted_claim.id)},
        headers=outsider_auth.headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_status_pending_without_payment(client, accepted_claim, claimer_auth):
    response = await client.get(
        "/payments/status",
        params={"claim_id": str(accepted_claim.id)},
        headers=claimer_auth.headers,
    )
    assert response.json() == {"status": "pending"}


@pytest.mark.asyncio
async def test_status_poll_reconciles_succeeded_intent(
    client, db, accepted_claim, payout_account, claimer_auth, fake_processor
):
    created = await client.post(
        "/payments",
        json={"claimId": str(accepted_claim.id), "shippingFee": 500},
        headers=claimer_auth.headers,
    )
    fake_processor.intents[created.json()["intentId"]].status = "succeeded"

    response = await client.get(
        "/payments/status",
        params={"claim_id": str(accepted_claim.id)},
        headers=claimer_auth.headers,
    )
    assert response.json() == {"status": "paid"}

    db.refresh(accepted_claim)
    assert accepted_claim.status == ClaimStatus.PAID.value


@pytest.mark.asyncio
async def test_status_poll_falls_back_when_processor_unreachable(
    client, accepted_claim, payout_account, claimer_auth, fake_processor
):
    created = await client.post(
        "/payments",
        json={"claimId": str(accepted_claim.id), "shippingFee": 500},
        headers=claimer_auth.headers,
    )
    fake_processor.intents[created.json()["intentId"]].status = "succeeded"
    fake_processor.fail_retrieve = True

    response = await client.get(
        "/payments/status",
        params={"claim_id": str(accepted_claim.id)},
        headers=claimer_auth.headers,
    )
    assert response.json() == {"status": "pending"}


@pytest.mark.asyncio
async def test_list_payments_newest_first(
    client, accepted_claim, payout_account, claimer_auth
):
    for fee in (500, 600):
        await client.post(
            "/payments",
            json={"claimId": str(accepted_claim.id), "shippingFee": fee},
            headers=claimer_auth.headers,
        )

    response = await client.get(
        "/payments", params={"claim_id": str(accepted_claim.id)}, headers=claimer_auth.headers
    )
    assert response.status_code == 200
    fees = [p["shippingFee"] for p in response.json()]
    assert fees == [600, 500]


@pytest.mark.asyncio
async def test_captured_duplicate_shows_refund_due(
    client, db, accepted_claim, payout_account, owner, claimer, claimer_auth
):
    for intent_id in ("pi_first", "pi_second"):
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
                status=PaymentStatus.PENDING.value,
                external_intent_id=intent_id,
            )
        )
    db.commit()
    apply_settlement_event(db, "pi_first", SettlementOutcome.SUCCEEDED)
    apply_settlement_event(db, "pi_second", SettlementOutcome.SUCCEEDED)

    readiness = await client.get(
        "/payments/readiness",
        params={"claim_id": str(accepted_claim.id)},
        headers=claimer_auth.headers,
    )
    assert readiness.json()["state"] == "paid"
    assert readiness.json()["reason"] == "duplicate_settlement"

    listed = await client.get(
        "/payments", params={"claim_id": str(accepted_claim.id)}, headers=claimer_auth.headers
    )
    by_intent = {p["externalIntentId"]: p for p in listed.json()}
    assert by_intent["pi_first"]["status"] == "succeeded"
    assert by_intent["pi_second"]["status"] == "refund_due"
    assert by_intent["pi_second"]["errorMessage"] == "duplicate_settlement"
