"""Tests for connected payout account onboarding and status."""

import uuid

import pytest

from lostfound.db.models import PayoutAccount
from lostfound.services import payout_account_service
from lostfound.services.payment_processor import ProcessorAccount


@pytest.mark.asyncio
async def test_onboarding_creates_account_and_link(client, db, owner, owner_auth, fake_processor):
    response = await client.post(
        "/payout-account/onboarding",
        json={"returnUrl": "http://localhost:3000/settings/payments?done=1"},
        headers=owner_auth.headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["accountId"] == "acct_test_1"
    assert data["url"].startswith("https://connect.stripe.test/setup/acct_test_1")
    assert "done=1" in data["url"]

    account = payout_account_service.get_account(db, owner.id)
    assert account.external_account_id == "acct_test_1"
    assert account.enabled is False


@pytest.mark.asyncio
async def test_onboarding_reuses_existing_account(client, payout_account, owner_auth, fake_processor):
    response = await client.post("/payout-account/onboarding", json={}, headers=owner_auth.headers)

    assert response.status_code == 200
    assert response.json()["accountId"] == "acct_owner"
    assert fake_processor.accounts == {}


@pytest.mark.asyncio
async def test_foreign_return_url_replaced(client, owner_auth):
    response = await client.post(
        "/payout-account/onboarding",
        json={"returnUrl": "https://evil.example.com/phish"},
        headers=owner_auth.headers,
    )
    assert "evil.example.com" not in response.json()["url"]
    assert "localhost:3000/settings/payments" in response.json()["url"]


@pytest.mark.asyncio
async def test_status_without_account(client, owner_auth):
    response = await client.get("/payout-account/status", headers=owner_auth.headers)
    assert response.status_code == 200
    assert response.json()["hasAccount"] is False


@pytest.mark.asyncio
async def test_status_recheck_enables_account(client, db, owner, owner_auth, fake_processor):
    account = PayoutAccount(user_id=owner.id, external_account_id="acct_live")
    db.add(account)
    db.commit()
    fake_processor.accounts["acct_live"] = ProcessorAccount(
        id="acct_live", charges_enabled=True, details_submitted=True, payouts_enabled=True
    )

    response = await client.get("/payout-account/status", headers=owner_auth.headers)

    data = response.json()
    assert data["enabled"] is True
    assert data["fromCache"] is False
    db.refresh(account)
    assert account.enabled is True


@pytest.mark.asyncio
async def test_status_falls_back_to_cache(client, db, owner, owner_auth, fake_processor):
    db.add(PayoutAccount(user_id=owner.id, external_account_id="acct_live"))
    db.commit()
    fake_processor.fail_retrieve = True

    response = await client.get("/payout-account/status", headers=owner_auth.headers)

    data = response.json()
    assert data["fromCache"] is True
    assert data["enabled"] is False


@pytest.mark.asyncio
async def test_partial_onboarding_never_disables(db, payout_account, owner, fake_processor):
    fake_processor.accounts["acct_owner"] = ProcessorAccount(
        id="acct_owner", charges_enabled=True, details_submitted=False, payouts_enabled=False
    )

    result = await payout_account_service.refresh_status(db, fake_processor, owner.id, force=True)

    assert result.enabled is True
    assert result.details_submitted is False


@pytest.mark.asyncio
async def test_recipient_status_for_claimer(client, claim, payout_account, claimer_auth):
    response = await client.get(
        "/payout-account/recipient-status",
        params={"claim_id": str(claim.id)},
        headers=claimer_auth.headers,
    )
    assert response.status_code == 200
    assert response.json() == {"ready": True, "hasAccount": True}


@pytest.mark.asyncio
async def test_recipient_status_without_account(client, claim, claimer_auth):
    response = await client.get(
        "/payout-account/recipient-status",
        params={"claim_id": str(claim.id)},
        headers=claimer_auth.headers,
    )
    assert response.json() == {"ready": False, "hasAccount": False}


@pytest.mark.asyncio
async def test_recipient_status_access(client, claim, outsider_auth):
    forbidden = await client.get(
        "/payout-account/recipient-status",
        params={"claim_id": str(claim.id)},
        headers=outsider_auth.headers,
    )
    missing = await client.get(
        "/payout-account/recipient-status",
        params={"claim_id": str(uuid.uuid4())},
        headers=outsider_auth.headers,
    )
    assert forbidden.status_code == 403
    assert missing.status_code == 404
