"""Tests for shipping config resolution and owner upserts."""

import uuid

import pytest

from lostfound.db.models import ShippingConfig
from lostfound.services import shipping_config_service
from lostfound.services.shipping_config_service import (
    SOURCE_CLAIM,
    SOURCE_ITEM,
    SOURCE_OWNER_DEFAULT,
    SOURCE_SYSTEM,
    ShippingConfigAccessError,
    ShippingConfigValidationError,
)


def _config(db, user_id, *, item_id=None, claim_id=None, default_fee=500) -> ShippingConfig:
    row = ShippingConfig(
        user_id=user_id,
        item_id=item_id,
        claim_id=claim_id,
        default_fee=default_fee,
        min_fee=0,
        max_fee=5000,
        allow_custom_fee=True,
        allow_tipping=True,
    )
    db.add(row)
    db.commit()
    return row


# =============================================================================
# Resolution order
# =============================================================================

def test_system_default_when_nothing_configured(db, claim):
    resolved = shipping_config_service.resolve_for_claim(db, claim)

    assert resolved.source == SOURCE_SYSTEM
    assert (resolved.default_fee, resolved.min_fee, resolved.max_fee) == (500, 300, 2000)


def test_owner_default_beats_system(db, claim, owner):
    _config(db, owner.id, default_fee=650)
    resolved = shipping_config_service.resolve_for_claim(db, claim)
    assert resolved.source == SOURCE_OWNER_DEFAULT
    assert resolved.default_fee == 650


def test_item_config_beats_owner_default(db, claim, owner, item):
    _config(db, owner.id, default_fee=650)
    _config(db, owner.id, item_id=item.id, default_fee=700)

    resolved = shipping_config_service.resolve_for_claim(db, claim)
    assert resolved.source == SOURCE_ITEM
    assert resolved.default_fee == 700


def test_claim_config_wins(db, claim, owner, item):
    _config(db, owner.id, item_id=item.id, default_fee=700)
    _config(db, owner.id, claim_id=claim.id, default_fee=900)

    resolved = shipping_config_service.resolve_for_claim(db, claim)
    assert resolved.source == SOURCE_CLAIM
    assert resolved.default_fee == 900


def test_check_fee_is_inclusive():
    config = shipping_config_service.SYSTEM_DEFAULT
    assert config.check_fee(300)
    assert config.check_fee(2000)
    assert not config.check_fee(299)
    assert not config.check_fee(2001)


def test_upsert_updates_existing_scope(db, owner, item):
    first = shipping_config_service.upsert_config(
        db, owner.id, default_fee=500, min_fee=300, max_fee=900, item_id=item.id
    )
    second = shipping_config_service.upsert_config(
        db, owner.id, default_fee=600, min_fee=300, max_fee=900, item_id=item.id
    )
    assert first.id == second.id
    assert second.default_fee == 600


def test_upsert_rejects_inverted_bounds(db, owner):
    with pytest.raises(ShippingConfigValidationError):
        shipping_config_service.upsert_config(
            db, owner.id, default_fee=100, min_fee=300, max_fee=900
        )


def test_upsert_for_someone_elses_item(db, outsider, item):
    with pytest.raises(ShippingConfigAccessError):
        shipping_config_service.upsert_config(
            db, outsider.id, default_fee=500, min_fee=300, max_fee=900, item_id=item.id
        )


# =============================================================================
# API
# =============================================================================

@pytest.mark.asyncio
async def test_claimer_reads_resolved_config(client, db, claim, owner, item, claimer_auth):
    _config(db, owner.id, item_id=item.id, default_fee=750)

    response = await client.get(
        "/shipping-configs", params={"claim_id": str(claim.id)}, headers=claimer_auth.headers
    )
    assert response.status_code == 200
    data = response.json()
    assert data["source"] == "item"
    assert data["defaultFee"] == 750
    assert data["allowTipping"] is True


@pytest.mark.asyncio
async def test_outsider_cannot_read_claim_config(client, claim, outsider_auth):
    response = await client.get(
        "/shipping-configs", params={"claim_id": str(claim.id)}, headers=outsider_auth.headers
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_read_requires_a_scope(client, owner_auth):
    response = await client.get("/shipping-configs", headers=owner_auth.headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unknown_claim_is_404(client, owner_auth):
    response = await client.get(
        "/shipping-configs", params={"claim_id": str(uuid.uuid4())}, headers=owner_auth.headers
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_owner_sets_claim_config(client, claim, owner_auth):
    response = await client.put(
        "/shipping-configs",
        json={
            "claimId": str(claim.id),
            "defaultFee": 800,
            "minFee": 500,
            "maxFee": 1200,
            "allowTipping": False,
        },
        headers=owner_auth.headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["source"] == "claim"
    assert data["allowTipping"] is False


@pytest.mark.asyncio
async def test_claimer_cannot_set_claim_config(client, claim, claimer_auth):
    response = await client.put(
        "/shipping-configs",
        json={"claimId": str(claim.id), "defaultFee": 100, "minFee": 0, "maxFee": 100},
        headers=claimer_auth.headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_invalid_bounds_rejected(client, owner_auth):
    response = await client.put(
        "/shipping-configs",
        json={"defaultFee": 2000, "minFee": 300, "maxFee": 1000},
        headers=owner_auth.headers,
    )
    assert response.status_code == 422
