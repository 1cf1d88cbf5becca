"""Shipping configuration endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from lostfound.core.deps import get_caller, get_current_session, get_db, require_csrf_header
from lostfound.schemas.auth import CallerSession
from lostfound.schemas.shipping import ShippingConfigRead, ShippingConfigUpsert
from lostfound.services import shipping_config_service
from lostfound.services.shipping_config_service import (
    SOURCE_CLAIM,
    SOURCE_ITEM,
    SOURCE_OWNER_DEFAULT,
    ShippingConfigAccessError,
    ShippingConfigNotFoundError,
    ShippingConfigValidationError,
)

router = APIRouter()


def _raise_for(exc: Exception):
    if isinstance(exc, ShippingConfigNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ShippingConfigAccessError):
        raise HTTPException(status_code=403, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))


@router.get("", response_model=ShippingConfigRead)
def get_shipping_config(
    claim_id: UUID | None = Query(None),
    item_id: UUID | None = Query(None),
    user_id: UUID | None = Query(None),
    caller: CallerSession = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """
    Resolved shipping config for a claim, an item, or an owner's default.

    Falls back claim -> item -> owner default -> system default.
    """
    try:
        resolved = shipping_config_service.get_config_for_caller(
            db, caller, claim_id=claim_id, item_id=item_id, user_id=user_id
        )
    except (
        ShippingConfigNotFoundError,
        ShippingConfigAccessError,
        ShippingConfigValidationError,
    ) as e:
        _raise_for(e)
    return ShippingConfigRead.model_validate(resolved)


@router.put(
    "",
    response_model=ShippingConfigRead,
    dependencies=[Depends(require_csrf_header)],
)
def upsert_shipping_config(
    data: ShippingConfigUpsert,
    session: CallerSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Set the owner's config for a claim, an item, or as their default."""
    try:
        row = shipping_config_service.upsert_config(
            db,
            session.user_id,
            default_fee=data.default_fee,
            min_fee=data.min_fee,
            max_fee=data.max_fee,
            allow_custom_fee=data.allow_custom_fee,
            allow_tipping=data.allow_tipping,
            notes=data.notes,
            claim_id=data.claim_id,
            item_id=data.item_id,
        )
    except (
        ShippingConfigNotFoundError,
        ShippingConfigAccessError,
        ShippingConfigValidationError,
    ) as e:
        _raise_for(e)

    source = SOURCE_CLAIM if row.claim_id else SOURCE_ITEM if row.item_id else SOURCE_OWNER_DEFAULT
    return ShippingConfigRead(
        id=row.id,
        source=source,
        user_id=row.user_id,
        item_id=row.item_id,
        claim_id=row.claim_id,
        default_fee=row.default_fee,
        min_fee=row.min_fee,
        max_fee=row.max_fee,
        allow_custom_fee=row.allow_custom_fee,
        allow_tipping=row.allow_tipping,
        notes=row.notes,
    )
