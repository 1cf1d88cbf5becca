"""Shipping fee configuration: scoped resolution and owner upserts.

Resolution order for a claim: claim config -> item config -> item owner's
default -> system default. Fee bounds used for payments always come from
here, never from the client.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from lostfound.core.claim_access import caller_can_access
from lostfound.core.constants import (
    SYSTEM_DEFAULT_SHIPPING_FEE,
    SYSTEM_MAX_SHIPPING_FEE,
    SYSTEM_MIN_SHIPPING_FEE,
)
from lostfound.db.models import Claim, Item, ShippingConfig
from lostfound.schemas.auth import CallerSession

logger = logging.getLogger(__name__)

SOURCE_CLAIM = "claim"
SOURCE_ITEM = "item"
SOURCE_OWNER_DEFAULT = "owner_default"
SOURCE_SYSTEM = "system_default"


class ShippingConfigError(Exception):
    """Base exception for shipping config errors."""

    pass


class ShippingConfigNotFoundError(ShippingConfigError):
    """Claim or item for the requested scope not found."""

    pass


class ShippingConfigAccessError(ShippingConfigError):
    """Caller may not read or write this configuration."""

    pass


class ShippingConfigValidationError(ShippingConfigError):
    """Request is missing a scope or violates fee bounds."""

    pass


@dataclass(frozen=True)
class ResolvedShippingConfig:
    source: str
    default_fee: int
    min_fee: int
    max_fee: int
    allow_custom_fee: bool
    allow_tipping: bool
    notes: str | None = None
    id: UUID | None = None
    user_id: UUID | None = None
    item_id: UUID | None = None
    claim_id: UUID | None = None

    def check_fee(self, fee: int) -> bool:
        return self.min_fee <= fee <= self.max_fee


SYSTEM_DEFAULT = ResolvedShippingConfig(
    source=SOURCE_SYSTEM,
    default_fee=SYSTEM_DEFAULT_SHIPPING_FEE,
    min_fee=SYSTEM_MIN_SHIPPING_FEE,
    max_fee=SYSTEM_MAX_SHIPPING_FEE,
    allow_custom_fee=True,
    allow_tipping=True,
)


def _from_row(row: ShippingConfig, source: str) -> ResolvedShippingConfig:
    return ResolvedShippingConfig(
        source=source,
        default_fee=row.default_fee,
        min_fee=row.min_fee,
        max_fee=row.max_fee,
        allow_custom_fee=row.allow_custom_fee,
        allow_tipping=row.allow_tipping,
        notes=row.notes,
        id=row.id,
        user_id=row.user_id,
        item_id=row.item_id,
        claim_id=row.claim_id,
    )


def _config_for_claim(db: Session, claim_id: UUID) -> ShippingConfig | None:
    return db.execute(
        select(ShippingConfig).where(ShippingConfig.claim_id == claim_id)
    ).scalar_one_or_none()


def _config_for_item(db: Session, item_id: UUID) -> ShippingConfig | None:
    return db.execute(
        select(ShippingConfig).where(
            ShippingConfig.item_id == item_id, ShippingConfig.claim_id.is_(None)
        )
    ).scalar_one_or_none()


def _owner_default(db: Session, user_id: UUID) -> ShippingConfig | None:
    return db.execute(
        select(ShippingConfig).where(
            ShippingConfig.user_id == user_id,
            ShippingConfig.item_id.is_(None),
            ShippingConfig.claim_id.is_(None),
        )
    ).scalar_one_or_none()


def resolve_for_owner(db: Session, owner_id: UUID | None) -> ResolvedShippingConfig:
    if owner_id is not None:
        row = _owner_default(db, owner_id)
        if row:
            return _from_row(row, SOURCE_OWNER_DEFAULT)
    return SYSTEM_DEFAULT


def resolve_for_item(db: Session, item: Item) -> ResolvedShippingConfig:
    row = _config_for_item(db, item.id)
    if row:
        return _from_row(row, SOURCE_ITEM)
    return resolve_for_owner(db, item.owner_user_id)


def resolve_for_claim(db: Session, claim: Claim) -> ResolvedShippingConfig:
    """Authoritative fee configuration for a claim's payment."""
    row = _config_for_claim(db, claim.id)
    if row:
        return _from_row(row, SOURCE_CLAIM)
    return resolve_for_item(db, claim.item)


# =============================================================================
# Caller-facing read / write
# =============================================================================

def _has_claim_on_items(db: Session, caller: CallerSession, item_filter) -> bool:
    conditions = []
    if caller.user_id is not None:
        conditions.append(Claim.claimer_user_id == caller.user_id)
    if caller.email:
        conditions.append(func.lower(Claim.claimer_email) == caller.email.strip().lower())
    if not conditions:
        return False
    return (
        db.execute(
            select(Claim.id).join(Item, Item.id == Claim.item_id).where(item_filter, or_(*conditions))
        ).first()
        is not None
    )


def get_config_for_caller(
    db: Session,
    caller: CallerSession,
    *,
    claim_id: UUID | None = None,
    item_id: UUID | None = None,
    user_id: UUID | None = None,
) -> ResolvedShippingConfig:
    """
    Resolve a shipping config for display.

    Readable by the item owner and by anyone holding a claim on the
    relevant item(s).
    """
    if claim_id:
        claim = db.get(Claim, claim_id)
        if not claim:
            raise ShippingConfigNotFoundError("Claim not found")
        if not caller_can_access(claim, caller):
            raise ShippingConfigAccessError(
                "You don't have permission to access this configuration"
            )
        return resolve_for_claim(db, claim)

    if item_id:
        item = db.get(Item, item_id)
        if not item:
            raise ShippingConfigNotFoundError("Item not found")
        is_owner = caller.user_id is not None and item.owner_user_id == caller.user_id
        if not is_owner and not _has_claim_on_items(db, caller, Item.id == item_id):
            raise ShippingConfigAccessError(
                "You don't have permission to access this configuration"
            )
        return resolve_for_item(db, item)

    if user_id:
        if caller.user_id != user_id and not _has_claim_on_items(
            db, caller, Item.owner_user_id == user_id
        ):
            raise ShippingConfigAccessError(
                "You don't have permission to access this configuration"
            )
        return resolve_for_owner(db, user_id)

    raise ShippingConfigValidationError("Missing required parameters")


def upsert_config(
    db: Session,
    user_id: UUID,
    *,
    default_fee: int,
    min_fee: int,
    max_fee: int,
    allow_custom_fee: bool = True,
    allow_tipping: bool = True,
    notes: str | None = None,
    claim_id: UUID | None = None,
    item_id: UUID | None = None,
) -> ShippingConfig:
    """Create or update the caller's config for a claim, an item, or their default."""
    if not (0 <= min_fee <= default_fee <= max_fee):
        raise ShippingConfigValidationError(
            "Fees must satisfy 0 <= min_fee <= default_fee <= max_fee"
        )

    if claim_id:
        claim = db.get(Claim, claim_id)
        if not claim:
            raise ShippingConfigNotFoundError("Claim not found")
        if claim.item.owner_user_id != user_id:
            raise ShippingConfigAccessError("Only the item owner can set shipping configuration")
        row = _config_for_claim(db, claim_id)
    elif item_id:
        item = db.get(Item, item_id)
        if not item:
            raise ShippingConfigNotFoundError("Item not found")
        if item.owner_user_id != user_id:
            raise ShippingConfigAccessError("Only the item owner can set shipping configuration")
        row = _config_for_item(db, item_id)
    else:
        row = _owner_default(db, user_id)

    if row is None:
        row = ShippingConfig(user_id=user_id, claim_id=claim_id, item_id=item_id)
        db.add(row)

    row.default_fee = default_fee
    row.min_fee = min_fee
    row.max_fee = max_fee
    row.allow_custom_fee = allow_custom_fee
    row.allow_tipping = allow_tipping
    row.notes = notes.strip() if notes else None
    db.commit()
    db.refresh(row)

    logger.info(
        "Shipping config saved",
        extra={"user_id": str(user_id), "scope": "claim" if claim_id else "item" if item_id else "default"},
    )
    return row
