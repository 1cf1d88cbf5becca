"""Connected payout accounts for item owners (finders)."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lostfound.core.claim_access import caller_can_access
from lostfound.core.config import settings
from lostfound.db.models import Claim, PayoutAccount, User
from lostfound.schemas.auth import CallerSession
from lostfound.services.payment_processor import (
    PaymentProcessor,
    PaymentProcessorError,
    ProcessorAccount,
)

logger = logging.getLogger(__name__)


class PayoutAccountError(Exception):
    """Base exception for payout account errors."""

    pass


class PayoutAccountNotFoundError(PayoutAccountError):
    pass


class PayoutAccessError(PayoutAccountError):
    pass


@dataclass
class PayoutStatus:
    has_account: bool
    account_id: str | None = None
    enabled: bool = False
    onboarded: bool = False
    charges_enabled: bool | None = None
    details_submitted: bool | None = None
    payouts_enabled: bool | None = None
    requirements_due: list[str] = field(default_factory=list)
    from_cache: bool = False


def get_account(db: Session, user_id: UUID) -> PayoutAccount | None:
    return db.execute(
        select(PayoutAccount).where(PayoutAccount.user_id == user_id)
    ).scalar_one_or_none()


def get_account_by_external_id(db: Session, external_account_id: str) -> PayoutAccount | None:
    return db.execute(
        select(PayoutAccount).where(PayoutAccount.external_account_id == external_account_id)
    ).scalar_one_or_none()


def is_enabled(db: Session, user_id: UUID | None) -> bool:
    if user_id is None:
        return False
    account = get_account(db, user_id)
    return bool(account and account.enabled and account.external_account_id)


def _mark_onboarded(account: PayoutAccount) -> bool:
    """Enable the account; returns True when anything changed."""
    if account.enabled and account.onboarded:
        return False
    account.enabled = True
    account.onboarded = True
    account.onboarding_completed_at = datetime.now(timezone.utc)
    return True


def apply_account_update(db: Session, remote: ProcessorAccount) -> PayoutAccount | None:
    """
    Apply a processor account snapshot.

    Only a snapshot reporting charges, details and payouts all enabled
    turns the account on; partial snapshots never disable it.
    """
    account = get_account_by_external_id(db, remote.id)
    if not account:
        logger.warning("Account update for unknown payout account")
        return None
    if remote.fully_onboarded and _mark_onboarded(account):
        db.commit()
        logger.info("Payout account enabled", extra={"user_id": str(account.user_id)})
    return account


def _safe_return_url(return_url: str | None) -> str:
    default = f"{settings.FRONTEND_URL.rstrip('/')}/settings/payments"
    if return_url and return_url.startswith(settings.FRONTEND_URL.rstrip("/")):
        return return_url
    return default


async def start_onboarding(
    db: Session,
    processor: PaymentProcessor,
    user: User,
    *,
    return_url: str | None = None,
) -> tuple[str, str]:
    """
    Create the connected account if missing and return an onboarding link.

    Returns:
        (external_account_id, onboarding_url)

    Raises:
        PaymentProcessorError: processor rejected or was unreachable
    """
    account = get_account(db, user.id)
    if account is None or not account.external_account_id:
        remote = await processor.create_account(email=user.email, user_id=str(user.id))
        if account is None:
            account = PayoutAccount(user_id=user.id)
            db.add(account)
        account.external_account_id = remote.id
        account.enabled = False
        account.onboarded = False
        try:
            db.commit()
        except IntegrityError:
            # A concurrent onboarding request stored its account first
            db.rollback()
            account = get_account(db, user.id)
            if account is None or not account.external_account_id:
                raise
        logger.info("Created connected account", extra={"user_id": str(user.id)})

    url = _safe_return_url(return_url)
    link = await processor.create_account_link(
        account.external_account_id, refresh_url=url, return_url=url
    )
    return account.external_account_id, link


async def refresh_status(
    db: Session,
    processor: PaymentProcessor,
    user_id: UUID,
    *,
    force: bool = False,
) -> PayoutStatus:
    """
    Live re-check against the processor, persisting enablement.

    When the processor cannot be reached the cached flags are returned
    with from_cache set.
    """
    account = get_account(db, user_id)
    if account is None or not account.external_account_id:
        return PayoutStatus(has_account=False)

    if account.enabled and not force:
        return PayoutStatus(
            has_account=True,
            account_id=account.external_account_id,
            enabled=True,
            onboarded=account.onboarded,
        )

    try:
        remote = await processor.retrieve_account(account.external_account_id)
    except PaymentProcessorError:
        logger.warning(
            "Payout account re-check failed, using cached status",
            extra={"user_id": str(user_id)},
            exc_info=True,
        )
        return PayoutStatus(
            has_account=True,
            account_id=account.external_account_id,
            enabled=account.enabled,
            onboarded=account.onboarded,
            from_cache=True,
        )

    if remote.fully_onboarded and _mark_onboarded(account):
        db.commit()
        logger.info("Payout account enabled on re-check", extra={"user_id": str(user_id)})

    return PayoutStatus(
        has_account=True,
        account_id=account.external_account_id,
        enabled=account.enabled,
        onboarded=account.onboarded,
        charges_enabled=remote.charges_enabled,
        details_submitted=remote.details_submitted,
        payouts_enabled=remote.payouts_enabled,
        requirements_due=remote.currently_due,
    )


def recipient_status(db: Session, claim: Claim | None, caller: CallerSession) -> PayoutStatus:
    """Whether a claim's item owner can receive funds (participants only)."""
    if claim is None:
        raise PayoutAccountNotFoundError("Claim not found")
    if not caller_can_access(claim, caller):
        raise PayoutAccessError("You don't have access to this claim")

    owner_id = claim.item.owner_user_id
    account = get_account(db, owner_id) if owner_id else None
    if account is None or not account.external_account_id:
        return PayoutStatus(has_account=False)
    return PayoutStatus(
        has_account=True,
        enabled=account.enabled,
        onboarded=account.onboarded,
    )
