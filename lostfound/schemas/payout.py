"""Payout account schemas."""

from pydantic import Field

from lostfound.schemas.base import CamelModel


class OnboardingLink(CamelModel):
    account_id: str
    url: str


class PayoutAccountStatus(CamelModel):
    has_account: bool
    account_id: str | None = None
    enabled: bool = False
    onboarded: bool = False
    charges_enabled: bool | None = None
    details_submitted: bool | None = None
    payouts_enabled: bool | None = None
    requirements_due: list[str] = Field(default_factory=list)
    # True when the processor could not be reached and cached flags are shown
    from_cache: bool = False


class RecipientStatus(CamelModel):
    ready: bool
    has_account: bool
