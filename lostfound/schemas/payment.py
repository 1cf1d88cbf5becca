"""Payment schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from lostfound.db.enums import PaymentReadiness
from lostfound.schemas.base import CamelModel
from lostfound.schemas.shipping import ShippingAddress


class PaymentCreate(CamelModel):
    """
    Payment request from the claimer.

    Only the fee and tip are taken from the client; totals and the
    platform split are computed server-side.
    """
    claim_id: UUID
    shipping_fee: int | None = Field(None, ge=0)
    tip_amount: int = Field(0, ge=0)
    shipping_address: ShippingAddress | None = None


class PaymentCreated(CamelModel):
    payment_id: UUID
    client_secret: str | None
    intent_id: str
    amount: int
    shipping_fee: int
    tip_amount: int
    platform_fee: int
    transfer_to_recipient: int
    currency: str


class PaymentRead(CamelModel):
    id: UUID
    claim_id: UUID
    amount: int
    shipping_fee: int
    tip_amount: int
    platform_fee_amount: int
    currency: str
    status: str
    external_intent_id: str | None
    error_message: str | None
    created_at: datetime


class PaymentStatusResponse(CamelModel):
    status: str


class PaymentReadinessResponse(CamelModel):
    state: PaymentReadiness
    reason: str | None = None
    claim_status: str
    payment_status: str | None = None
