"""Shipping configuration and address schemas."""

from uuid import UUID

from pydantic import Field, model_validator

from lostfound.schemas.base import CamelModel


class ShippingConfigRead(CamelModel):
    """Resolved configuration; source says which scope it came from."""
    id: UUID | None = None
    source: str
    user_id: UUID | None = None
    item_id: UUID | None = None
    claim_id: UUID | None = None
    default_fee: int
    min_fee: int
    max_fee: int
    allow_custom_fee: bool
    allow_tipping: bool
    notes: str | None = None


class ShippingConfigUpsert(CamelModel):
    item_id: UUID | None = None
    claim_id: UUID | None = None
    default_fee: int = Field(..., ge=0)
    min_fee: int = Field(..., ge=0)
    max_fee: int = Field(..., ge=0)
    allow_custom_fee: bool = True
    allow_tipping: bool = True
    notes: str | None = Field(None, max_length=1000)

    @model_validator(mode="after")
    def check_fee_bounds(self):
        if not (self.min_fee <= self.default_fee <= self.max_fee):
            raise ValueError("Fees must satisfy min_fee <= default_fee <= max_fee")
        if self.item_id and self.claim_id:
            raise ValueError("Set either item_id or claim_id, not both")
        return self


class ShippingAddress(CamelModel):
    address_line1: str = Field(..., min_length=1, max_length=200)
    address_line2: str | None = Field(None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field("US", min_length=2, max_length=2)
