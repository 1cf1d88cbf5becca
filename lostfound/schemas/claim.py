"""Claim schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from lostfound.db.enums import ClaimStatus
from lostfound.schemas.base import CamelModel


class ClaimCreate(CamelModel):
    """Claim submission; required fields are checked by the service (400)."""
    item_id: UUID
    claimer_name: str | None = None
    claimer_email: str | None = None
    claimer_phone: str | None = Field(None, max_length=50)
    description: str | None = None
    room_id: str | None = None


class ClaimRead(CamelModel):
    id: UUID
    item_id: UUID
    claimer_user_id: UUID | None
    claimer_name: str
    claimer_email: str
    description: str
    room_id: str
    status: ClaimStatus
    created_at: datetime
    updated_at: datetime


class ClaimStatusUpdate(CamelModel):
    status: ClaimStatus


class ClaimerVerifyRequest(CamelModel):
    token: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)


class ClaimerVerifyResponse(CamelModel):
    room_id: str
    claim_id: UUID
