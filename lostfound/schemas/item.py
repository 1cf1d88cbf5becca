"""Item schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from lostfound.schemas.base import CamelModel


class ItemCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=5000)


class ItemRead(CamelModel):
    id: UUID
    owner_user_id: UUID | None
    title: str
    description: str | None
    is_claimed: bool
    created_at: datetime
