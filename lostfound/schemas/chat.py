"""Chat message schemas."""

from datetime import datetime
from uuid import UUID

from lostfound.schemas.base import CamelModel


class ChatMessageCreate(CamelModel):
    """
    New message from a client.

    Fields are optional at parse time so missing values surface as a 400
    with the names of the missing fields.
    """
    id: UUID | None = None
    room_id: str | None = None
    sender_id: UUID | None = None
    sender_name: str | None = None
    sender_email: str | None = None
    body: str | None = None


class ChatMessageRead(CamelModel):
    id: UUID
    room_id: str
    sender_id: UUID | None
    sender_name: str
    sender_email: str | None
    body: str
    is_read: bool
    created_at: datetime


class ReadReceipt(CamelModel):
    room_id: str
    message_ids: list[UUID]
    reader_id: UUID | None = None
