"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel


class CallerSession(BaseModel):
    """
    Identity of the caller for a request.

    Either an authenticated user (user_id set) or an email-verified
    claimer holding a room-scoped token (user_id None, room_scope set).
    """
    user_id: UUID | None = None
    email: str | None = None
    display_name: str | None = None
    room_scope: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None
