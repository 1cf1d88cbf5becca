"""Unread aggregate schemas."""

from lostfound.schemas.base import CamelModel


class UnreadCounts(CamelModel):
    unread_counts_by_room: dict[str, int]
    total_unread: int
