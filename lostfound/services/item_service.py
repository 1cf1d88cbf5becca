"""Minimal item operations: create, read, owner-only cascade delete."""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from lostfound.db.models import Item

logger = logging.getLogger(__name__)


class ItemServiceError(Exception):
    """Base exception for item service errors."""

    pass


class ItemNotFoundError(ItemServiceError):
    pass


class NotItemOwnerError(ItemServiceError):
    pass


def create_item(
    db: Session,
    *,
    title: str,
    description: str | None = None,
    owner_user_id: UUID | None = None,
) -> Item:
    item = Item(
        title=title.strip(),
        description=description.strip() if description else None,
        owner_user_id=owner_user_id,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def get_item(db: Session, item_id: UUID) -> Item | None:
    return db.get(Item, item_id)


def delete_item(db: Session, item_id: UUID, user_id: UUID | None) -> None:
    """
    Delete an item with its claims, rooms, payments and shipping configs.

    Only the owning user may delete; anonymous items cannot be deleted
    through the API.
    """
    item = db.get(Item, item_id)
    if not item:
        raise ItemNotFoundError("Item not found")
    if user_id is None or item.owner_user_id != user_id:
        raise NotItemOwnerError("Only the item owner can delete this item")

    db.delete(item)
    db.commit()
    logger.info("Item deleted with dependent claims", extra={"item_id": str(item_id)})
