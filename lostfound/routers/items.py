"""Item endpoints (the minimal surface claims hang off)."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from lostfound.core.deps import get_current_session, get_db, get_optional_session, require_csrf_header
from lostfound.schemas.auth import CallerSession
from lostfound.schemas.item import ItemCreate, ItemRead
from lostfound.services import item_service
from lostfound.services.item_service import ItemNotFoundError, NotItemOwnerError

router = APIRouter()


@router.post(
    "",
    response_model=ItemRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_csrf_header)],
)
def create_item(
    data: ItemCreate,
    session: CallerSession | None = Depends(get_optional_session),
    db: Session = Depends(get_db),
):
    """Report an item; anonymous finders get an ownerless item."""
    return item_service.create_item(
        db,
        title=data.title,
        description=data.description,
        owner_user_id=session.user_id if session else None,
    )


@router.get("/{item_id}", response_model=ItemRead)
def get_item(item_id: UUID, db: Session = Depends(get_db)):
    item = item_service.get_item(db, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


@router.delete(
    "/{item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_csrf_header)],
)
def delete_item(
    item_id: UUID,
    session: CallerSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Delete an item along with its claims, chat history and payments."""
    try:
        item_service.delete_item(db, item_id, session.user_id)
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NotItemOwnerError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
