"""Unread message counts for the signed-in user."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lostfound.core.deps import get_current_session, get_db
from lostfound.schemas.auth import CallerSession
from lostfound.schemas.unread import UnreadCounts
from lostfound.services import unread_service

router = APIRouter()


@router.get("/unread", response_model=UnreadCounts)
def get_unread(
    session: CallerSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Unread counts per participant room and their total."""
    counts = unread_service.get_unread_counts(db, session.user_id, session.email)
    return UnreadCounts(unread_counts_by_room=counts, total_unread=sum(counts.values()))
