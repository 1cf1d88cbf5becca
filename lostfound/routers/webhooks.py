"""Webhooks router - payment processor callbacks."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from lostfound.core.deps import get_db
from lostfound.core.rate_limit import limiter, webhook_limit
from lostfound.services.webhooks.registry import get_handler

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/{provider}")
@limiter.limit(webhook_limit)
async def receive_webhook(
    request: Request,
    provider: str,
    db: Session = Depends(get_db),
):
    """Dispatch a signed webhook delivery to its provider handler."""
    try:
        handler = get_handler(provider)
    except KeyError:
        raise HTTPException(status_code=404, detail="Unknown webhook provider")
    return await handler.handle(request, db)
