"""Bounded settlement polling after the payer confirms a payment."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable
from uuid import UUID

import httpx

from lostfound.client.api import ApiError, LostFoundApi
from lostfound.core.constants import SETTLEMENT_POLL_ATTEMPTS, SETTLEMENT_POLL_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

PAID = "paid"
FAILED = "failed"
PROCESSING = "processing"


async def poll_settlement(
    api: LostFoundApi,
    claim_id: UUID | str,
    *,
    attempts: int = SETTLEMENT_POLL_ATTEMPTS,
    interval: float = SETTLEMENT_POLL_INTERVAL_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> str:
    """
    Poll /payments/status until settled.

    Returns "paid" or "failed" as soon as the server reports it, else
    "processing" once attempts run out. The webhook may still land later;
    callers show the payment as processing rather than failed.
    """
    for attempt in range(attempts):
        try:
            status = await api.get_payment_status(claim_id)
        except (ApiError, httpx.HTTPError) as e:
            # Validation and authorization errors never succeed on retry
            if isinstance(e, ApiError) and e.status_code < 500:
                raise
            logger.warning("Settlement status check failed (attempt %d)", attempt + 1)
            status = None

        if status in (PAID, FAILED):
            return status
        if attempt < attempts - 1:
            await sleep(interval)

    return PROCESSING
