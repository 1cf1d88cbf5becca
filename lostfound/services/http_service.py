"""HTTP helpers with bounded retry/backoff for the payment processor."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {409, 429, 500, 502, 503, 504}
SHOULD_RETRY_HEADER = "Stripe-Should-Retry"


def _backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


def _should_retry(response: httpx.Response, statuses: set[int]) -> bool:
    # The processor may say explicitly whether a retry is safe
    hint = response.headers.get(SHOULD_RETRY_HEADER)
    if hint is not None:
        return hint.strip().lower() == "true"
    return response.status_code in statuses


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
) -> httpx.Response:
    """
    Execute an HTTP request with exponential backoff retries.

    Network errors and retryable statuses are retried up to max_attempts;
    the last response (or error) is returned to the caller. Callers that
    mutate remote state must send an idempotency key so retries are safe.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise
            delay = _backoff(attempt, base_delay, max_delay)
            logger.warning("Processor request failed, retrying", exc_info=exc)
            if delay:
                await asyncio.sleep(delay)
            continue

        if attempt < max_attempts - 1 and _should_retry(response, statuses):
            delay = _backoff(attempt, base_delay, max_delay)
            logger.warning("Processor returned %s, retrying", response.status_code)
            if delay:
                await asyncio.sleep(delay)
            continue

        return response

    return response
