"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the API process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def build_log_context(
    *,
    user_id: str | None = None,
    claim_id: str | None = None,
    room_id: str | None = None,
    intent_id: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (never emails or message bodies)."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = user_id
    if claim_id:
        context["claim_id"] = claim_id
    if room_id:
        context["room_id"] = room_id
    if intent_id:
        context["intent_id"] = intent_id
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
