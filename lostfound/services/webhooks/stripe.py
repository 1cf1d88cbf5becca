"""Stripe webhook handler."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from uuid import UUID

from fastapi import HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lostfound.core.config import settings
from lostfound.core.structured_logging import build_log_context
from lostfound.db.enums import SettlementOutcome
from lostfound.db.models import ProcessorWebhookEvent
from lostfound.services import payout_account_service, realtime_service, settlement_service
from lostfound.services.payment_processor import account_from_payload

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"

INTENT_OUTCOMES = {
    "payment_intent.succeeded": SettlementOutcome.SUCCEEDED,
    "payment_intent.payment_failed": SettlementOutcome.FAILED,
    "payment_intent.canceled": SettlementOutcome.FAILED,
}


def _parse_signature_header(header: str) -> tuple[int | None, list[str]]:
    """Split "t=...,v1=...,v1=..." into the timestamp and v1 signatures."""
    timestamp = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_stripe_signature(
    payload: bytes,
    header: str,
    secret: str,
    *,
    tolerance: int,
    now: float | None = None,
) -> bool:
    """
    Verify a Stripe-Signature header.

    Stripe signs "<timestamp>.<raw body>" with HMAC-SHA256; any v1 entry may
    match (secret rolling). Stale timestamps are rejected to stop replays.
    """
    if not header or not secret:
        return False
    timestamp, signatures = _parse_signature_header(header)
    if timestamp is None or not signatures:
        return False
    current = time.time() if now is None else now
    if tolerance and abs(current - timestamp) > tolerance:
        return False
    expected = compute_signature(payload, timestamp, secret)
    return any(hmac.compare_digest(expected, candidate) for candidate in signatures)


def claim_id_from_metadata(metadata: dict | None) -> UUID | None:
    """Find the claim id in intent metadata whatever the key casing."""
    for key, value in (metadata or {}).items():
        if key.replace("_", "").lower() == "claimid" and value:
            try:
                return UUID(str(value))
            except ValueError:
                logger.warning("Intent metadata carries a malformed claim id")
                return None
    return None


async def _read_body_safe(request: Request) -> bytes:
    limit = settings.STRIPE_WEBHOOK_MAX_PAYLOAD_BYTES
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            if int(content_length) > limit:
                raise HTTPException(413, "Payload too large")
        except ValueError:
            pass

    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        if not chunk:
            continue
        total += len(chunk)
        if total > limit:
            raise HTTPException(413, "Payload too large")
        chunks.append(chunk)
    return b"".join(chunks)


class StripeWebhookHandler:
    async def handle(self, request: Request, db: Session, **kwargs):
        """
        Receive Stripe webhook events.

        Handles:
        - account.updated: enable a payout account once fully onboarded
        - payment_intent.succeeded: settle the payment and mark the claim paid
        - payment_intent.payment_failed / canceled: fail a pending payment

        Security:
        - Verifies Stripe-Signature with STRIPE_WEBHOOK_SECRET before parsing
        - Deduplicates events via ProcessorWebhookEvent
        """
        body = await _read_body_safe(request)

        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("STRIPE_WEBHOOK_SECRET not configured")
            raise HTTPException(400, "Webhook not configured")

        signature = request.headers.get(SIGNATURE_HEADER, "")
        if not verify_stripe_signature(
            body,
            signature,
            settings.STRIPE_WEBHOOK_SECRET,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        ):
            logger.warning("Stripe webhook signature verification failed")
            raise HTTPException(400, "Invalid signature")

        try:
            event = json.loads(body)
        except json.JSONDecodeError:
            raise HTTPException(400, "Invalid JSON")

        event_id = event.get("id")
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        if not event_id or not isinstance(obj, dict):
            raise HTTPException(400, "Malformed event")

        try:
            db.add(
                ProcessorWebhookEvent(
                    provider_event_id=event_id,
                    event_type=event_type,
                    payload=event,
                )
            )
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.info("Stripe webhook duplicate event: %s", event_id)
            return {"received": True, "status": "duplicate"}

        if event_type == "account.updated":
            if obj.get("id"):
                payout_account_service.apply_account_update(db, account_from_payload(obj))
            db.commit()
            return {"received": True, "event": event_type}

        outcome = INTENT_OUTCOMES.get(event_type)
        if outcome is None or not obj.get("id"):
            db.commit()
            return {"received": True, "event": event_type, "status": "ignored"}

        intent_id = obj["id"]
        claim_id = claim_id_from_metadata(obj.get("metadata"))
        if claim_id is None:
            logger.warning(
                "Intent event without claim id in metadata",
                extra=build_log_context(intent_id=intent_id),
            )

        result = settlement_service.apply_settlement_event(
            db, intent_id, outcome, claim_id=claim_id
        )
        db.commit()

        if result.claim_status_changed and result.claim is not None:
            await realtime_service.publish_claim_status(db, result.claim)

        return {
            "received": True,
            "event": event_type,
            "status": "applied" if result.changed else "noop",
        }
