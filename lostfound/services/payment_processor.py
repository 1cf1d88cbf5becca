"""Stripe Connect REST client for destination-charge payment intents.

Handles:
- Payment intent create / cancel / retrieve (destination transfer amount and
  claim id metadata set on create)
- Express connected account create / retrieve and onboarding links
- Bounded retries for transient failures (see http_service)

The PaymentProcessor protocol is the seam the settlement engine depends on;
tests substitute a fake through the get_payment_processor dependency.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from lostfound.core.config import settings
from lostfound.db.enums import SettlementOutcome
from lostfound.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

# HTTP client settings
HTTPX_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


class PaymentProcessorError(Exception):
    """The payment processor rejected a request or could not be reached."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.retryable = retryable


@dataclass
class ProcessorIntent:
    id: str
    status: str
    amount: int
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    last_payment_error: dict | None = None

    @property
    def outcome(self) -> SettlementOutcome | None:
        """Terminal outcome, or None while the intent is still in flight."""
        if self.status == "succeeded":
            return SettlementOutcome.SUCCEEDED
        if self.status == "canceled":
            return SettlementOutcome.FAILED
        if self.status == "requires_payment_method" and self.last_payment_error:
            return SettlementOutcome.FAILED
        return None


@dataclass
class ProcessorAccount:
    id: str
    charges_enabled: bool = False
    details_submitted: bool = False
    payouts_enabled: bool = False
    currently_due: list[str] = field(default_factory=list)

    @property
    def fully_onboarded(self) -> bool:
        return self.charges_enabled and self.details_submitted and self.payouts_enabled


class PaymentProcessor(Protocol):
    async def create_payment_intent(
        self,
        *,
        amount: int,
        currency: str,
        destination_account_id: str,
        transfer_amount: int,
        metadata: dict[str, str],
        description: str,
        idempotency_key: str,
    ) -> ProcessorIntent: ...

    async def cancel_payment_intent(self, intent_id: str) -> None: ...

    async def retrieve_payment_intent(self, intent_id: str) -> ProcessorIntent: ...

    async def create_account(self, *, email: str, user_id: str) -> ProcessorAccount: ...

    async def retrieve_account(self, account_id: str) -> ProcessorAccount: ...

    async def create_account_link(
        self, account_id: str, *, refresh_url: str, return_url: str
    ) -> str: ...


def flatten_params(params: dict[str, Any], prefix: str = "") -> dict[str, str]:
    """
    Flatten nested params into Stripe's bracketed form encoding.

    {"transfer_data": {"destination": "acct_1"}} -> {"transfer_data[destination]": "acct_1"}
    """
    flat: dict[str, str] = {}
    for key, value in params.items():
        full_key = f"{prefix}[{key}]" if prefix else key
        if value is None:
            continue
        if isinstance(value, dict):
            flat.update(flatten_params(value, full_key))
        elif isinstance(value, bool):
            flat[full_key] = "true" if value else "false"
        else:
            flat[full_key] = str(value)
    return flat


def _intent_from_payload(data: dict) -> ProcessorIntent:
    return ProcessorIntent(
        id=data["id"],
        status=data.get("status", ""),
        amount=int(data.get("amount") or 0),
        client_secret=data.get("client_secret"),
        metadata=data.get("metadata") or {},
        last_payment_error=data.get("last_payment_error"),
    )


def account_from_payload(data: dict) -> ProcessorAccount:
    requirements = data.get("requirements") or {}
    return ProcessorAccount(
        id=data["id"],
        charges_enabled=bool(data.get("charges_enabled")),
        details_submitted=bool(data.get("details_submitted")),
        payouts_enabled=bool(data.get("payouts_enabled")),
        currently_due=list(requirements.get("currently_due") or []),
    )


class StripeClient:
    """Thin async client over the Stripe REST API."""

    def __init__(
        self,
        secret_key: str | None = None,
        *,
        api_base: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self._api_base = (api_base or settings.STRIPE_API_BASE).rstrip("/")
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> dict:
        if not self._secret_key:
            raise PaymentProcessorError("Payment processor is not configured", code="not_configured")

        headers = {"Authorization": f"Bearer {self._secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        data = flatten_params(params or {})

        async with httpx.AsyncClient(timeout=HTTPX_TIMEOUT, transport=self._transport) as client:

            async def _send() -> httpx.Response:
                if method == "GET":
                    return await client.get(f"{self._api_base}{path}", params=data, headers=headers)
                return await client.request(
                    method, f"{self._api_base}{path}", data=data, headers=headers
                )

            try:
                response = await request_with_retries(_send)
            except httpx.RequestError as exc:
                raise PaymentProcessorError(
                    "Payment processor unreachable", retryable=True
                ) from exc

        if response.status_code >= 400:
            error: dict = {}
            try:
                error = response.json().get("error") or {}
            except ValueError:
                pass
            logger.warning(
                "Processor %s %s failed with %s (%s)",
                method,
                path,
                response.status_code,
                error.get("code") or error.get("type"),
            )
            raise PaymentProcessorError(
                error.get("message") or f"Processor request failed ({response.status_code})",
                status_code=response.status_code,
                code=error.get("code"),
                retryable=response.status_code >= 500 or response.status_code == 429,
            )
        return response.json()

    async def create_payment_intent(
        self,
        *,
        amount: int,
        currency: str,
        destination_account_id: str,
        transfer_amount: int,
        metadata: dict[str, str],
        description: str,
        idempotency_key: str,
    ) -> ProcessorIntent:
        data = await self._request(
            "POST",
            "/payment_intents",
            params={
                "amount": amount,
                "currency": currency,
                "description": description,
                "metadata": metadata,
                "transfer_data": {
                    "destination": destination_account_id,
                    "amount": transfer_amount,
                },
                "automatic_payment_methods": {"enabled": True},
            },
            idempotency_key=idempotency_key,
        )
        return _intent_from_payload(data)

    async def cancel_payment_intent(self, intent_id: str) -> None:
        await self._request("POST", f"/payment_intents/{intent_id}/cancel")

    async def retrieve_payment_intent(self, intent_id: str) -> ProcessorIntent:
        return _intent_from_payload(await self._request("GET", f"/payment_intents/{intent_id}"))

    async def create_account(self, *, email: str, user_id: str) -> ProcessorAccount:
        data = await self._request(
            "POST",
            "/accounts",
            params={
                "type": "express",
                "email": email,
                "metadata": {"user_id": user_id},
                "capabilities": {
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
            },
            idempotency_key=f"account-create:{user_id}",
        )
        return account_from_payload(data)

    async def retrieve_account(self, account_id: str) -> ProcessorAccount:
        return account_from_payload(await self._request("GET", f"/accounts/{account_id}"))

    async def create_account_link(
        self, account_id: str, *, refresh_url: str, return_url: str
    ) -> str:
        data = await self._request(
            "POST",
            "/account_links",
            params={
                "account": account_id,
                "refresh_url": refresh_url,
                "return_url": return_url,
                "type": "account_onboarding",
            },
        )
        return data["url"]


def get_payment_processor() -> PaymentProcessor:
    """FastAPI dependency for the configured payment processor."""
    return StripeClient()
