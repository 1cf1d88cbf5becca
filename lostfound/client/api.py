"""Async HTTP client for the lost & found API.

Thin wrapper over httpx.AsyncClient used by the chat session, unread
tracker and settlement poller. Authenticates with a bearer session token
or a room-scoped claimer token.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import httpx

from lostfound.core.deps import CLAIMER_TOKEN_HEADER, CSRF_HEADER, CSRF_HEADER_VALUE

DEFAULT_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


class ApiError(Exception):
    """Non-success response from the API."""

    def __init__(self, status_code: int, detail: Any = None):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"API error {status_code}: {detail}")

    @property
    def code(self) -> str | None:
        """Structured error code (payment errors carry one)."""
        if isinstance(self.detail, dict):
            return self.detail.get("code")
        return None


class LostFoundApi:
    """
    API client.

    Pass an existing httpx.AsyncClient (e.g. with an ASGITransport in
    tests) or a base_url to have one created and owned.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        session_token: str | None = None,
        claimer_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        headers = {CSRF_HEADER: CSRF_HEADER_VALUE}
        if session_token:
            headers["Authorization"] = f"Bearer {session_token}"
        if claimer_token:
            headers[CLAIMER_TOKEN_HEADER] = claimer_token
        self._headers = headers
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=DEFAULT_TIMEOUT)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "LostFoundApi":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        response = await self._client.request(method, path, headers=self._headers, **kwargs)
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = response.text
            raise ApiError(response.status_code, detail)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------

    async def get_messages(self, room_id: str) -> list[dict]:
        """Room history; marks the caller's unread messages read server-side."""
        return await self._request("GET", f"/rooms/{room_id}/messages")

    async def post_message(self, message: dict) -> dict:
        return await self._request("POST", f"/rooms/{message['roomId']}/messages", json=message)

    async def get_unread(self) -> dict:
        return await self._request("GET", "/me/unread")

    # -------------------------------------------------------------------------
    # Claims & payments
    # -------------------------------------------------------------------------

    async def get_claim(self, claim_id: UUID | str) -> dict:
        return await self._request("GET", f"/claims/{claim_id}")

    async def update_claim_status(self, claim_id: UUID | str, status: str) -> dict:
        return await self._request("POST", f"/claims/{claim_id}/status", json={"status": status})

    async def create_payment(
        self,
        claim_id: UUID | str,
        *,
        shipping_fee: int | None = None,
        tip_amount: int = 0,
        shipping_address: dict | None = None,
    ) -> dict:
        payload: dict[str, Any] = {"claimId": str(claim_id), "tipAmount": tip_amount}
        if shipping_fee is not None:
            payload["shippingFee"] = shipping_fee
        if shipping_address is not None:
            payload["shippingAddress"] = shipping_address
        return await self._request("POST", "/payments", json=payload)

    async def get_payment_status(self, claim_id: UUID | str) -> str:
        data = await self._request("GET", "/payments/status", params={"claim_id": str(claim_id)})
        return data["status"]

    async def get_payment_readiness(self, claim_id: UUID | str) -> dict:
        return await self._request(
            "GET", "/payments/readiness", params={"claim_id": str(claim_id)}
        )
