from __future__ import annotations

import logging
from typing import Any

import httpx

from payment_service.infrastructure.http.errors import raise_for_downstream, wrap_transport_error

logger = logging.getLogger(__name__)

_SERVICE = "fulfillment"


class HttpFulfillmentGateway:
    """Implements application.ports.fulfillment.FulfillmentGateway over HTTP."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, api_key: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key

    def _headers(self, correlation_id: str | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        return headers

    async def _post(self, path: str, body: dict[str, Any], correlation_id: str | None) -> dict[str, Any]:
        try:
            response = await self._client.post(
                f"{self._base_url}/{path}", json=body, headers=self._headers(correlation_id),
            )
        except httpx.HTTPError as exc:
            raise wrap_transport_error(exc, _SERVICE) from exc
        raise_for_downstream(response, _SERVICE)
        if not response.content:
            return {}
        return response.json()

    async def process_payment(
        self,
        *,
        session_id: str | None,
        payment_intent_id: str | None,
        correlation_id: str,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"correlationId": correlation_id}
        if session_id:
            body["sessionId"] = session_id
        if payment_intent_id:
            body["paymentIntentId"] = payment_intent_id
        logger.debug("Calling process-payment (session=%s, intent=%s)", session_id, payment_intent_id)
        return await self._post("process-payment", body, correlation_id)

    async def send_refund_confirmation(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._post("send-refund-confirmation", payload, payload.get("correlationId"))
