from __future__ import annotations

from typing import Any

import httpx

from payment_service.infrastructure.http.errors import raise_for_downstream, wrap_transport_error

_SERVICE = "resend"


class ResendEmailSender:
    """Implements application.ports.email.EmailSender against the Resend API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_url: str,
        api_key: str,
        timeout: float | None = None,
    ) -> None:
        self._client = client
        self._api_url = api_url
        self._api_key = api_key
        self._timeout = timeout

    async def send(self, message: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(
                self._api_url,
                json=message,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout or httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.HTTPError as exc:
            raise wrap_transport_error(exc, _SERVICE) from exc
        raise_for_downstream(response, _SERVICE)
        return response.json() if response.content else {}
