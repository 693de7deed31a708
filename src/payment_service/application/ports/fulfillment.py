from __future__ import annotations

from typing import Any, Protocol


class FulfillmentGateway(Protocol):
    """Opaque remote collaborator that turns a confirmed payment into tickets."""

    async def process_payment(
        self,
        *,
        session_id: str | None,
        payment_intent_id: str | None,
        correlation_id: str,
    ) -> dict[str, Any]: ...

    async def send_refund_confirmation(self, payload: dict[str, Any]) -> dict[str, Any]: ...
