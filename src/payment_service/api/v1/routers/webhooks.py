from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Header, Request

from payment_service.api.deps import UoWDep, WebhookContextDep
from payment_service.services import webhook_service

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    uow: UoWDep,
    ctx: WebhookContextDep,
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> dict[str, Any]:
    # Signature is computed over the exact bytes, so read the body raw.
    raw_body = await request.body()
    ack = await webhook_service.handle_webhook(raw_body, stripe_signature, ctx, uow)
    return ack.as_dict()
