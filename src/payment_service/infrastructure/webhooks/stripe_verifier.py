"""Stripe ``Stripe-Signature`` verification."""
from __future__ import annotations

import json
import logging
from typing import Any

import stripe

from payment_service.application.exceptions import AuthenticationError, ValidationError

logger = logging.getLogger(__name__)


class StripeSignatureVerifier:
    """Implements application.ports.webhooks.WebhookVerifier."""

    def __init__(self, secret: str, tolerance: int = 300) -> None:
        self._secret = secret
        self._tolerance = tolerance

    def verify(
        self,
        raw_body: bytes | str,
        signature: str | None,
        *,
        check_timestamp: bool = True,
    ) -> dict[str, Any]:
        if not self._secret:
            raise AuthenticationError("Webhook signing secret is not configured")
        if not signature:
            raise AuthenticationError("Missing Stripe-Signature header")

        try:
            payload = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        except UnicodeDecodeError as exc:
            logger.warning("Rejected webhook with undecodable body")
            raise AuthenticationError("Invalid webhook signature") from exc

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature,
                self._secret,
                tolerance=self._tolerance if check_timestamp else None,
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Rejected webhook with invalid signature: %s", exc)
            raise AuthenticationError("Invalid webhook signature") from exc

        try:
            envelope = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValidationError("Webhook body is not valid JSON") from exc
        if not isinstance(envelope, dict):
            raise ValidationError("Webhook body is not a JSON object")
        return envelope
