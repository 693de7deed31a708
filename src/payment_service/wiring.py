"""Builds the collaborators shared by the API process and the workers."""
from __future__ import annotations

import httpx

from payment_service.application.backoff import RetryPolicy
from payment_service.application.uow import UoWFactory
from payment_service.config import Settings
from payment_service.infrastructure.http.fulfillment_client import HttpFulfillmentGateway
from payment_service.infrastructure.http.resend_client import ResendEmailSender
from payment_service.infrastructure.webhooks.stripe_verifier import StripeSignatureVerifier
from payment_service.services.queue_kinds import (
    QueueRegistry,
    build_email_kind,
    build_webhook_retry_kind,
)
from payment_service.services.webhook_service import WebhookContext


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.FULFILLMENT_TIMEOUT, connect=5.0),
    )


def build_webhook_context(settings: Settings, client: httpx.AsyncClient) -> WebhookContext:
    return WebhookContext(
        verifier=StripeSignatureVerifier(
            settings.STRIPE_WEBHOOK_SECRET, settings.STRIPE_SIGNATURE_TOLERANCE,
        ),
        fulfillment=HttpFulfillmentGateway(
            client, settings.FULFILLMENT_BASE_URL, settings.FULFILLMENT_API_KEY,
        ),
        fulfillment_policy=RetryPolicy(
            max_retries=settings.FULFILLMENT_MAX_RETRIES,
            schedule=tuple(settings.FULFILLMENT_BACKOFF_SCHEDULE),
            jitter=settings.FULFILLMENT_BACKOFF_JITTER,
        ),
        retry_max_attempts=settings.WEBHOOK_RETRY_MAX_ATTEMPTS,
        retry_initial_delay_ms=settings.WEBHOOK_RETRY_INITIAL_DELAY_MS,
    )


def build_queue_registry(
    settings: Settings,
    client: httpx.AsyncClient,
    ctx: WebhookContext,
    uow_factory: UoWFactory,
) -> QueueRegistry:
    sender = ResendEmailSender(
        client, settings.RESEND_API_URL, settings.RESEND_API_KEY, settings.EMAIL_TIMEOUT,
    )
    email = build_email_kind(
        sender,
        default_from=settings.EMAIL_FROM_DEFAULT,
        default_reply_to=settings.EMAIL_REPLY_TO_DEFAULT,
        global_limit=settings.EMAIL_GLOBAL_RATE_LIMIT,
        recipient_limit=settings.EMAIL_RECIPIENT_RATE_LIMIT,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        max_attempts=settings.EMAIL_MAX_ATTEMPTS,
        retry_schedule=tuple(settings.EMAIL_RETRY_SCHEDULE),
        send_policy=RetryPolicy(
            max_retries=settings.EMAIL_SEND_MAX_RETRIES,
            schedule=tuple(settings.EMAIL_SEND_BACKOFF_SCHEDULE),
            jitter=settings.EMAIL_SEND_BACKOFF_JITTER,
        ),
        processing_timeout_seconds=settings.QUEUE_PROCESSING_TIMEOUT,
        batch_size=settings.EMAIL_BATCH_SIZE,
    )
    webhook_retry = build_webhook_retry_kind(
        ctx,
        uow_factory,
        rate_limit=settings.WEBHOOK_RETRY_RATE_LIMIT,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        max_attempts=settings.WEBHOOK_RETRY_MAX_ATTEMPTS,
        retry_schedule=tuple(settings.WEBHOOK_RETRY_SCHEDULE),
        processing_timeout_seconds=settings.QUEUE_PROCESSING_TIMEOUT,
        batch_size=settings.WEBHOOK_RETRY_BATCH_SIZE,
    )
    return QueueRegistry(email, webhook_retry)
