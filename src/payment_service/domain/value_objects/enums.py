from __future__ import annotations

from enum import StrEnum


class OrderStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class QueueKindName(StrEnum):
    EMAIL = "email"
    WEBHOOK_RETRY = "webhook_retry"


class QueueStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    PROCESSED = "processed"
    DEAD_LETTER = "dead_letter"


class WebhookEventKind(StrEnum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    CHARGE_REFUNDED = "charge.refunded"
    UNHANDLED = "unhandled"


class TransitionOutcome(StrEnum):
    TRANSITIONED = "transitioned"
    ALREADY_HANDLED = "already_handled"
    LOST_RACE = "lost_race"


class RefundStatus(StrEnum):
    APPLIED = "applied"
    ALREADY_PROCESSED = "already_processed"
    NO_REFUNDABLE_AMOUNT = "no_refundable_amount"


class ItemOutcome(StrEnum):
    PROCESSED = "processed"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"


class PrincipalKind(StrEnum):
    SERVICE = "service"
    ADMIN = "admin"
    USER = "user"
