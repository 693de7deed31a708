"""Import all models so Alembic can discover them via Base.metadata."""
from payment_service.infrastructure.db.models.order import OrderModel, RefundModel
from payment_service.infrastructure.db.models.outbox import OutboxMessageModel
from payment_service.infrastructure.db.models.queue import EmailQueueModel, WebhookRetryQueueModel
from payment_service.infrastructure.db.models.rate_limit import RateLimitCounterModel
from payment_service.infrastructure.db.models.webhook_event import WebhookEventModel

__all__ = [
    "EmailQueueModel",
    "OrderModel",
    "OutboxMessageModel",
    "RateLimitCounterModel",
    "RefundModel",
    "WebhookEventModel",
    "WebhookRetryQueueModel",
]
