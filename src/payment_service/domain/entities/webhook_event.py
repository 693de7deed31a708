from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from payment_service.domain.value_objects.enums import WebhookEventKind


@dataclass(frozen=True, slots=True)
class WebhookEvent:
    """A verified provider notification, classified by its declared type."""

    id: str
    type: str
    kind: WebhookEventKind
    object: dict[str, Any]
    livemode: bool = False
    created: int | None = None

    @property
    def metadata(self) -> dict[str, Any]:
        return self.object.get("metadata") or {}


@dataclass(frozen=True, slots=True)
class WebhookAck:
    """Body returned to the provider for an acknowledged delivery."""

    received: bool = True
    event_id: str | None = None
    outcome: str | None = None
    skipped: str | None = None
    already_processed: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"received": self.received}
        if self.event_id:
            body["event_id"] = self.event_id
        if self.outcome:
            body["outcome"] = self.outcome
        if self.skipped:
            body["skipped"] = self.skipped
        if self.already_processed:
            body["already_processed"] = True
        body.update(self.extra)
        return body
