"""API tests against the in-memory unit of work via dependency overrides."""
from __future__ import annotations

import uuid

import jwt
import pytest
from fastapi.testclient import TestClient

from payment_service.api.deps import (
    get_queue_registry,
    get_uow,
    get_uow_factory,
    get_webhook_context,
)
from payment_service.app import create_app
from payment_service.application.backoff import RetryPolicy
from payment_service.config import settings
from payment_service.domain.value_objects.enums import OrderStatus, QueueStatus
from payment_service.infrastructure.webhooks.stripe_verifier import StripeSignatureVerifier
from payment_service.services.queue_kinds import (
    QueueRegistry,
    build_email_kind,
    build_webhook_retry_kind,
)
from payment_service.services.webhook_service import WebhookContext
from tests.conftest import (
    WEBHOOK_SECRET,
    FakeEmailSender,
    FakeFulfillment,
    FakeStore,
    FakeUoW,
    make_event,
    make_order,
    make_uow_factory,
    no_sleep,
    sign_payload,
)

EMAIL = {"to_email": "fan@example.com", "subject": "Tickets", "html": "<p>hi</p>"}


def _make_token(sub: str = "ticketing", kind: str = "service", roles: list | None = None) -> str:
    return jwt.encode(
        {"sub": sub, "kind": kind, "roles": roles or []},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def _auth(kind: str = "service") -> dict[str, str]:
    return {"Authorization": f"Bearer {_make_token(kind=kind)}"}


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def app(store, sender):
    app = create_app()
    factory = make_uow_factory(store)
    ctx = WebhookContext(
        verifier=StripeSignatureVerifier(WEBHOOK_SECRET),
        fulfillment=FakeFulfillment(),
        fulfillment_policy=RetryPolicy(max_retries=0),
        sleep=no_sleep,
    )
    registry = QueueRegistry(
        build_email_kind(
            sender,
            default_from="noreply@example.com",
            default_reply_to="support@example.com",
            global_limit=100,
            recipient_limit=10,
            window_seconds=60,
            max_attempts=2,
            retry_schedule=(1.0,),
            send_policy=RetryPolicy(max_retries=0),
        ),
        build_webhook_retry_kind(
            ctx, factory, rate_limit=60, window_seconds=60, max_attempts=5, retry_schedule=(60.0,),
        ),
    )

    async def _override_uow():
        yield FakeUoW(store)

    app.dependency_overrides[get_uow] = _override_uow
    app.dependency_overrides[get_uow_factory] = lambda: factory
    app.dependency_overrides[get_webhook_context] = lambda: ctx
    app.dependency_overrides[get_queue_registry] = lambda: registry
    return app


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)


def _post_event(client, body: str, signature: str | None = None):
    return client.post(
        "/api/v1/webhooks/stripe",
        content=body,
        headers={
            "Content-Type": "application/json",
            "Stripe-Signature": signature if signature is not None else sign_payload(body),
        },
    )


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert "X-Request-ID" in resp.headers


def test_webhook_marks_order_paid(client, store):
    order = store.add_order(make_order())

    resp = _post_event(client, make_event(event_id="evt_api"))

    assert resp.status_code == 200
    assert resp.json()["received"] is True
    assert resp.json()["outcome"] == "transitioned"
    assert store.orders[order.id].status == OrderStatus.PAID


def test_webhook_bad_signature_is_401(client, store):
    store.add_order(make_order())
    body = make_event()

    resp = _post_event(client, body, signature=sign_payload(body, "whsec_other"))

    assert resp.status_code == 401
    assert store.paid_writes == 0
    assert store.lookups == []


def test_webhook_malformed_envelope_is_422(client):
    body = '{"id": "evt_1"}'
    assert _post_event(client, body).status_code == 422


def test_webhook_unhandled_type_is_acknowledged(client):
    resp = _post_event(client, make_event("invoice.paid", {"id": "in_1"}))

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "unhandled"


def test_webhook_internal_failure_is_500(app, store):
    store.add_order(make_order())
    broken = FakeUoW(store)

    async def _fail(field, value):
        raise ConnectionError("db down")

    broken.orders.find_by = _fail

    async def _override():
        yield broken

    app.dependency_overrides[get_uow] = _override
    client = TestClient(app, raise_server_exceptions=False)

    assert _post_event(client, make_event()).status_code == 500


def test_enqueue_email_returns_id(client, store):
    resp = client.post("/api/v1/queues/email/items", json={"payload": EMAIL, "max_attempts": 3}, headers=_auth())

    assert resp.status_code == 201
    item_id = uuid.UUID(resp.json()["id"])
    assert store.queues["email"][item_id].max_attempts == 3


def test_enqueue_requires_service_token(client):
    assert client.post("/api/v1/queues/email/items", json={"payload": EMAIL}).status_code in (401, 403)
    assert client.post(
        "/api/v1/queues/email/items", json={"payload": EMAIL}, headers=_auth(kind="user"),
    ).status_code == 403


def test_user_token_with_admin_role_is_not_internal(client):
    token = _make_token(sub="u-1", kind="user", roles=["admin"])
    resp = client.post(
        "/api/v1/queues/email/items", json={"payload": EMAIL},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert resp.status_code == 403


def test_enqueue_rejects_invalid_payload(client):
    resp = client.post(
        "/api/v1/queues/email/items", json={"payload": {"to_email": "nobody"}}, headers=_auth(),
    )
    assert resp.status_code == 422


def test_unknown_queue_kind_is_404(client):
    assert client.post("/api/v1/queues/sms/items", json={"payload": {}}, headers=_auth()).status_code == 404


def test_drain_endpoint_reports_summary(client, sender):
    client.post("/api/v1/queues/email/items", json={"payload": EMAIL}, headers=_auth())

    first = client.post("/api/v1/queues/email/drain", headers=_auth())
    second = client.post("/api/v1/queues/email/drain", headers=_auth())

    assert first.status_code == 200
    assert first.json() == {"processed": 1, "failed": 0, "rate_limited": 0, "total": 1, "errors": []}
    assert second.json()["processed"] == 0
    assert len(sender.sent) == 1


def test_dead_letter_list_and_requeue(client, store, sender):
    sender.failures = 5
    created = client.post(
        "/api/v1/queues/email/items", json={"payload": EMAIL, "max_attempts": 1}, headers=_auth(),
    ).json()
    client.post("/api/v1/queues/email/drain", headers=_auth())

    dead = client.get("/api/v1/queues/email/dead-letter", headers=_auth(kind="admin"))
    assert dead.status_code == 200
    assert [d["id"] for d in dead.json()] == [created["id"]]

    resp = client.post(f"/api/v1/queues/email/items/{created['id']}/requeue", headers=_auth())
    assert resp.status_code == 200
    assert resp.json()["status"] == QueueStatus.PENDING
    assert resp.json()["attempts"] == 0

    again = client.post(f"/api/v1/queues/email/items/{created['id']}/requeue", headers=_auth())
    assert again.status_code == 409

    missing = client.post(f"/api/v1/queues/email/items/{uuid.uuid4()}/requeue", headers=_auth())
    assert missing.status_code == 404
