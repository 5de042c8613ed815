from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from portal.billing import map_stripe_status, period_end_of
from portal.factory import Services
from portal.models import User


@pytest.fixture()
def customer(services: Services) -> User:
    user = services.users.create({"name": "Customer", "email": "customer@example.com", "password": "secret-password"})
    services.users.sync_roles(user, ["free"])
    services.users.update(user, {"stripe_customer_id": "cus_123"})
    refreshed = services.users.find_by_id(user.id)
    assert refreshed is not None
    return refreshed


def _stripe_subscription(status: str = "active", **overrides) -> dict:
    period_end = int(time.time()) + 30 * 24 * 3600
    payload = {
        "id": "sub_123",
        "customer": "cus_123",
        "status": status,
        "cancel_at_period_end": False,
        "trial_end": None,
        "items": {"data": [{"price": {"id": "price_monthly_pln"}, "quantity": 1, "current_period_end": period_end}]},
    }
    payload.update(overrides)
    return payload


def _event(event_id: str, event_type: str, obj: dict) -> dict:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def test_subscription_created_grants_premium(services: Services, customer: User) -> None:
    event_id, processed = services.webhooks.handle_event(
        _event("evt_1", "customer.subscription.created", _stripe_subscription())
    )

    assert (event_id, processed) == ("evt_1", True)
    subscription = services.subscription_repository.find_by_stripe_id("sub_123")
    assert subscription is not None
    assert subscription.stripe_price == "price_monthly_pln"
    assert subscription.quantity == 1
    assert subscription.current_period_end is not None
    assert services.subscription_repository.is_user_subscribed(customer)
    assert services.users.get_roles(customer) == ["premium"]


def test_events_are_processed_once(services: Services, customer: User) -> None:
    event = _event("evt_1", "customer.subscription.created", _stripe_subscription())

    assert services.webhooks.handle_event(event) == ("evt_1", True)
    assert services.webhooks.handle_event(event) == ("evt_1", False)
    assert len(services.subscription_repository.list_for_user(customer)) == 1


def test_event_claimed_elsewhere_is_skipped(services: Services, customer: User) -> None:
    services.database.execute(
        "INSERT INTO stripe_events (event_id, event_type, received_at) VALUES (?, ?, ?)",
        ("evt_1", "customer.subscription.created", "2024-01-01T00:00:00+00:00"),
    )

    result = services.webhooks.handle_event(
        _event("evt_1", "customer.subscription.created", _stripe_subscription())
    )

    assert result == ("evt_1", False)
    assert services.subscription_repository.find_by_stripe_id("sub_123") is None
    assert services.users.get_roles(customer) == ["free"]


def test_subscription_deleted_downgrades_user(services: Services, customer: User) -> None:
    services.webhooks.handle_event(_event("evt_1", "customer.subscription.created", _stripe_subscription()))

    services.webhooks.handle_event(
        _event("evt_2", "customer.subscription.deleted", _stripe_subscription("canceled", ended_at=int(time.time()) - 10))
    )

    subscription = services.subscription_repository.find_by_stripe_id("sub_123")
    assert subscription is not None
    assert subscription.stripe_status == "canceled"
    assert subscription.ended()
    assert not services.subscription_repository.is_user_subscribed(customer)
    assert services.users.get_roles(customer) == ["free"]


def test_cancel_at_period_end_sets_grace_period(services: Services, customer: User) -> None:
    services.webhooks.handle_event(
        _event("evt_1", "customer.subscription.updated", _stripe_subscription(cancel_at_period_end=True))
    )

    subscription = services.subscription_repository.find_by_stripe_id("sub_123")
    assert subscription is not None
    assert subscription.on_grace_period()
    assert subscription.active()


def test_admin_role_is_kept(services: Services, customer: User) -> None:
    services.users.sync_roles(customer, ["admin", "free"])

    services.webhooks.handle_event(_event("evt_1", "customer.subscription.created", _stripe_subscription()))

    assert services.users.get_roles(customer) == ["admin", "premium"]


def test_checkout_completed_links_customer(services: Services, monkeypatch) -> None:
    user = services.users.create({"name": "Buyer", "email": "buyer@example.com", "password": "secret-password"})
    retrieved = []

    def fake_retrieve(subscription_id):
        retrieved.append(subscription_id)
        return _stripe_subscription(customer="cus_new")

    monkeypatch.setattr(services.billing, "retrieve_subscription", fake_retrieve)

    services.webhooks.handle_event(
        _event(
            "evt_1",
            "checkout.session.completed",
            {"id": "cs_1", "customer": "cus_new", "subscription": "sub_123", "client_reference_id": user.uuid},
        )
    )

    refreshed = services.users.find_by_id(user.id)
    assert refreshed is not None
    assert refreshed.stripe_customer_id == "cus_new"
    assert retrieved == ["sub_123"]
    assert services.subscription_repository.is_user_subscribed(refreshed)
    assert "subscribed" in [entry.description for entry in services.activity.list_for_user(refreshed)]


def test_checkout_for_unknown_user_is_ignored(services: Services) -> None:
    assert services.webhooks.handle_event(
        _event("evt_1", "checkout.session.completed", {"id": "cs_1", "customer": "cus_unknown"})
    ) == ("evt_1", True)


def test_invoice_events_are_recorded(services: Services, customer: User) -> None:
    invoice = {"id": "in_1", "customer": "cus_123", "subscription": "sub_123", "attempt_count": 2}

    services.webhooks.handle_event(_event("evt_1", "invoice.payment_failed", invoice))
    services.webhooks.handle_event(_event("evt_2", "invoice.payment_succeeded", invoice))

    descriptions = [entry.description for entry in services.activity.list_for_user(customer)]
    assert "subscription payment failed" in descriptions
    assert "subscription renewed automatically" in descriptions
    assert services.users.get_roles(customer) == ["premium"]


def test_failed_handler_allows_retry(services: Services, customer: User, monkeypatch) -> None:
    def broken_sync(*args, **kwargs):
        raise RuntimeError("database unavailable")

    event = _event("evt_1", "customer.subscription.created", _stripe_subscription())
    monkeypatch.setattr(services.webhooks, "_sync_subscription", broken_sync)

    with pytest.raises(RuntimeError):
        services.webhooks.handle_event(event)

    monkeypatch.undo()
    assert services.webhooks.handle_event(event) == ("evt_1", True)


def test_event_without_id_is_rejected(services: Services) -> None:
    with pytest.raises(ValueError):
        services.webhooks.handle_event({"type": "customer.subscription.created"})


def test_webhook_endpoint_requires_billing(client: TestClient) -> None:
    response = client.post("/api/stripe/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"})

    assert response.status_code == 503
    assert response.json()["status"] == "error"


def test_webhook_endpoint_rejects_bad_signature(client: TestClient, services: Services, monkeypatch) -> None:
    def reject(payload, signature):
        raise ValueError("Invalid Stripe signature")

    monkeypatch.setattr(services.billing, "construct_event", reject)

    response = client.post("/api/stripe/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"})

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid Stripe signature"


def test_webhook_endpoint_processes_event(client: TestClient, services: Services, customer: User, monkeypatch) -> None:
    event = _event("evt_1", "customer.subscription.created", _stripe_subscription())
    monkeypatch.setattr(services.billing, "construct_event", lambda payload, signature: event)

    response = client.post("/api/stripe/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"})

    assert response.status_code == 200
    assert response.json()["data"] == {"event_id": "evt_1", "processed": True}


def test_stripe_helpers() -> None:
    assert map_stripe_status("trialing") == "trial"
    assert map_stripe_status("unpaid") == "canceled"
    assert map_stripe_status("mystery") == "unknown"
    assert period_end_of({"current_period_end": 0}).year == 1970
    assert period_end_of({}) is None
