"""Tests for the Stripe service wrapper (SDK calls are monkeypatched)."""

from __future__ import annotations

import pytest
import stripe

from grantdesk.billing import BillingNotConfiguredError, StripeBillingService, WebhookSignatureError
from grantdesk.billing.stripe_service import subscription_snapshot

T0 = 1_735_689_600


def _subscription(sub_id="sub_1", status="active"):
    return {
        "id": sub_id,
        "customer": {"id": "cus_1"},
        "status": status,
        "created": T0,
        "current_period_start": 1,
        "current_period_end": 2,
        "items": {
            "data": [
                {
                    "price": {"id": "price_std", "unit_amount": 5000},
                    "current_period_start": T0,
                    "current_period_end": T0 + 100,
                }
            ]
        },
    }


def test_requires_secret_key() -> None:
    with pytest.raises(BillingNotConfiguredError):
        StripeBillingService("")


def test_parse_event_requires_webhook_secret() -> None:
    with pytest.raises(BillingNotConfiguredError):
        StripeBillingService("sk_test_123").parse_event(b"{}", "t=1,v1=abc")


def test_parse_event_requires_signature() -> None:
    with pytest.raises(WebhookSignatureError):
        StripeBillingService("sk_test_123", webhook_secret="whsec_test").parse_event(b"{}", None)


def test_snapshot_prefers_item_period() -> None:
    snapshot = subscription_snapshot(_subscription())

    assert snapshot["customer"] == "cus_1"
    assert snapshot["price_id"] == "price_std"
    assert snapshot["unit_amount"] == 5000
    assert snapshot["current_period_start"] == T0
    assert snapshot["current_period_end"] == T0 + 100


def test_checkout_session_uses_inline_monthly_price(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {"id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1"}

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    service = StripeBillingService("sk_test_123", product_prefix="Grantdesk")

    session = service.create_checkout_session(
        customer_id="cus_1",
        plan_name="Standard",
        plan_description="Para equipos en crecimiento",
        unit_amount_usd=30,
        success_url="https://app/ok",
        cancel_url="https://app/cancel",
        metadata={"user_id": "user-1", "plan_id": "standard", "country": "CL"},
    )

    assert session == {"id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1"}
    assert captured["api_key"] == "sk_test_123"
    assert captured["mode"] == "subscription"
    price_data = captured["line_items"][0]["price_data"]
    assert price_data["unit_amount"] == 3000
    assert price_data["recurring"] == {"interval": "month"}
    assert price_data["product_data"]["name"] == "Grantdesk Standard Plan"
    assert captured["metadata"]["plan_id"] == "standard"


def test_get_or_create_customer_reuses_existing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        stripe.Customer,
        "list",
        lambda **kwargs: {"data": [{"id": "cus_existing", "email": kwargs["email"], "name": None, "created": T0}]},
    )

    def fail_create(**kwargs):
        raise AssertionError("customer must not be created")

    monkeypatch.setattr(stripe.Customer, "create", fail_create)
    service = StripeBillingService("sk_test_123")

    assert service.get_or_create_customer(email="ana@example.com", name="Ana", user_id="user-1") == "cus_existing"


def test_get_or_create_customer_creates_when_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    created = {}
    monkeypatch.setattr(stripe.Customer, "list", lambda **kwargs: {"data": []})

    def fake_create(**kwargs):
        created.update(kwargs)
        return {"id": "cus_new"}

    monkeypatch.setattr(stripe.Customer, "create", fake_create)
    service = StripeBillingService("sk_test_123")

    assert service.get_or_create_customer(email="ana@example.com", name="", user_id="user-1") == "cus_new"
    assert created["metadata"] == {"supabase_user_id": "user-1"}
    assert created["name"] is None


def test_subscription_status(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(stripe.Subscription, "list", lambda **kwargs: {"data": [_subscription(status="past_due")]})
    service = StripeBillingService("sk_test_123")

    status = service.get_subscription_status("cus_1")

    assert status["status"] == "past_due"
    assert status["current_period_end"] == T0 + 100


def test_subscription_status_without_subscriptions(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(stripe.Subscription, "list", lambda **kwargs: {"data": []})

    status = StripeBillingService("sk_test_123").get_subscription_status("cus_1")

    assert status == {"status": "none", "subscription": None, "current_period_end": None}


def test_cancel_subscription_at_period_end_or_immediately(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []

    def fake_modify(subscription_id, **kwargs):
        calls.append(("modify", subscription_id, kwargs.get("cancel_at_period_end")))
        return _subscription(subscription_id)

    def fake_cancel(subscription_id, **kwargs):
        calls.append(("cancel", subscription_id, None))
        return _subscription(subscription_id, status="canceled")

    monkeypatch.setattr(stripe.Subscription, "modify", fake_modify)
    monkeypatch.setattr(stripe.Subscription, "cancel", fake_cancel)
    service = StripeBillingService("sk_test_123")

    assert service.cancel_subscription("sub_1")["status"] == "active"
    assert service.cancel_subscription("sub_1", at_period_end=False)["status"] == "canceled"
    assert calls == [("modify", "sub_1", True), ("cancel", "sub_1", None)]
