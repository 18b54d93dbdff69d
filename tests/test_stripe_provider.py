from decimal import Decimal

import pytest
import stripe

from entitlement_api.services.errors import PaymentProviderError
from entitlement_api.services.payments.stripe_provider import (
    StripeProvider,
    StripeSignatureError,
    map_intent_status,
)


def _provider() -> StripeProvider:
    return StripeProvider(
        secret_key="sk_test_123",
        webhook_secret="whsec_test",
        access_page_url="https://shop.test/download",
        item_title="E-book",
        currency="BRL",
    )


def _event(event_type: str, obj: dict) -> dict:
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        ("succeeded", "approved"),
        ("processing", "in_process"),
        ("canceled", "cancelled"),
        ("requires_payment_method", "pending"),
        ("requires_action", "pending"),
        (None, "pending"),
    ],
)
def test_map_intent_status(status, expected):
    assert map_intent_status(status) == expected


@pytest.mark.asyncio
async def test_create_checkout_session(monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

    session = await _provider().create_checkout(
        order_id="order-1",
        buyer_identity="a@x.com",
        amount=Decimal("129.00"),
    )

    assert session.checkout_url == "https://checkout.stripe.test/cs_test_1"
    assert session.checkout_id == "cs_test_1"
    assert captured["client_reference_id"] == "order-1"
    assert captured["metadata"] == {"order_id": "order-1"}
    assert captured["payment_intent_data"] == {"metadata": {"order_id": "order-1"}}
    assert captured["line_items"][0]["price_data"]["unit_amount"] == 12900
    assert captured["line_items"][0]["price_data"]["currency"] == "brl"
    assert captured["payment_method_types"] == ["card"]


@pytest.mark.asyncio
async def test_stripe_errors_become_provider_errors(monkeypatch):
    def failing_search(**kwargs):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.PaymentIntent, "search", failing_search)

    with pytest.raises(PaymentProviderError):
        await _provider().find_payments_by_external_ref("order-1")


@pytest.mark.asyncio
async def test_search_by_metadata(monkeypatch):
    captured = {}

    def fake_search(**kwargs):
        captured.update(kwargs)
        return {
            "data": [
                {"id": "pi_old", "status": "canceled", "created": 1_700_000_000, "metadata": {"order_id": "order-1"}},
                {"id": "pi_new", "status": "succeeded", "created": 1_700_000_600, "metadata": {"order_id": "order-1"}},
            ]
        }

    monkeypatch.setattr(stripe.PaymentIntent, "search", fake_search)

    attempts = await _provider().find_payments_by_external_ref("order-1")

    assert captured["query"] == "metadata['order_id']:'order-1'"
    assert [attempt.payment_id for attempt in attempts] == ["pi_new", "pi_old"]
    assert attempts[0].status == "approved"
    assert attempts[0].external_reference == "order-1"


@pytest.mark.asyncio
async def test_retrieve_missing_intent_returns_none(monkeypatch):
    def fake_retrieve(payment_id):
        raise stripe.InvalidRequestError("No such payment_intent", param="id", http_status=404)

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake_retrieve)

    assert await _provider().find_payment_by_id("pi_missing") is None


def test_payment_intent_event_carries_attempt(monkeypatch):
    intent = {"id": "pi_1", "status": "succeeded", "created": 1_700_000_000, "metadata": {"order_id": "order-1"}}
    monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig, secret: _event("payment_intent.succeeded", intent))

    notification = _provider().construct_notification(b"{}", "t=1,v1=abc")

    assert notification.topic == "payment_intent.succeeded"
    assert notification.attempt.status == "approved"
    assert notification.attempt.external_reference == "order-1"


def test_payment_failed_event_is_rejected(monkeypatch):
    intent = {"id": "pi_1", "status": "requires_payment_method", "metadata": {"order_id": "order-1"}}
    monkeypatch.setattr(
        stripe.Webhook, "construct_event", lambda payload, sig, secret: _event("payment_intent.payment_failed", intent)
    )

    notification = _provider().construct_notification(b"{}", "sig")

    assert notification.attempt.status == "rejected"


def test_refund_event_without_metadata_needs_lookup(monkeypatch):
    charge = {"id": "ch_1", "payment_intent": "pi_1", "metadata": {}}
    monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig, secret: _event("charge.refunded", charge))

    notification = _provider().construct_notification(b"{}", "sig")

    assert notification.payment_id == "pi_1"
    assert notification.attempt.status == "refunded"
    assert notification.attempt.external_reference is None


def test_checkout_session_event_defers_to_intent_lookup(monkeypatch):
    session = {"id": "cs_1", "payment_intent": "pi_9", "client_reference_id": "order-1"}
    monkeypatch.setattr(
        stripe.Webhook, "construct_event", lambda payload, sig, secret: _event("checkout.session.completed", session)
    )

    notification = _provider().construct_notification(b"{}", "sig")

    assert notification.payment_id == "pi_9"
    assert notification.attempt is None
    assert notification.actionable is True


def test_unrelated_event_is_not_actionable(monkeypatch):
    monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig, secret: _event("customer.created", {"id": "cus_1"}))

    assert _provider().construct_notification(b"{}", "sig").actionable is False


def test_invalid_signature_raises(monkeypatch):
    def reject(payload, sig, secret):
        raise stripe.SignatureVerificationError("bad signature", sig)

    monkeypatch.setattr(stripe.Webhook, "construct_event", reject)

    with pytest.raises(StripeSignatureError):
        _provider().construct_notification(b"{}", "sig")
    with pytest.raises(StripeSignatureError):
        _provider().construct_notification(b"{}", None)
