import json
from decimal import Decimal

import httpx
import pytest

from entitlement_api.services.errors import PaymentProviderError
from entitlement_api.services.payments.mercadopago import MercadoPagoProvider


def _provider(handler) -> MercadoPagoProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://mp.test")
    return MercadoPagoProvider(
        access_token="TEST-token",
        access_page_url="https://shop.test/download",
        item_id="ebook",
        item_title="E-book",
        currency="BRL",
        notification_url="https://api.shop.test/api/v1/webhooks/mercadopago",
        http_client=client,
    )


@pytest.mark.asyncio
async def test_create_checkout_builds_preference():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "pref-1", "init_point": "https://mp.test/checkout/pref-1"})

    provider = _provider(handler)
    session = await provider.create_checkout(
        order_id="order-1",
        buyer_identity="a@x.com",
        amount=Decimal("129.00"),
        buyer_name="Ana",
        payment_method="pix",
    )

    assert session.checkout_url == "https://mp.test/checkout/pref-1"
    assert session.checkout_id == "pref-1"
    assert captured["path"] == "/checkout/preferences"
    assert captured["auth"] == "Bearer TEST-token"
    body = captured["body"]
    assert body["external_reference"] == "order-1"
    assert body["auto_return"] == "approved"
    assert body["items"][0]["unit_price"] == 129.0
    assert body["payer"] == {"email": "a@x.com", "name": "Ana"}
    assert body["payment_methods"]["default_payment_method_id"] == "pix"
    assert body["back_urls"]["success"] == "https://shop.test/download?email=a%40x.com&order_id=order-1"
    assert body["notification_url"].endswith("/webhooks/mercadopago")
    await provider.aclose()


@pytest.mark.asyncio
async def test_card_checkout_excludes_pix():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={"id": "pref-2", "init_point": "https://mp.test/checkout/pref-2"})

    await _provider(handler).create_checkout(order_id="o", buyer_identity="a@x.com", amount=Decimal("1"))

    assert bodies[0]["payment_methods"]["excluded_payment_methods"] == [{"id": "pix"}]


@pytest.mark.asyncio
async def test_incomplete_preference_raises():
    provider = _provider(lambda request: httpx.Response(201, json={"id": "pref-3"}))

    with pytest.raises(PaymentProviderError):
        await provider.create_checkout(order_id="o", buyer_identity="a@x.com", amount=Decimal("1"))


@pytest.mark.asyncio
async def test_search_payments_by_external_reference():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json={
                "results": [
                    {
                        "id": 222,
                        "status": "approved",
                        "external_reference": "order-1",
                        "date_created": "2026-01-02T10:00:00.000-03:00",
                    },
                    {"id": 111, "status": "rejected", "external_reference": "order-1", "date_created": None},
                    {"status": "ignored-without-id"},
                ]
            },
        )

    attempts = await _provider(handler).find_payments_by_external_ref("order-1")

    assert captured["params"] == {
        "external_reference": "order-1",
        "sort": "date_created",
        "criteria": "desc",
        "limit": "10",
    }
    assert [attempt.payment_id for attempt in attempts] == ["222", "111"]
    assert attempts[0].status == "approved"
    assert attempts[0].created_at.utcoffset().total_seconds() == -3 * 3600
    assert attempts[1].created_at is None


@pytest.mark.asyncio
async def test_find_payment_by_id_handles_missing_payment():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/payments/404":
            return httpx.Response(404, json={"message": "not found"})
        return httpx.Response(200, json={"id": 5, "status": "in_process", "external_reference": "order-1"})

    provider = _provider(handler)

    assert await provider.find_payment_by_id("404") is None
    attempt = await provider.find_payment_by_id("5")
    assert attempt.status == "in_process"
    assert attempt.external_reference == "order-1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json={"unexpected": True}),
    ],
)
async def test_search_failures_raise_provider_error(response):
    provider = _provider(lambda request: response)

    with pytest.raises(PaymentProviderError):
        await provider.find_payments_by_external_ref("order-1")


@pytest.mark.asyncio
async def test_transport_error_raises_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(PaymentProviderError):
        await _provider(handler).find_payment_by_id("1")


def test_parse_notification_variants():
    provider = _provider(lambda request: httpx.Response(200))

    ipn = provider.parse_notification({"topic": "payment", "id": "123"}, None)
    webhook = provider.parse_notification({}, {"type": "payment", "data": {"id": 456}})
    resource = provider.parse_notification({}, {"resource": "https://api.mercadopago.com/v1/payments/789"})
    merchant_order = provider.parse_notification({"topic": "merchant_order", "id": "1"}, None)

    assert (ipn.topic, ipn.payment_id) == ("payment", "123")
    assert (webhook.topic, webhook.payment_id) == ("payment", "456")
    assert (resource.topic, resource.payment_id) == ("payment", "789")
    assert merchant_order.actionable is False


def test_missing_token_is_rejected():
    with pytest.raises(ValueError):
        MercadoPagoProvider(
            access_token="",
            access_page_url="https://shop.test/download",
            item_id="ebook",
            item_title="E-book",
            currency="BRL",
        )
