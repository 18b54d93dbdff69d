"""Mercado Pago adapter over its REST API."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping

import httpx
from loguru import logger

from entitlement_api.services.errors import PaymentProviderError
from entitlement_api.services.payments.base import (
    CheckoutSession,
    PaymentAttempt,
    PaymentNotification,
    build_access_url,
    parse_timestamp,
    to_plain_payload,
)

_SEARCH_LIMIT = 10


class MercadoPagoProvider:
    """Hosted checkout (preferences) and payment lookups against Mercado Pago."""

    name = "mercadopago"

    def __init__(
        self,
        *,
        access_token: str,
        access_page_url: str,
        item_id: str,
        item_title: str,
        currency: str,
        notification_url: str | None = None,
        base_url: str = "https://api.mercadopago.com",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not access_token:
            raise ValueError("Mercado Pago access token is not configured")
        self._access_page_url = access_page_url
        self._item_id = item_id
        self._item_title = item_title
        self._currency = currency
        self._notification_url = notification_url
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_checkout(
        self,
        *,
        order_id: str,
        buyer_identity: str,
        amount: Decimal,
        buyer_name: str | None = None,
        payment_method: str | None = None,
    ) -> CheckoutSession:
        return_url = build_access_url(self._access_page_url, order_id=order_id, buyer_identity=buyer_identity)
        preference: dict[str, Any] = {
            "external_reference": order_id,
            "back_urls": {"success": return_url, "pending": return_url, "failure": return_url},
            "auto_return": "approved",
            "items": [
                {
                    "id": self._item_id,
                    "title": self._item_title,
                    "quantity": 1,
                    "unit_price": float(amount),
                    "currency_id": self._currency,
                }
            ],
            "payer": {"email": buyer_identity},
            "payment_methods": _payment_method_rules(payment_method),
        }
        if buyer_name:
            preference["payer"]["name"] = buyer_name
        if self._notification_url:
            preference["notification_url"] = self._notification_url

        body = await self._request("POST", "/checkout/preferences", json=preference)
        if body is None:
            raise PaymentProviderError("Mercado Pago rejected the checkout preference", status_code=404)
        checkout_url = body.get("init_point")
        preference_id = body.get("id")
        if not checkout_url or not preference_id:
            raise PaymentProviderError("Mercado Pago returned an incomplete checkout preference")

        logger.info(
            "Created Mercado Pago checkout preference",
            order_id=order_id,
            preference_id=str(preference_id),
        )
        return CheckoutSession(
            checkout_url=str(checkout_url),
            external_reference=order_id,
            checkout_id=str(preference_id),
            raw=to_plain_payload(body),
        )

    async def find_payments_by_external_ref(self, external_reference: str) -> list[PaymentAttempt]:
        body = await self._request(
            "GET",
            "/v1/payments/search",
            params={
                "external_reference": external_reference,
                "sort": "date_created",
                "criteria": "desc",
                "limit": _SEARCH_LIMIT,
            },
        )
        if body is None:
            return []
        results = body.get("results")
        if not isinstance(results, list):
            raise PaymentProviderError("Mercado Pago payment search returned no results list")
        attempts = []
        for payment in results:
            attempt = _to_attempt(payment)
            if attempt is not None:
                attempts.append(attempt)
        return attempts

    async def find_payment_by_id(self, payment_id: str) -> PaymentAttempt | None:
        body = await self._request("GET", f"/v1/payments/{payment_id}")
        if body is None:
            return None
        return _to_attempt(body)

    def parse_notification(
        self,
        query: Mapping[str, Any],
        body: Mapping[str, Any] | None,
    ) -> PaymentNotification:
        """Extract the topic and payment id from either notification flavour.

        Legacy IPN calls put ``topic`` and ``id`` in the query string; webhook
        calls post ``{"type": "payment", "data": {"id": ...}}``.
        """

        body = body or {}
        topic = query.get("topic") or query.get("type") or body.get("type") or body.get("topic")
        resource = body.get("resource")
        if not topic and isinstance(resource, str) and "payment" in resource:
            topic = "payment"

        data = body.get("data") if isinstance(body.get("data"), Mapping) else {}
        payment_id = query.get("id") or query.get("data.id") or data.get("id") or body.get("id")
        if not payment_id and isinstance(resource, str) and resource.rstrip("/").split("/")[-1].isdigit():
            payment_id = resource.rstrip("/").split("/")[-1]

        return PaymentNotification(
            provider=self.name,
            topic=str(topic) if topic else None,
            payment_id=str(payment_id) if payment_id and topic == "payment" else None,
            raw={"query": dict(query), "body": to_plain_payload(body)},
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any] | None:
        try:
            response = await self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            raise PaymentProviderError(f"Mercado Pago request failed: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning(
                "Mercado Pago returned an error response",
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise PaymentProviderError(
                f"Mercado Pago responded with {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise PaymentProviderError("Mercado Pago returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise PaymentProviderError("Mercado Pago returned an unexpected body")
        return payload


def _payment_method_rules(payment_method: str | None) -> dict[str, Any]:
    if payment_method == "pix":
        return {
            "default_payment_method_id": "pix",
            "excluded_payment_types": [{"id": "ticket"}],
        }
    return {
        "excluded_payment_types": [{"id": "ticket"}],
        "excluded_payment_methods": [{"id": "pix"}],
    }


def _to_attempt(payment: Any) -> PaymentAttempt | None:
    if not isinstance(payment, Mapping) or payment.get("id") is None:
        return None
    external_reference = payment.get("external_reference")
    return PaymentAttempt(
        payment_id=str(payment["id"]),
        status=str(payment.get("status") or "pending").lower(),
        external_reference=str(external_reference) if external_reference else None,
        created_at=parse_timestamp(payment.get("date_created")),
        raw=to_plain_payload(payment),
    )


__all__ = ["MercadoPagoProvider"]
