"""Stripe adapter built on the official SDK."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Mapping

import stripe
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

_INTENT_STATUS_MAP = {
    "succeeded": "approved",
    "processing": "in_process",
    "canceled": "cancelled",
    "requires_payment_method": "pending",
    "requires_confirmation": "pending",
    "requires_action": "pending",
    "requires_capture": "pending",
}

# Events whose status is taken from the event itself rather than the intent.
_EVENT_STATUS_OVERRIDES = {
    "payment_intent.payment_failed": "rejected",
    "charge.refunded": "refunded",
    "charge.dispute.created": "charged_back",
}

_CHECKOUT_SESSION_EVENTS = frozenset(
    {
        "checkout.session.completed",
        "checkout.session.async_payment_succeeded",
        "checkout.session.async_payment_failed",
    }
)


class StripeSignatureError(ValueError):
    """Raised when a webhook payload does not carry a valid Stripe signature."""


def map_intent_status(status: str | None) -> str:
    return _INTENT_STATUS_MAP.get(str(status or "").lower(), "pending")


def _as_mapping(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, Mapping):
        return dict(obj)
    return {}


class StripeProvider:
    """Stripe Checkout plus PaymentIntent lookups.

    The SDK is synchronous; every call runs in a worker thread.
    """

    name = "stripe"

    def __init__(
        self,
        *,
        secret_key: str,
        webhook_secret: str,
        access_page_url: str,
        item_title: str,
        currency: str,
    ) -> None:
        if not secret_key:
            raise ValueError("Stripe secret key is not configured")
        stripe.api_key = secret_key
        self._webhook_secret = webhook_secret
        self._access_page_url = access_page_url
        self._item_title = item_title
        self._currency = currency.lower()

    @property
    def webhook_configured(self) -> bool:
        return bool(self._webhook_secret)

    async def aclose(self) -> None:
        return None

    async def create_checkout(
        self,
        *,
        order_id: str,
        buyer_identity: str,
        amount: Decimal,
        buyer_name: str | None = None,
        payment_method: str | None = None,
    ) -> CheckoutSession:
        """Create a Stripe Checkout session for one order.

        Args:
            order_id: Internal order identifier, stored as ``client_reference_id``
                and as ``metadata.order_id`` on both the session and the intent.
            buyer_identity: Normalised buyer e-mail used to prefill checkout.
            amount: Price in major currency units.
            buyer_name: Optional display name, kept in metadata.
            payment_method: ``"pix"`` restricts checkout to Pix, anything else to cards.

        Returns:
            The hosted checkout URL and session id.

        Raises:
            PaymentProviderError: If Stripe rejects the request or is unreachable.
        """

        return_url = build_access_url(self._access_page_url, order_id=order_id, buyer_identity=buyer_identity)
        metadata = {"order_id": order_id}
        if buyer_name:
            metadata["buyer_name"] = buyer_name
        session_data: dict[str, Any] = {
            "mode": "payment",
            "client_reference_id": order_id,
            "customer_email": buyer_identity,
            "line_items": [
                {
                    "price_data": {
                        "currency": self._currency,
                        "unit_amount": int((amount * 100).to_integral_value()),
                        "product_data": {"name": self._item_title},
                    },
                    "quantity": 1,
                }
            ],
            "payment_method_types": ["pix"] if payment_method == "pix" else ["card"],
            "success_url": return_url,
            "cancel_url": return_url,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }

        session = await self._call(stripe.checkout.Session.create, **session_data)
        body = _as_mapping(session)
        if not body.get("url") or not body.get("id"):
            raise PaymentProviderError("Stripe returned an incomplete checkout session")

        logger.info("Created Stripe checkout session", session_id=body["id"], order_id=order_id)
        return CheckoutSession(
            checkout_url=str(body["url"]),
            external_reference=order_id,
            checkout_id=str(body["id"]),
            raw=to_plain_payload(body),
        )

    async def find_payments_by_external_ref(self, external_reference: str) -> list[PaymentAttempt]:
        result = await self._call(
            stripe.PaymentIntent.search,
            query=f"metadata['order_id']:'{external_reference}'",
            limit=_SEARCH_LIMIT,
        )
        data = _as_mapping(result).get("data")
        if not isinstance(data, list):
            raise PaymentProviderError("Stripe payment search returned no data list")
        attempts = [_intent_to_attempt(_as_mapping(intent)) for intent in data]
        attempts = [attempt for attempt in attempts if attempt is not None]
        # Stripe search does not guarantee ordering.
        attempts.sort(key=lambda attempt: attempt.created_at.timestamp() if attempt.created_at else 0, reverse=True)
        return attempts

    async def find_payment_by_id(self, payment_id: str) -> PaymentAttempt | None:
        try:
            intent = await asyncio.to_thread(stripe.PaymentIntent.retrieve, payment_id)
        except stripe.InvalidRequestError as exc:
            if getattr(exc, "http_status", None) == 404:
                return None
            raise PaymentProviderError(f"Stripe request failed: {exc}", status_code=exc.http_status) from exc
        except stripe.StripeError as exc:
            raise PaymentProviderError(
                f"Stripe request failed: {exc}",
                status_code=getattr(exc, "http_status", None),
            ) from exc
        return _intent_to_attempt(_as_mapping(intent))

    def construct_notification(self, payload: bytes, signature: str | None) -> PaymentNotification:
        """Verify a webhook delivery and normalise it.

        Raises:
            StripeSignatureError: If the signature header is missing or invalid.
        """

        if not signature or not self._webhook_secret:
            raise StripeSignatureError("Missing Stripe signature or webhook secret")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise StripeSignatureError(str(exc)) from exc

        body = _as_mapping(event)
        event_type = str(body.get("type") or "")
        obj = _as_mapping((body.get("data") or {}).get("object"))
        raw = to_plain_payload(body)

        if event_type.startswith("payment_intent."):
            attempt = _intent_to_attempt(obj)
            if attempt is not None and event_type in _EVENT_STATUS_OVERRIDES:
                attempt.status = _EVENT_STATUS_OVERRIDES[event_type]
            return PaymentNotification(
                provider=self.name,
                topic=event_type,
                payment_id=attempt.payment_id if attempt else None,
                attempt=attempt,
                raw=raw,
            )

        if event_type in ("charge.refunded", "charge.dispute.created"):
            intent_id = obj.get("payment_intent")
            metadata = obj.get("metadata") or {}
            attempt = None
            if intent_id:
                attempt = PaymentAttempt(
                    payment_id=str(intent_id),
                    status=_EVENT_STATUS_OVERRIDES[event_type],
                    external_reference=metadata.get("order_id"),
                    created_at=parse_timestamp(obj.get("created")),
                    raw=to_plain_payload(obj),
                )
            return PaymentNotification(
                provider=self.name,
                topic=event_type,
                payment_id=str(intent_id) if intent_id else None,
                attempt=attempt,
                raw=raw,
            )

        if event_type in _CHECKOUT_SESSION_EVENTS:
            intent_id = obj.get("payment_intent")
            return PaymentNotification(
                provider=self.name,
                topic=event_type,
                payment_id=str(intent_id) if intent_id else None,
                raw=raw,
            )

        return PaymentNotification(provider=self.name, topic=event_type or None, raw=raw)

    async def _call(self, func: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, **kwargs)
        except stripe.StripeError as exc:
            logger.warning("Stripe request failed", error=str(exc))
            raise PaymentProviderError(
                f"Stripe request failed: {exc}",
                status_code=getattr(exc, "http_status", None),
            ) from exc


def _intent_to_attempt(intent: Mapping[str, Any]) -> PaymentAttempt | None:
    if not intent.get("id"):
        return None
    metadata = intent.get("metadata") or {}
    return PaymentAttempt(
        payment_id=str(intent["id"]),
        status=map_intent_status(intent.get("status")),
        external_reference=metadata.get("order_id"),
        created_at=parse_timestamp(intent.get("created")),
        raw=to_plain_payload(intent),
    )


__all__ = ["StripeProvider", "StripeSignatureError", "map_intent_status"]
