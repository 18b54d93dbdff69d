import json
from typing import Any, Dict

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from loguru import logger

from entitlement_api.api.dependencies.services import get_optional_payment_provider, get_order_store
from entitlement_api.observability.payments import get_payment_store
from entitlement_api.services.orders.store import OrderStore
from entitlement_api.services.payments import (
    MercadoPagoProvider,
    PaymentProvider,
    StripeProvider,
    StripeSignatureError,
)
from entitlement_api.services.payments.notifications import PushNotificationReceiver


router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_ACK: Dict[str, Any] = {"ok": True}


def _decode_json(raw: bytes) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except ValueError:
        return {}
    return decoded if isinstance(decoded, dict) else {}


@router.api_route("/mercadopago", methods=["GET", "POST"])
async def handle_mercadopago_notification(
    request: Request,
    store: OrderStore = Depends(get_order_store),
    provider: PaymentProvider | None = Depends(get_optional_payment_provider),
) -> Dict[str, Any]:
    """Receive Mercado Pago IPN/webhook calls. Always acknowledged with 200."""

    if not isinstance(provider, MercadoPagoProvider):
        logger.warning("Mercado Pago notification received but provider is not active")
        get_payment_store().record_notification("mercadopago", "ignored", None)
        return _ACK

    try:
        body = _decode_json(await request.body())
        notification = provider.parse_notification(dict(request.query_params), body)
    except Exception as exc:
        logger.exception("Unreadable Mercado Pago notification", error=str(exc))
        get_payment_store().record_notification(None, "failed", None, str(exc))
        return _ACK

    receipt = await PushNotificationReceiver(store, provider).receive(notification)
    logger.info(
        "Mercado Pago notification handled",
        topic=notification.topic,
        payment_id=notification.payment_id,
        outcome=receipt.outcome.value,
    )
    return _ACK


@router.post("/stripe")
async def handle_stripe_notification(
    request: Request,
    stripe_signature: str | None = Header(None, alias="stripe-signature"),
    store: OrderStore = Depends(get_order_store),
    provider: PaymentProvider | None = Depends(get_optional_payment_provider),
) -> Dict[str, Any]:
    """Receive Stripe events.

    Only an invalid signature is refused, since such a delivery did not come
    from Stripe; every verified event is acknowledged whatever happens to it.
    A missing webhook secret is logged and counted as a failure but still
    acknowledged, so Stripe does not keep retrying.
    """

    if not isinstance(provider, StripeProvider):
        logger.warning("Stripe notification received but provider is not active")
        get_payment_store().record_notification("stripe", "ignored", None)
        return _ACK

    if not provider.webhook_configured:
        logger.error("Stripe webhook secret is not configured; dropping delivery")
        get_payment_store().record_notification("stripe", "failed", None, "webhook_secret_not_configured")
        return _ACK

    payload = await request.body()
    try:
        notification = provider.construct_notification(payload, stripe_signature)
    except StripeSignatureError as exc:
        logger.warning("Invalid Stripe webhook signature", error=str(exc))
        get_payment_store().record_notification("signature_error", "failed", None, "signature_verification_failed")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature") from exc

    receipt = await PushNotificationReceiver(store, provider).receive(notification)
    logger.info(
        "Stripe notification handled",
        topic=notification.topic,
        payment_id=notification.payment_id,
        outcome=receipt.outcome.value,
    )
    return _ACK
