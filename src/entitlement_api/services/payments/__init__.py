"""Payment provider adapters."""

from entitlement_api.core.settings import Settings

from .base import CheckoutSession, PaymentAttempt, PaymentNotification, PaymentProvider
from .mercadopago import MercadoPagoProvider
from .stripe_provider import StripeProvider, StripeSignatureError


def build_payment_provider(settings: Settings) -> PaymentProvider:
    """Instantiate the configured provider adapter."""

    if settings.payment_provider == "stripe":
        return StripeProvider(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            access_page_url=settings.access_page_url,
            item_title=settings.asset_title,
            currency=settings.asset_currency,
        )
    return MercadoPagoProvider(
        access_token=settings.mercadopago_access_token,
        access_page_url=settings.access_page_url,
        item_id=settings.asset_sku,
        item_title=settings.asset_title,
        currency=settings.asset_currency,
        notification_url=settings.mercadopago_notification_url,
        base_url=settings.mercadopago_api_base_url,
        timeout=settings.payment_provider_timeout_seconds,
    )


__all__ = [
    "CheckoutSession",
    "MercadoPagoProvider",
    "PaymentAttempt",
    "PaymentNotification",
    "PaymentProvider",
    "StripeProvider",
    "StripeSignatureError",
    "build_payment_provider",
]
