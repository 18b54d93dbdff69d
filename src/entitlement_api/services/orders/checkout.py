"""Purchase intent handling: dedup the buyer, then open or reuse a provider checkout."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from loguru import logger

from entitlement_api.models.order import Order
from entitlement_api.observability.payments import PaymentObservabilityStore, get_payment_store
from entitlement_api.services.errors import PaymentProviderError
from entitlement_api.services.orders.deduplicator import IntentDeduplicator, IntentOutcome
from entitlement_api.services.orders.store import OrderStore
from entitlement_api.services.payments.base import DEFAULT_PAYMENT_METHOD, PaymentProvider, build_access_url


@dataclass(slots=True)
class CheckoutResult:
    order: Order
    outcome: IntentOutcome
    access_url: str
    checkout_url: str | None = None


class CheckoutService:
    """Create checkouts for buyers without duplicating pending orders."""

    def __init__(
        self,
        store: OrderStore,
        provider: PaymentProvider,
        *,
        amount: Decimal,
        access_page_url: str,
        observability: PaymentObservabilityStore | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._amount = amount
        self._access_page_url = access_page_url
        self._deduplicator = IntentDeduplicator(store)
        self._observability = observability or get_payment_store()

    async def start_checkout(
        self,
        buyer_identity: str,
        *,
        buyer_name: str | None = None,
        payment_method: str | None = None,
    ) -> CheckoutResult:
        resolution = await self._deduplicator.resolve(buyer_identity, buyer_name=buyer_name)
        order = resolution.order
        access_url = build_access_url(
            self._access_page_url,
            order_id=str(order.id),
            buyer_identity=order.buyer_identity,
        )

        if resolution.already_entitled:
            self._observability.record_checkout(resolution.outcome.value, str(order.id))
            return CheckoutResult(order=order, outcome=resolution.outcome, access_url=access_url)

        # A reused pending order keeps its checkout only while the buyer asks
        # for the same payment method; otherwise a new one replaces it.
        method = payment_method or DEFAULT_PAYMENT_METHOD
        if order.checkout_url and order.checkout_payment_method == method:
            self._observability.record_checkout(resolution.outcome.value, str(order.id))
            return CheckoutResult(
                order=order,
                outcome=resolution.outcome,
                access_url=access_url,
                checkout_url=order.checkout_url,
            )

        if order.checkout_url:
            logger.info(
                "Replacing checkout for a different payment method",
                order_id=str(order.id),
                previous_method=order.checkout_payment_method,
                payment_method=method,
            )

        try:
            session = await self._provider.create_checkout(
                order_id=str(order.id),
                buyer_identity=order.buyer_identity,
                amount=self._amount,
                buyer_name=buyer_name or order.buyer_name,
                payment_method=method,
            )
        except PaymentProviderError as exc:
            self._observability.record_checkout_failure(str(exc))
            logger.warning(
                "Payment provider failed to create checkout",
                order_id=str(order.id),
                provider=self._provider.name,
                error=str(exc),
            )
            raise

        await self._store.update(
            order.id,
            {
                "provider_checkout_id": session.checkout_id,
                "checkout_url": session.checkout_url,
                "checkout_payment_method": method,
            },
        )
        self._observability.record_checkout(resolution.outcome.value, str(order.id))
        logger.info(
            "Checkout ready",
            order_id=str(order.id),
            outcome=resolution.outcome.value,
            provider=self._provider.name,
        )
        return CheckoutResult(
            order=order,
            outcome=resolution.outcome,
            access_url=access_url,
            checkout_url=session.checkout_url,
        )


__all__ = ["CheckoutResult", "CheckoutService"]
