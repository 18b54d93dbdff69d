"""Pull-based reconciliation of one order against the payment provider."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from loguru import logger

from entitlement_api.models.order import Order
from entitlement_api.observability.payments import PaymentObservabilityStore, get_payment_store
from entitlement_api.services.errors import PaymentProviderError
from entitlement_api.services.orders.convergence import OrderSignalApplier
from entitlement_api.services.orders.store import OrderStore
from entitlement_api.services.payments.base import PaymentProvider, select_latest_attempt


class ReconciliationOutcome(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_GRANTED = "already_granted"
    NO_PAYMENTS = "no_payments"
    APPLIED = "applied"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"


@dataclass(slots=True)
class ReconciliationResult:
    outcome: ReconciliationOutcome
    order: Order | None = None
    provider_payment_id: str | None = None
    provider_status: str | None = None
    transitioned: bool = False
    error: str | None = None

    @property
    def entitlement_granted(self) -> bool:
        return bool(self.order is not None and self.order.entitlement_granted)


class Reconciler:
    """Ask the provider for the latest payment attempt of an order and apply it.

    A provider outage never touches stored state; the caller learns about it
    through ``ReconciliationOutcome.UPSTREAM_UNAVAILABLE``.
    """

    def __init__(
        self,
        store: OrderStore,
        provider: PaymentProvider,
        *,
        applier: OrderSignalApplier | None = None,
        observability: PaymentObservabilityStore | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._observability = observability or get_payment_store()
        self._applier = applier or OrderSignalApplier(store, observability=self._observability)

    async def reconcile(self, order_id: UUID) -> ReconciliationResult:
        result = await self._reconcile(order_id)
        self._observability.record_reconciliation(result.outcome.value)
        return result

    async def _reconcile(self, order_id: UUID) -> ReconciliationResult:
        order = await self._store.find_by_id(order_id)
        if order is None:
            return ReconciliationResult(outcome=ReconciliationOutcome.NOT_FOUND)
        if order.entitlement_granted:
            return ReconciliationResult(outcome=ReconciliationOutcome.ALREADY_GRANTED, order=order)

        try:
            attempts = await self._provider.find_payments_by_external_ref(str(order_id))
        except PaymentProviderError as exc:
            logger.warning(
                "Payment provider unavailable during reconciliation",
                order_id=str(order_id),
                provider=self._provider.name,
                error=str(exc),
            )
            return ReconciliationResult(
                outcome=ReconciliationOutcome.UPSTREAM_UNAVAILABLE,
                order=order,
                error=str(exc),
            )

        latest = select_latest_attempt(attempts)
        if latest is None:
            logger.info(
                "No payment attempts found for order",
                order_id=str(order_id),
                provider=self._provider.name,
            )
            return ReconciliationResult(outcome=ReconciliationOutcome.NO_PAYMENTS, order=order)

        outcome = await self._applier.apply(order_id, latest.to_signal(), source="reconciliation")
        return ReconciliationResult(
            outcome=ReconciliationOutcome.APPLIED,
            order=outcome.order,
            provider_payment_id=latest.payment_id,
            provider_status=latest.status,
            transitioned=outcome.transitioned,
        )


__all__ = ["Reconciler", "ReconciliationOutcome", "ReconciliationResult"]
