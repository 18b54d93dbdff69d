"""Persist payment signals through the entitlement state machine."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger

from entitlement_api.models.order import Order
from entitlement_api.observability.payments import PaymentObservabilityStore, get_payment_store
from entitlement_api.services.errors import InternalInconsistencyError
from entitlement_api.services.orders.state_machine import (
    OrderState,
    PaymentSignal,
    apply_payment_signal,
    statuses_at_or_below,
)
from entitlement_api.services.orders.store import OrderStore

_MAX_APPLY_ATTEMPTS = 3


@dataclass(slots=True)
class SignalOutcome:
    """What happened when a signal was merged into an order."""

    order: Order | None
    transitioned: bool = False
    changed: bool = False
    guarded: bool = False

    @property
    def matched(self) -> bool:
        return self.order is not None


class OrderSignalApplier:
    """Apply payment signals to stored orders without locks.

    Writes are compare-and-set: a write that leaves the order un-granted only
    lands while the row is still un-granted, and a lifecycle change only lands
    while the stored lifecycle is not higher than the target. When a guard
    misses, the row changed underneath us and the signal is re-applied to the
    fresh row.
    """

    def __init__(
        self,
        store: OrderStore,
        *,
        observability: PaymentObservabilityStore | None = None,
    ) -> None:
        self._store = store
        self._observability = observability or get_payment_store()

    async def apply(self, order_id: UUID, signal: PaymentSignal, *, source: str) -> SignalOutcome:
        order = await self._store.find_by_id(order_id)
        if order is None:
            logger.warning(
                "Payment signal references unknown order",
                order_id=str(order_id),
                provider_status=signal.provider_status,
                provider_payment_id=signal.provider_payment_id,
                source=source,
            )
            return SignalOutcome(order=None)

        for _ in range(_MAX_APPLY_ATTEMPTS):
            try:
                result = apply_payment_signal(OrderState.from_model(order), signal)
            except InternalInconsistencyError:
                self._observability.record_inconsistency(str(order_id))
                logger.error(
                    "Stored order violates entitlement invariant",
                    order_id=str(order_id),
                    lifecycle_status=str(order.lifecycle_status),
                    entitlement_granted=order.entitlement_granted,
                    source=source,
                )
                raise

            if not result.changed:
                logger.info(
                    "Payment signal already reflected on order",
                    order_id=str(order_id),
                    provider_status=signal.provider_status,
                    source=source,
                )
                return SignalOutcome(order=order)

            lifecycle_guard = (
                statuses_at_or_below(result.order.lifecycle_status)
                if "lifecycle_status" in result.changes
                else None
            )
            written = await self._store.update(
                order_id,
                result.changes,
                only_if_not_granted=not result.order.entitlement_granted,
                lifecycle_in=lifecycle_guard,
            )
            refreshed = await self._store.find_by_id(order_id)
            if refreshed is None:
                raise InternalInconsistencyError(
                    f"Order {order_id} disappeared while applying a payment signal",
                    order_id=str(order_id),
                )
            if written:
                log = logger.warning if result.guarded else logger.info
                log(
                    "Payment signal applied to order",
                    order_id=str(order_id),
                    provider_status=result.order.provider_status,
                    lifecycle_status=result.order.lifecycle_status.value,
                    entitlement_granted=result.order.entitlement_granted,
                    transitioned=result.transitioned,
                    guarded=result.guarded,
                    source=source,
                )
                return SignalOutcome(
                    order=refreshed,
                    transitioned=result.transitioned,
                    changed=True,
                    guarded=result.guarded,
                )

            logger.info(
                "Order changed concurrently; re-applying payment signal",
                order_id=str(order_id),
                source=source,
            )
            order = refreshed

        raise InternalInconsistencyError(
            f"Order {order_id} kept changing while applying a payment signal",
            order_id=str(order_id),
        )


__all__ = ["OrderSignalApplier", "SignalOutcome"]
