"""Access decisions for a buyer's order."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from entitlement_api.models.order import Order
from entitlement_api.observability.payments import PaymentObservabilityStore, get_payment_store
from entitlement_api.services.errors import AssetStoreError, InternalInconsistencyError, OrderNotFoundError
from entitlement_api.services.orders.identity import normalize_buyer_identity, parse_order_id
from entitlement_api.services.orders.reconciler import Reconciler, ReconciliationOutcome
from entitlement_api.services.orders.state_machine import OrderState, ensure_consistent
from entitlement_api.services.orders.store import OrderStore
from entitlement_api.services.storage.asset_store import AccessGrant, AssetStore


@dataclass(slots=True, frozen=True)
class PendingSettlement:
    """Payment not confirmed yet. Not an error; carries the status for display."""

    order_id: str
    lifecycle_status: str
    provider_status: str
    reason: str = "not_settled"


@dataclass(slots=True, frozen=True)
class EntitlementDecision:
    order_id: str
    grant: AccessGrant | None = None
    pending: PendingSettlement | None = None

    @property
    def allowed(self) -> bool:
        return self.grant is not None

    def as_dict(self) -> dict[str, Any]:
        if self.grant is not None:
            return {
                "allowed": True,
                "order_id": self.order_id,
                "url": self.grant.url,
                "expires_at": self.grant.expires_at.isoformat(),
            }
        return {
            "allowed": False,
            "order_id": self.order_id,
            "status": self.pending.lifecycle_status,
            "provider_status": self.pending.provider_status,
            "reason": self.pending.reason,
        }


@dataclass(slots=True, frozen=True)
class OrderStatusView:
    order_id: str
    lifecycle_status: str
    provider_status: str
    entitlement_granted: bool


class EntitlementGate:
    """Grant time-limited access once an order is paid.

    Lookups require both the order id and the buyer identity so one buyer
    cannot probe another buyer's order id. An unsettled order is reconciled
    against the provider once per call; provider trouble at that point only
    yields ``PendingSettlement``. Asset store failures after entitlement is
    confirmed propagate as ``AssetStoreError``.
    """

    def __init__(
        self,
        store: OrderStore,
        reconciler: Reconciler,
        asset_store: AssetStore,
        *,
        ttl_seconds: int,
        asset_path: str,
        observability: PaymentObservabilityStore | None = None,
    ) -> None:
        self._store = store
        self._reconciler = reconciler
        self._asset_store = asset_store
        self._ttl_seconds = ttl_seconds
        self._asset_path = asset_path
        self._observability = observability or get_payment_store()

    async def check(self, buyer_identity: str | None, order_id: str | None) -> EntitlementDecision:
        order = await load_buyer_order(
            self._store, buyer_identity, order_id, observability=self._observability
        )

        if not order.entitlement_granted:
            result = await self._reconciler.reconcile(order.id)
            if result.order is not None:
                order = result.order
            if not order.entitlement_granted:
                reason = (
                    "provider_unavailable"
                    if result.outcome == ReconciliationOutcome.UPSTREAM_UNAVAILABLE
                    else "not_settled"
                )
                return EntitlementDecision(
                    order_id=str(order.id),
                    pending=PendingSettlement(
                        order_id=str(order.id),
                        lifecycle_status=order.lifecycle_status.value,
                        provider_status=order.provider_status,
                        reason=reason,
                    ),
                )

        grant = await self._issue_grant(order)
        return EntitlementDecision(order_id=str(order.id), grant=grant)

    async def _issue_grant(self, order: Order) -> AccessGrant:
        try:
            grant = await self._asset_store.create_time_limited_grant(self._asset_path, self._ttl_seconds)
        except AssetStoreError:
            self._observability.record_grant(False)
            logger.warning("Access grant failed for entitled order", order_id=str(order.id))
            raise
        self._observability.record_grant(True)
        logger.info("Access grant issued", order_id=str(order.id), expires_at=grant.expires_at.isoformat())
        return grant


async def load_buyer_order(
    store: OrderStore,
    buyer_identity: str | None,
    order_id: str | None,
    *,
    observability: PaymentObservabilityStore | None = None,
) -> Order:
    """Fetch the order matching both identifiers or raise ``OrderNotFoundError``."""

    identity = normalize_buyer_identity(buyer_identity)
    parsed_id = parse_order_id(order_id)
    order = await store.find_for_buyer(parsed_id, identity)
    if order is None:
        logger.info("No order matches buyer and order id", order_id=str(parsed_id))
        raise OrderNotFoundError(f"Order {parsed_id} not found for buyer")
    try:
        ensure_consistent(OrderState.from_model(order))
    except InternalInconsistencyError:
        (observability or get_payment_store()).record_inconsistency(str(order.id))
        logger.error(
            "Stored order violates entitlement invariant",
            order_id=str(order.id),
            lifecycle_status=order.lifecycle_status.value,
            entitlement_granted=order.entitlement_granted,
        )
        raise
    return order


async def read_order_status(
    store: OrderStore,
    buyer_identity: str | None,
    order_id: str | None,
) -> OrderStatusView:
    """Report the stored status without reconciling or granting."""

    order = await load_buyer_order(store, buyer_identity, order_id)
    return OrderStatusView(
        order_id=str(order.id),
        lifecycle_status=order.lifecycle_status.value,
        provider_status=order.provider_status,
        entitlement_granted=bool(order.entitlement_granted),
    )


__all__ = [
    "EntitlementDecision",
    "EntitlementGate",
    "OrderStatusView",
    "PendingSettlement",
    "load_buyer_order",
    "read_order_status",
]
