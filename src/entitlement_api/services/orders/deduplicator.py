"""Decide whether a purchase request reuses an order or opens a new one."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from loguru import logger

from entitlement_api.models.order import LifecycleStatusEnum, Order
from entitlement_api.services.errors import InternalInconsistencyError, PendingOrderConflictError
from entitlement_api.services.orders.identity import normalize_buyer_identity
from entitlement_api.services.orders.store import OrderStore


class IntentOutcome(str, Enum):
    CREATED = "created"
    REUSED = "reused"
    ALREADY_ENTITLED = "already_entitled"


@dataclass(slots=True)
class IntentResolution:
    order: Order
    outcome: IntentOutcome

    @property
    def already_entitled(self) -> bool:
        return self.outcome == IntentOutcome.ALREADY_ENTITLED


class IntentDeduplicator:
    """Keep each buyer at no more than one pending order."""

    def __init__(self, store: OrderStore) -> None:
        self._store = store

    async def resolve(self, buyer_identity: str, *, buyer_name: str | None = None) -> IntentResolution:
        identity = normalize_buyer_identity(buyer_identity)

        existing = await self._find_existing(identity)
        if existing is not None:
            return existing

        try:
            order = await self._store.create_order(identity, buyer_name=buyer_name)
        except PendingOrderConflictError:
            # A concurrent request won the insert; converge on its order.
            existing = await self._find_existing(identity)
            if existing is None:
                raise InternalInconsistencyError(
                    f"Pending order conflict for {identity} but no pending or entitled order found"
                )
            return existing

        return IntentResolution(order=order, outcome=IntentOutcome.CREATED)

    async def _find_existing(self, identity: str) -> IntentResolution | None:
        entitled = await self._store.find_latest(identity, entitled=True)
        if entitled is not None:
            logger.info(
                "Buyer already entitled; skipping checkout",
                buyer_identity=identity,
                order_id=str(entitled.id),
            )
            return IntentResolution(order=entitled, outcome=IntentOutcome.ALREADY_ENTITLED)

        pending = await self._store.find_latest(identity, lifecycle_status=LifecycleStatusEnum.PENDING)
        if pending is not None:
            logger.info(
                "Reusing pending order",
                buyer_identity=identity,
                order_id=str(pending.id),
            )
            return IntentResolution(order=pending, outcome=IntentOutcome.REUSED)

        return None


__all__ = ["IntentDeduplicator", "IntentOutcome", "IntentResolution"]
