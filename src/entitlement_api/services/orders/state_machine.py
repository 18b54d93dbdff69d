"""Entitlement state machine.

Maps payment-provider status signals onto the internal order lifecycle. The
functions here are pure: they take an ``OrderState`` snapshot and return the
state the order should be persisted with. Persistence and concurrency control
live in ``convergence``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping
from uuid import UUID

from entitlement_api.models.order import LifecycleStatusEnum, Order
from entitlement_api.services.errors import InternalInconsistencyError


APPROVED_PROVIDER_STATUSES: frozenset[str] = frozenset({"approved"})
CANCELED_PROVIDER_STATUSES: frozenset[str] = frozenset({"cancelled", "rejected", "refunded", "charged_back"})

# Lifecycle only ever moves up this ladder.
_LIFECYCLE_RANK: dict[LifecycleStatusEnum, int] = {
    LifecycleStatusEnum.PENDING: 0,
    LifecycleStatusEnum.CANCELED: 1,
    LifecycleStatusEnum.APPROVED: 2,
}


@dataclass(frozen=True, slots=True)
class OrderState:
    """Immutable view of the entitlement-relevant columns of an order."""

    id: UUID
    buyer_identity: str
    lifecycle_status: LifecycleStatusEnum
    provider_status: str
    entitlement_granted: bool
    provider_payment_id: str | None = None
    provider_raw_payload: Mapping[str, Any] | None = None

    @classmethod
    def from_model(cls, order: Order) -> "OrderState":
        return cls(
            id=order.id,
            buyer_identity=order.buyer_identity,
            lifecycle_status=LifecycleStatusEnum(order.lifecycle_status),
            provider_status=order.provider_status,
            entitlement_granted=bool(order.entitlement_granted),
            provider_payment_id=order.provider_payment_id,
            provider_raw_payload=order.provider_raw_payload,
        )


@dataclass(frozen=True, slots=True)
class PaymentSignal:
    """A provider status observation, already normalised at the provider boundary."""

    provider_status: str
    provider_payment_id: str | None = None
    raw_payload: Mapping[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class TransitionResult:
    order: OrderState
    transitioned: bool
    changes: dict[str, Any] = field(default_factory=dict)
    guarded: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def normalize_provider_status(value: object) -> str:
    status = str(value or "").strip().lower()
    return status or "pending"


def map_provider_status(provider_status: str) -> LifecycleStatusEnum:
    """Return the lifecycle status a provider status maps to."""

    status = normalize_provider_status(provider_status)
    if status in APPROVED_PROVIDER_STATUSES:
        return LifecycleStatusEnum.APPROVED
    if status in CANCELED_PROVIDER_STATUSES:
        return LifecycleStatusEnum.CANCELED
    return LifecycleStatusEnum.PENDING


def statuses_at_or_below(status: LifecycleStatusEnum) -> tuple[LifecycleStatusEnum, ...]:
    rank = _LIFECYCLE_RANK[status]
    return tuple(candidate for candidate, value in _LIFECYCLE_RANK.items() if value <= rank)


def ensure_consistent(order: OrderState) -> None:
    """Raise when the stored entitlement flag disagrees with the lifecycle status."""

    expected = order.lifecycle_status == LifecycleStatusEnum.APPROVED
    if order.entitlement_granted != expected:
        raise InternalInconsistencyError(
            f"Order {order.id} has entitlement_granted={order.entitlement_granted} "
            f"with lifecycle_status={order.lifecycle_status.value}",
            order_id=str(order.id),
        )


def apply_payment_signal(order: OrderState, signal: PaymentSignal) -> TransitionResult:
    """Merge a payment signal into the order state.

    Repeating a signal is a no-op. The lifecycle never moves down the
    pending < canceled < approved ladder, so a granted entitlement is never
    revoked, but the audit columns always take the freshest observation.
    """

    ensure_consistent(order)

    provider_status = normalize_provider_status(signal.provider_status)
    target = map_provider_status(provider_status)

    guarded = _LIFECYCLE_RANK[target] < _LIFECYCLE_RANK[order.lifecycle_status]
    lifecycle = order.lifecycle_status if guarded else target

    updated = replace(
        order,
        lifecycle_status=lifecycle,
        entitlement_granted=lifecycle == LifecycleStatusEnum.APPROVED,
        provider_status=provider_status,
        provider_payment_id=signal.provider_payment_id or order.provider_payment_id,
        provider_raw_payload=(
            signal.raw_payload if signal.raw_payload is not None else order.provider_raw_payload
        ),
    )

    changes: dict[str, Any] = {}
    for name in (
        "lifecycle_status",
        "entitlement_granted",
        "provider_status",
        "provider_payment_id",
        "provider_raw_payload",
    ):
        new_value = getattr(updated, name)
        if new_value != getattr(order, name):
            changes[name] = dict(new_value) if isinstance(new_value, Mapping) else new_value

    return TransitionResult(
        order=updated,
        transitioned=updated.lifecycle_status != order.lifecycle_status,
        changes=changes,
        guarded=guarded,
    )


__all__ = [
    "APPROVED_PROVIDER_STATUSES",
    "CANCELED_PROVIDER_STATUSES",
    "OrderState",
    "PaymentSignal",
    "TransitionResult",
    "apply_payment_signal",
    "ensure_consistent",
    "map_provider_status",
    "normalize_provider_status",
    "statuses_at_or_below",
]
