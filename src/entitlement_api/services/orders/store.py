"""Order persistence on top of an async SQLAlchemy session."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from entitlement_api.models.order import LifecycleStatusEnum, Order
from entitlement_api.services.errors import (
    InternalInconsistencyError,
    OrderStoreError,
    PendingOrderConflictError,
)


_UPDATABLE_FIELDS = frozenset(
    {
        "lifecycle_status",
        "provider_status",
        "entitlement_granted",
        "provider_payment_id",
        "provider_raw_payload",
        "provider_checkout_id",
        "checkout_url",
        "checkout_payment_method",
    }
)


class OrderStore:
    """Create, look up and partially update orders.

    The "one pending order per buyer" rule is enforced by a partial unique
    index; a violating insert surfaces as ``PendingOrderConflictError``.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def create_order(self, buyer_identity: str, *, buyer_name: str | None = None) -> Order:
        order = Order(
            buyer_identity=buyer_identity,
            buyer_name=buyer_name,
            lifecycle_status=LifecycleStatusEnum.PENDING,
            provider_status="init",
            entitlement_granted=False,
            created_at=datetime.now(timezone.utc),
        )
        self._session.add(order)
        try:
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            logger.info(
                "Pending order insert rejected by uniqueness constraint",
                buyer_identity=buyer_identity,
                error=str(exc.orig),
            )
            raise PendingOrderConflictError(buyer_identity) from exc
        except OperationalError as exc:
            await self._session.rollback()
            raise OrderStoreError("Order store unavailable while creating an order") from exc
        await self._session.refresh(order)
        logger.info("Order created", order_id=str(order.id), buyer_identity=buyer_identity)
        return order

    async def find_by_id(self, order_id: UUID) -> Order | None:
        stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        result = await self._execute(stmt)
        return result.scalar_one_or_none()

    async def find_for_buyer(self, order_id: UUID, buyer_identity: str) -> Order | None:
        """Return the order only when both the id and the buyer identity match."""

        stmt = (
            select(Order)
            .where(Order.id == order_id, Order.buyer_identity == buyer_identity)
            .execution_options(populate_existing=True)
        )
        result = await self._execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_buyer(self, buyer_identity: str) -> list[Order]:
        """Return every order of the buyer, most recent first."""

        stmt = (
            select(Order)
            .where(Order.buyer_identity == buyer_identity)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .execution_options(populate_existing=True)
        )
        result = await self._execute(stmt)
        return list(result.scalars().all())

    async def find_latest(
        self,
        buyer_identity: str,
        *,
        entitled: bool | None = None,
        lifecycle_status: LifecycleStatusEnum | None = None,
    ) -> Order | None:
        stmt = select(Order).where(Order.buyer_identity == buyer_identity)
        if entitled is not None:
            stmt = stmt.where(Order.entitlement_granted.is_(entitled))
        if lifecycle_status is not None:
            stmt = stmt.where(Order.lifecycle_status == lifecycle_status)
        stmt = (
            stmt.order_by(Order.created_at.desc(), Order.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self._execute(stmt)
        return result.scalar_one_or_none()

    async def list_stale_pending(self, *, created_before: datetime, limit: int) -> list[Order]:
        """Return pending orders created before the cutoff.

        Orders never swept come first, then the ones swept longest ago, so a
        backlog of abandoned checkouts cannot starve newer orders.
        """

        stmt = (
            select(Order)
            .where(
                Order.lifecycle_status == LifecycleStatusEnum.PENDING,
                Order.created_at < created_before,
            )
            .order_by(Order.last_reconciled_at.asc().nulls_first(), Order.created_at.asc())
            .limit(limit)
        )
        result = await self._execute(stmt)
        return list(result.scalars().all())

    async def update(
        self,
        order_id: UUID,
        fields: Mapping[str, Any],
        *,
        only_if_not_granted: bool = False,
        lifecycle_in: Iterable[LifecycleStatusEnum] | None = None,
    ) -> bool:
        """Merge ``fields`` into the stored order.

        The optional guards turn the write into a compare-and-set; the return
        value is False when the guards (or the id) matched no row.
        """

        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported order fields: {sorted(unknown)}")
        if not fields:
            return True

        values = dict(fields)
        values["updated_at"] = datetime.now(timezone.utc)
        stmt = update(Order).where(Order.id == order_id)
        if only_if_not_granted:
            stmt = stmt.where(Order.entitlement_granted.is_(False))
        if lifecycle_in is not None:
            stmt = stmt.where(Order.lifecycle_status.in_(tuple(lifecycle_in)))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        try:
            result = await self._session.execute(stmt)
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            logger.error(
                "Order update rejected by integrity constraints",
                order_id=str(order_id),
                fields=sorted(fields),
                error=str(exc.orig),
            )
            raise InternalInconsistencyError(
                f"Order {order_id} update violates entitlement constraints",
                order_id=str(order_id),
            ) from exc
        except OperationalError as exc:
            await self._session.rollback()
            raise OrderStoreError(f"Order store unavailable while updating order {order_id}") from exc

        return (result.rowcount or 0) > 0

    async def mark_reconciled(self, order_id: UUID, *, at: datetime) -> None:
        """Record when the pending sweep last looked at the order."""

        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .values(last_reconciled_at=at)
            .execution_options(synchronize_session=False)
        )
        try:
            await self._session.execute(stmt)
            await self._session.commit()
        except OperationalError as exc:
            await self._session.rollback()
            raise OrderStoreError(f"Order store unavailable while stamping order {order_id}") from exc

    async def _execute(self, stmt):
        try:
            return await self._session.execute(stmt)
        except OperationalError as exc:
            raise OrderStoreError("Order store unavailable") from exc


__all__ = ["OrderStore"]
