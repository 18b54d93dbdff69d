"""Background sweep that reconciles pending orders whose push never arrived."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from entitlement_api.core.settings import settings
from entitlement_api.services.errors import EntitlementError, OrderStoreError
from entitlement_api.services.orders.reconciler import Reconciler
from entitlement_api.services.orders.store import OrderStore
from entitlement_api.services.payments.base import PaymentProvider

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]
ProviderFactory = Callable[[], PaymentProvider]


class PendingOrderReconciliationWorker:
    """Periodically pulls provider status for stale pending orders."""

    def __init__(
        self,
        session_factory: SessionFactory,
        provider_factory: ProviderFactory,
        *,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
        min_age_seconds: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._provider_factory = provider_factory
        self.interval_seconds = interval_seconds or settings.pending_reconciliation_interval_seconds
        self._batch_size = batch_size or settings.pending_reconciliation_batch_size
        self._min_age_seconds = (
            min_age_seconds if min_age_seconds is not None else settings.pending_reconciliation_min_age_seconds
        )
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Pending order reconciliation worker started",
            interval_seconds=self.interval_seconds,
            batch_size=self._batch_size,
            min_age_seconds=self._min_age_seconds,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Pending order reconciliation worker stopped")

    async def run_once(self) -> Dict[str, int]:
        """Reconcile one batch of stale pending orders and return outcome counts."""

        provider = self._provider_factory()
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self._min_age_seconds)
        summary: Dict[str, int] = {"scanned": 0, "errors": 0}

        session = await self._ensure_session()
        async with session as managed_session:
            store = OrderStore(managed_session)
            reconciler = Reconciler(store, provider)
            orders = await store.list_stale_pending(created_before=cutoff, limit=self._batch_size)
            order_ids = [order.id for order in orders]

            for order_id in order_ids:
                summary["scanned"] += 1
                try:
                    result = await reconciler.reconcile(order_id)
                except EntitlementError as exc:
                    summary["errors"] += 1
                    await managed_session.rollback()
                    logger.error(
                        "Pending order reconciliation failed",
                        order_id=str(order_id),
                        error=str(exc),
                    )
                else:
                    summary[result.outcome.value] = summary.get(result.outcome.value, 0) + 1

                # Stamped whatever the outcome so the next sweep moves on.
                try:
                    await store.mark_reconciled(order_id, at=datetime.now(timezone.utc))
                except OrderStoreError as exc:
                    logger.warning(
                        "Could not record pending order sweep",
                        order_id=str(order_id),
                        error=str(exc),
                    )

        logger.info("Pending order reconciliation sweep completed", **summary)
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover
                logger.exception("Pending order reconciliation iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["PendingOrderReconciliationWorker"]
