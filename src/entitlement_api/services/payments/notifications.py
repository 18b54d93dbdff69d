"""Inbound push notifications from payment providers."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger

from entitlement_api.models.payment_notification import NotificationOutcomeEnum, PaymentNotificationRecord
from entitlement_api.observability.payments import PaymentObservabilityStore, get_payment_store
from entitlement_api.services.errors import EntitlementValidationError
from entitlement_api.services.orders.convergence import OrderSignalApplier
from entitlement_api.services.orders.identity import parse_order_id
from entitlement_api.services.orders.store import OrderStore
from entitlement_api.services.payments.base import PaymentAttempt, PaymentNotification, PaymentProvider

_OBSERVABILITY_BUCKETS = {
    NotificationOutcomeEnum.APPLIED: "processed",
    NotificationOutcomeEnum.UNCHANGED: "processed",
    NotificationOutcomeEnum.UNMATCHED: "unmatched",
    NotificationOutcomeEnum.IGNORED: "ignored",
    NotificationOutcomeEnum.FAILED: "failed",
}


@dataclass(slots=True)
class NotificationReceipt:
    outcome: NotificationOutcomeEnum
    order_id: UUID | None = None
    external_reference: str | None = None
    provider_status: str | None = None
    error: str | None = None


class PushNotificationReceiver:
    """Apply provider push notifications to orders.

    ``receive`` never raises: the provider must always get an acknowledgment,
    so every failure is logged, counted and written to the notification ledger
    instead.
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

    async def receive(self, notification: PaymentNotification) -> NotificationReceipt:
        try:
            receipt = await self._process(notification)
        except Exception as exc:
            logger.exception(
                "Push notification processing failed",
                provider=notification.provider,
                topic=notification.topic,
                payment_id=notification.payment_id,
                error=str(exc),
            )
            await self._store.session.rollback()
            receipt = NotificationReceipt(outcome=NotificationOutcomeEnum.FAILED, error=str(exc))

        self._observability.record_notification(
            notification.topic,
            _OBSERVABILITY_BUCKETS[receipt.outcome],
            notification.payment_id,
            receipt.error,
        )
        await self._record(notification, receipt)
        return receipt

    async def _process(self, notification: PaymentNotification) -> NotificationReceipt:
        if not notification.actionable:
            logger.info(
                "Ignoring non-payment notification",
                provider=notification.provider,
                topic=notification.topic,
            )
            return NotificationReceipt(outcome=NotificationOutcomeEnum.IGNORED)

        attempt = await self._resolve_attempt(notification)
        if attempt is None:
            logger.warning(
                "Notified payment not found at provider",
                provider=notification.provider,
                payment_id=notification.payment_id,
            )
            return NotificationReceipt(outcome=NotificationOutcomeEnum.UNMATCHED)

        try:
            order_id = parse_order_id(attempt.external_reference)
        except EntitlementValidationError:
            logger.warning(
                "Payment carries no usable order reference",
                provider=notification.provider,
                payment_id=attempt.payment_id,
                external_reference=attempt.external_reference,
            )
            return NotificationReceipt(
                outcome=NotificationOutcomeEnum.UNMATCHED,
                external_reference=attempt.external_reference,
                provider_status=attempt.status,
            )

        outcome = await self._applier.apply(order_id, attempt.to_signal(), source=f"push:{notification.provider}")
        if not outcome.matched:
            return NotificationReceipt(
                outcome=NotificationOutcomeEnum.UNMATCHED,
                order_id=order_id,
                external_reference=attempt.external_reference,
                provider_status=attempt.status,
            )
        return NotificationReceipt(
            outcome=NotificationOutcomeEnum.APPLIED if outcome.changed else NotificationOutcomeEnum.UNCHANGED,
            order_id=order_id,
            external_reference=attempt.external_reference,
            provider_status=attempt.status,
        )

    async def _resolve_attempt(self, notification: PaymentNotification) -> PaymentAttempt | None:
        pushed = notification.attempt
        if pushed is not None and pushed.external_reference:
            return pushed

        if not notification.payment_id:
            return pushed
        fetched = await self._provider.find_payment_by_id(notification.payment_id)
        if fetched is None or pushed is None:
            return fetched
        # Keep the pushed status (refund, dispute); borrow the order reference.
        pushed.external_reference = fetched.external_reference
        return pushed

    async def _record(self, notification: PaymentNotification, receipt: NotificationReceipt) -> None:
        record = PaymentNotificationRecord(
            provider=notification.provider,
            topic=notification.topic,
            provider_payment_id=notification.payment_id,
            external_reference=receipt.external_reference,
            order_id=receipt.order_id,
            provider_status=receipt.provider_status,
            outcome=receipt.outcome,
            error=receipt.error,
            payload=dict(notification.raw) if notification.raw else None,
        )
        session = self._store.session
        session.add(record)
        try:
            await session.commit()
        except Exception as exc:
            await session.rollback()
            logger.error(
                "Failed to write notification ledger entry",
                provider=notification.provider,
                payment_id=notification.payment_id,
                error=str(exc),
            )


__all__ = ["NotificationReceipt", "PushNotificationReceiver"]
