import pytest
from sqlalchemy import select

from entitlement_api.models.order import LifecycleStatusEnum
from entitlement_api.models.payment_notification import NotificationOutcomeEnum, PaymentNotificationRecord
from entitlement_api.observability.payments import get_payment_store
from entitlement_api.services.orders.store import OrderStore
from entitlement_api.services.payments.base import PaymentAttempt, PaymentNotification
from entitlement_api.services.payments.notifications import PushNotificationReceiver


def _notify(payment_id: str, topic: str = "payment") -> PaymentNotification:
    return PaymentNotification(provider="fake", topic=topic, payment_id=payment_id, raw={"id": payment_id})


@pytest.mark.asyncio
async def test_approved_push_then_delayed_pending_keeps_entitlement(session_factory, fake_provider):
    async with session_factory() as session:
        store = OrderStore(session)
        order = await store.create_order("a@x.com")
        approved = fake_provider.add_attempt(str(order.id), "approved", payment_id="p-1")
        receiver = PushNotificationReceiver(store, fake_provider)

        first = await receiver.receive(_notify("p-1"))
        refreshed = await store.find_by_id(order.id)
        assert first.outcome == NotificationOutcomeEnum.APPLIED
        assert refreshed.lifecycle_status == LifecycleStatusEnum.APPROVED
        assert refreshed.entitlement_granted is True

        # A stale retry reports the payment as still pending.
        approved.status = "pending"
        approved.raw = {"status": "pending"}
        second = await receiver.receive(_notify("p-1"))
        refreshed = await store.find_by_id(order.id)

        assert second.outcome == NotificationOutcomeEnum.APPLIED
        assert refreshed.lifecycle_status == LifecycleStatusEnum.APPROVED
        assert refreshed.entitlement_granted is True
        assert refreshed.provider_status == "pending"
        assert refreshed.provider_raw_payload == {"status": "pending"}


@pytest.mark.asyncio
async def test_duplicate_push_is_unchanged(session_factory, fake_provider):
    async with session_factory() as session:
        store = OrderStore(session)
        order = await store.create_order("a@x.com")
        fake_provider.add_attempt(str(order.id), "approved", payment_id="p-1")
        receiver = PushNotificationReceiver(store, fake_provider)

        await receiver.receive(_notify("p-1"))
        again = await receiver.receive(_notify("p-1"))

        assert again.outcome == NotificationOutcomeEnum.UNCHANGED
        assert get_payment_store().snapshot().notification_totals["processed"] == {"payment": 2}


@pytest.mark.asyncio
async def test_unknown_order_reference_is_acknowledged(session_factory, fake_provider):
    async with session_factory() as session:
        store = OrderStore(session)
        fake_provider.add_attempt("7f1d5a4e-5a57-4e55-9a7a-1d7c1f0a4b11", "approved", payment_id="p-9")
        fake_provider.add_attempt("legacy-ref", "approved", payment_id="p-10")
        receiver = PushNotificationReceiver(store, fake_provider)

        unknown = await receiver.receive(_notify("p-9"))
        malformed = await receiver.receive(_notify("p-10"))
        missing = await receiver.receive(_notify("p-404"))

        assert unknown.outcome == NotificationOutcomeEnum.UNMATCHED
        assert malformed.outcome == NotificationOutcomeEnum.UNMATCHED
        assert missing.outcome == NotificationOutcomeEnum.UNMATCHED
        assert get_payment_store().snapshot().notification_totals["unmatched"] == {"payment": 3}


@pytest.mark.asyncio
async def test_non_payment_topic_is_ignored(session_factory, fake_provider):
    async with session_factory() as session:
        receiver = PushNotificationReceiver(OrderStore(session), fake_provider)

        receipt = await receiver.receive(PaymentNotification(provider="fake", topic="merchant_order"))

        assert receipt.outcome == NotificationOutcomeEnum.IGNORED


@pytest.mark.asyncio
async def test_provider_failure_is_swallowed_and_recorded(session_factory, fake_provider, provider_outage):
    async with session_factory() as session:
        store = OrderStore(session)
        order_id = (await store.create_order("a@x.com")).id
        fake_provider.fail_with = provider_outage
        receiver = PushNotificationReceiver(store, fake_provider)

        receipt = await receiver.receive(_notify("p-1"))

        assert receipt.outcome == NotificationOutcomeEnum.FAILED
        assert receipt.error == "provider timed out"
        refreshed = await store.find_by_id(order_id)
        assert refreshed.lifecycle_status == LifecycleStatusEnum.PENDING
        snapshot = get_payment_store().snapshot()
        assert snapshot.notification_totals["failed"] == {"payment": 1}
        assert snapshot.notification_events.last_failure_reason == "provider timed out"


@pytest.mark.asyncio
async def test_pushed_attempt_with_reference_is_applied_without_fetch(session_factory, fake_provider, provider_outage):
    async with session_factory() as session:
        store = OrderStore(session)
        order = await store.create_order("a@x.com")
        fake_provider.fail_with = provider_outage
        notification = PaymentNotification(
            provider="fake",
            topic="payment_intent.payment_failed",
            payment_id="pi_1",
            attempt=PaymentAttempt(payment_id="pi_1", status="rejected", external_reference=str(order.id)),
        )

        receipt = await PushNotificationReceiver(store, fake_provider).receive(notification)
        refreshed = await store.find_by_id(order.id)

        assert receipt.outcome == NotificationOutcomeEnum.APPLIED
        assert refreshed.lifecycle_status == LifecycleStatusEnum.CANCELED


@pytest.mark.asyncio
async def test_pushed_refund_borrows_reference_from_provider(session_factory, fake_provider):
    async with session_factory() as session:
        store = OrderStore(session)
        order = await store.create_order("a@x.com")
        fake_provider.add_attempt(str(order.id), "approved", payment_id="pi_1")
        receiver = PushNotificationReceiver(store, fake_provider)
        await receiver.receive(_notify("pi_1"))

        refund = PaymentNotification(
            provider="fake",
            topic="charge.refunded",
            payment_id="pi_1",
            attempt=PaymentAttempt(payment_id="pi_1", status="refunded"),
        )
        receipt = await receiver.receive(refund)
        refreshed = await store.find_by_id(order.id)

        assert receipt.outcome == NotificationOutcomeEnum.APPLIED
        assert refreshed.provider_status == "refunded"
        assert refreshed.entitlement_granted is True


@pytest.mark.asyncio
async def test_every_delivery_is_written_to_ledger(session_factory, fake_provider):
    async with session_factory() as session:
        store = OrderStore(session)
        order = await store.create_order("a@x.com")
        fake_provider.add_attempt(str(order.id), "approved", payment_id="p-1")
        receiver = PushNotificationReceiver(store, fake_provider)

        await receiver.receive(_notify("p-1"))
        await receiver.receive(PaymentNotification(provider="fake", topic="merchant_order"))

        rows = (await session.execute(select(PaymentNotificationRecord))).scalars().all()
        outcomes = sorted(row.outcome.value for row in rows)
        assert outcomes == ["applied", "ignored"]
        applied = next(row for row in rows if row.outcome == NotificationOutcomeEnum.APPLIED)
        assert applied.order_id == order.id
        assert applied.provider_payment_id == "p-1"
