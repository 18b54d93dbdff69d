import asyncio
from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest

from entitlement_api.services.orders.store import OrderStore
from entitlement_api.workers.pending_reconciliation import PendingOrderReconciliationWorker


async def _seed(session_factory, *identities: str) -> list[str]:
    async with session_factory() as session:
        store = OrderStore(session)
        return [str((await store.create_order(identity)).id) for identity in identities]


@pytest.mark.asyncio
async def test_run_once_settles_stale_pending_orders(session_factory, fake_provider):
    paid, waiting, untouched = await _seed(session_factory, "a@x.com", "b@x.com", "c@x.com")
    fake_provider.add_attempt(paid, "approved", payment_id="p-1")
    fake_provider.add_attempt(waiting, "in_process", payment_id="p-2")

    worker = PendingOrderReconciliationWorker(
        session_factory=session_factory,
        provider_factory=lambda: fake_provider,
        interval_seconds=60,
        batch_size=10,
        min_age_seconds=0,
    )
    summary = await worker.run_once()

    assert summary["scanned"] == 3
    assert summary["errors"] == 0
    assert summary["applied"] == 2
    assert summary["no_payments"] == 1

    async with session_factory() as session:
        store = OrderStore(session)
        pending = await store.list_stale_pending(created_before=_far_future(), limit=10)
        orders = {str(order.id): order for order in pending}
    assert paid not in orders
    assert orders[waiting].provider_status == "in_process"
    assert untouched in orders

    second = await worker.run_once()
    assert second["scanned"] == 2
    assert paid not in fake_provider.search_calls[3:]


@pytest.mark.asyncio
async def test_abandoned_backlog_does_not_starve_newer_orders(session_factory, fake_provider):
    *abandoned, paid = await _seed(session_factory, "a@x.com", "b@x.com", "c@x.com", "d@x.com")
    fake_provider.add_attempt(paid, "approved", payment_id="p-9")

    worker = PendingOrderReconciliationWorker(
        session_factory=session_factory,
        provider_factory=lambda: fake_provider,
        interval_seconds=60,
        batch_size=3,
        min_age_seconds=0,
    )
    first = await worker.run_once()
    second = await worker.run_once()

    assert fake_provider.search_calls[:3] == abandoned
    assert fake_provider.search_calls[3] == paid
    assert first == {"scanned": 3, "errors": 0, "no_payments": 3}
    assert second["applied"] == 1

    async with session_factory() as session:
        order = await OrderStore(session).find_by_id(UUID(paid))
    assert order.entitlement_granted is True
    assert order.last_reconciled_at is not None


@pytest.mark.asyncio
async def test_run_once_respects_min_age(session_factory, fake_provider):
    await _seed(session_factory, "a@x.com")

    worker = PendingOrderReconciliationWorker(
        session_factory=session_factory,
        provider_factory=lambda: fake_provider,
        interval_seconds=60,
        batch_size=10,
        min_age_seconds=3600,
    )
    summary = await worker.run_once()

    assert summary == {"scanned": 0, "errors": 0}
    assert fake_provider.search_calls == []


@pytest.mark.asyncio
async def test_run_once_counts_provider_outage_without_failing(session_factory, fake_provider, provider_outage):
    await _seed(session_factory, "a@x.com")
    fake_provider.fail_with = provider_outage

    worker = PendingOrderReconciliationWorker(
        session_factory=session_factory,
        provider_factory=lambda: fake_provider,
        interval_seconds=60,
        batch_size=10,
        min_age_seconds=0,
    )
    summary = await worker.run_once()

    assert summary["upstream_unavailable"] == 1
    assert summary["errors"] == 0


@pytest.mark.asyncio
async def test_worker_start_and_stop(session_factory, fake_provider):
    worker = PendingOrderReconciliationWorker(
        session_factory=session_factory,
        provider_factory=lambda: fake_provider,
        interval_seconds=3600,
        batch_size=10,
        min_age_seconds=0,
    )

    worker.start()
    assert worker.is_running is True
    await asyncio.sleep(0)
    await worker.stop()

    assert worker.is_running is False


def _far_future() -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=1)
