import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from entitlement_api.api.dependencies.services import (  # noqa: E402
    get_asset_store,
    get_optional_payment_provider,
    get_payment_provider,
)
from entitlement_api.app import create_app  # noqa: E402
from entitlement_api.core.settings import settings  # noqa: E402
from entitlement_api.db.base import Base  # noqa: E402
from entitlement_api.db.session import get_session  # noqa: E402
from entitlement_api.observability.payments import get_payment_store  # noqa: E402
from entitlement_api.services.errors import AssetStoreError, PaymentProviderError  # noqa: E402
from entitlement_api.services.payments.base import CheckoutSession, PaymentAttempt  # noqa: E402
from entitlement_api.services.storage.asset_store import AccessGrant  # noqa: E402
import entitlement_api.models  # noqa: E402,F401

settings.tracing_enabled = False


class FakePaymentProvider:
    """In-memory provider double keyed by external reference."""

    name = "fake"

    def __init__(self) -> None:
        self.attempts: dict[str, list[PaymentAttempt]] = {}
        self.checkouts: list[dict] = []
        self.search_calls: list[str] = []
        self.fail_with: Exception | None = None
        self.closed = False

    def add_attempt(
        self,
        external_reference: str,
        status: str,
        *,
        payment_id: str | None = None,
        created_at: datetime | None = None,
    ) -> PaymentAttempt:
        bucket = self.attempts.setdefault(external_reference, [])
        attempt = PaymentAttempt(
            payment_id=payment_id or f"pay-{len(bucket) + 1}",
            status=status,
            external_reference=external_reference,
            created_at=created_at or datetime.now(timezone.utc) + timedelta(seconds=len(bucket)),
            raw={"status": status},
        )
        bucket.append(attempt)
        return attempt

    async def create_checkout(self, *, order_id, buyer_identity, amount: Decimal, buyer_name=None, payment_method=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.checkouts.append(
            {
                "order_id": order_id,
                "buyer_identity": buyer_identity,
                "amount": amount,
                "payment_method": payment_method,
            }
        )
        return CheckoutSession(
            checkout_url=f"https://pay.test/checkout/{order_id}?method={payment_method}",
            external_reference=order_id,
            checkout_id=f"pref-{len(self.checkouts)}",
        )

    async def find_payments_by_external_ref(self, external_reference: str) -> list[PaymentAttempt]:
        self.search_calls.append(external_reference)
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.attempts.get(external_reference, []))

    async def find_payment_by_id(self, payment_id: str) -> PaymentAttempt | None:
        if self.fail_with is not None:
            raise self.fail_with
        for bucket in self.attempts.values():
            for attempt in bucket:
                if attempt.payment_id == payment_id:
                    return attempt
        return None

    async def aclose(self) -> None:
        self.closed = True


class FakeAssetStore:
    def __init__(self) -> None:
        self.requests: list[tuple[str, int]] = []
        self.fail = False

    async def create_time_limited_grant(self, asset_path: str, ttl_seconds: int) -> AccessGrant:
        self.requests.append((asset_path, ttl_seconds))
        if self.fail:
            raise AssetStoreError("bucket unavailable")
        return AccessGrant(
            url=f"https://assets.test/{asset_path}?sig=abc",
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
        )


@pytest.fixture(autouse=True)
def reset_payment_store():
    get_payment_store().reset()
    yield
    get_payment_store().reset()


@pytest.fixture
def fake_provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def fake_asset_store() -> FakeAssetStore:
    return FakeAssetStore()


@pytest.fixture
def provider_outage() -> PaymentProviderError:
    return PaymentProviderError("provider timed out")


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory, fake_provider, fake_asset_store):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_payment_provider] = lambda: fake_provider
    app.dependency_overrides[get_optional_payment_provider] = lambda: fake_provider
    app.dependency_overrides[get_asset_store] = lambda: fake_asset_store

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
