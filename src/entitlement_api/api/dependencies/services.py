"""Service wiring for request handlers."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from entitlement_api.core.settings import settings
from entitlement_api.db.session import get_session
from entitlement_api.services.entitlements import EntitlementGate
from entitlement_api.services.orders.checkout import CheckoutService
from entitlement_api.services.orders.reconciler import Reconciler
from entitlement_api.services.orders.store import OrderStore
from entitlement_api.services.payments import PaymentProvider, build_payment_provider
from entitlement_api.services.storage import AssetStore, S3AssetStore


@lru_cache
def _payment_provider() -> PaymentProvider:
    return build_payment_provider(settings)


@lru_cache
def _asset_store() -> AssetStore:
    return S3AssetStore.from_settings(settings)


def get_payment_provider() -> PaymentProvider:
    try:
        return _payment_provider()
    except ValueError as exc:
        logger.error("Payment provider is not configured", provider=settings.payment_provider, error=str(exc))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payment provider unavailable")


def get_asset_store() -> AssetStore:
    try:
        return _asset_store()
    except ValueError as exc:
        logger.error("Asset store is not configured", error=str(exc))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Asset store unavailable")


async def close_cached_clients() -> None:
    if _payment_provider.cache_info().currsize:
        await _payment_provider().aclose()
    _payment_provider.cache_clear()
    _asset_store.cache_clear()


def get_order_store(db: AsyncSession = Depends(get_session)) -> OrderStore:
    return OrderStore(db)


def get_reconciler(
    store: OrderStore = Depends(get_order_store),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> Reconciler:
    return Reconciler(store, provider)


def get_checkout_service(
    store: OrderStore = Depends(get_order_store),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CheckoutService:
    return CheckoutService(
        store,
        provider,
        amount=settings.asset_price,
        access_page_url=settings.access_page_url,
    )


def get_entitlement_gate(
    store: OrderStore = Depends(get_order_store),
    reconciler: Reconciler = Depends(get_reconciler),
    asset_store: AssetStore = Depends(get_asset_store),
) -> EntitlementGate:
    return EntitlementGate(
        store,
        reconciler,
        asset_store,
        ttl_seconds=settings.asset_grant_ttl_seconds,
        asset_path=settings.asset_storage_key,
    )


def get_optional_payment_provider() -> PaymentProvider | None:
    """Provider for inbound webhooks, which must acknowledge even when unconfigured."""

    try:
        return _payment_provider()
    except ValueError as exc:
        logger.error("Payment provider is not configured", provider=settings.payment_provider, error=str(exc))
        return None
