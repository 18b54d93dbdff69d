from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger

from entitlement_api.api.dependencies.services import get_entitlement_gate, get_order_store
from entitlement_api.services.entitlements import EntitlementGate, read_order_status
from entitlement_api.services.errors import (
    AssetStoreError,
    EntitlementValidationError,
    InternalInconsistencyError,
    OrderNotFoundError,
    UpstreamUnavailableError,
)
from entitlement_api.services.orders.store import OrderStore


router = APIRouter(prefix="/entitlements", tags=["entitlements"])


def _translate(exc: Exception) -> HTTPException:
    if isinstance(exc, EntitlementValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, OrderNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    if isinstance(exc, AssetStoreError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Access grant temporarily unavailable; retry shortly",
        )
    if isinstance(exc, UpstreamUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service temporarily unavailable")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Order state inconsistent")


_HANDLED = (
    EntitlementValidationError,
    OrderNotFoundError,
    UpstreamUnavailableError,
    InternalInconsistencyError,
)


@router.get("/access")
async def get_access(
    email: str | None = Query(None),
    order_id: str | None = Query(None),
    gate: EntitlementGate = Depends(get_entitlement_gate),
) -> Dict[str, Any]:
    """Return a time-limited asset URL when the order is paid, or its pending status."""

    try:
        decision = await gate.check(email, order_id)
    except _HANDLED as exc:
        if isinstance(exc, InternalInconsistencyError):
            logger.error("Access check hit inconsistent order", order_id=order_id, error=str(exc))
        raise _translate(exc) from exc
    return decision.as_dict()


@router.get("/status")
async def get_status(
    email: str | None = Query(None),
    order_id: str | None = Query(None),
    store: OrderStore = Depends(get_order_store),
) -> Dict[str, Any]:
    """Report the stored order status without contacting the provider."""

    try:
        view = await read_order_status(store, email, order_id)
    except _HANDLED as exc:
        raise _translate(exc) from exc
    return {
        "order_id": view.order_id,
        "status": view.lifecycle_status,
        "provider_status": view.provider_status,
        "allowed": view.entitlement_granted,
    }
