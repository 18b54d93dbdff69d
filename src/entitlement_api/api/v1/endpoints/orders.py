from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from entitlement_api.api.dependencies.security import require_operator_api_key
from entitlement_api.api.dependencies.services import get_reconciler
from entitlement_api.services.errors import (
    EntitlementValidationError,
    InternalInconsistencyError,
    OrderStoreError,
)
from entitlement_api.services.orders.identity import parse_order_id
from entitlement_api.services.orders.reconciler import Reconciler, ReconciliationOutcome


router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "/{order_id}/reconcile",
    dependencies=[Depends(require_operator_api_key)],
)
async def reconcile_order(
    order_id: str,
    reconciler: Reconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    """Pull the latest payment attempt for an order from the provider and apply it."""

    try:
        parsed = parse_order_id(order_id)
        result = await reconciler.reconcile(parsed)
    except EntitlementValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except OrderStoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Order store unavailable") from exc
    except InternalInconsistencyError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    if result.outcome == ReconciliationOutcome.NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    order = result.order
    return {
        "order_id": str(parsed),
        "outcome": result.outcome.value,
        "transitioned": result.transitioned,
        "provider_payment_id": result.provider_payment_id,
        "provider_status": order.provider_status if order is not None else None,
        "status": order.lifecycle_status.value if order is not None else None,
        "entitlement_granted": result.entitlement_granted,
        "error": result.error,
    }
