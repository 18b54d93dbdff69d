from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
from pydantic import BaseModel, Field

from entitlement_api.api.dependencies.services import get_checkout_service
from entitlement_api.services.errors import (
    EntitlementValidationError,
    InternalInconsistencyError,
    UpstreamUnavailableError,
)
from entitlement_api.services.orders.checkout import CheckoutService


router = APIRouter(prefix="/checkout", tags=["checkout"])


class CheckoutRequest(BaseModel):
    """Purchase intent submitted by the buyer."""
    email: str = Field(..., description="Buyer e-mail; normalised to lower case")
    name: str | None = Field(None, max_length=255, description="Buyer display name")
    payment_method: Literal["pix", "card"] | None = Field(None, description="Restrict the hosted checkout")


class CheckoutResponse(BaseModel):
    status: str = Field(..., description="created, reused or already_entitled")
    order_id: str
    checkout_url: str | None = Field(None, description="Hosted checkout URL; absent when already entitled")
    access_url: str = Field(..., description="Page where the buyer retrieves the asset")


@router.post("", response_model=CheckoutResponse)
async def create_checkout(
    request: CheckoutRequest,
    service: CheckoutService = Depends(get_checkout_service),
) -> CheckoutResponse:
    """Create (or reuse) an order and its provider checkout for the buyer."""

    try:
        result = await service.start_checkout(
            request.email,
            buyer_name=request.name,
            payment_method=request.payment_method,
        )
    except EntitlementValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except UpstreamUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Checkout temporarily unavailable",
        ) from exc
    except InternalInconsistencyError as exc:
        logger.error("Checkout aborted on inconsistent order state", error=str(exc))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Order state inconsistent") from exc

    return CheckoutResponse(
        status=result.outcome.value,
        order_id=str(result.order.id),
        checkout_url=result.checkout_url,
        access_url=result.access_url,
    )
