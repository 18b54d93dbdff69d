"""Operator view of payment and entitlement counters."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from entitlement_api.api.dependencies.security import require_operator_api_key
from entitlement_api.observability.payments import get_payment_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get("/payments", dependencies=[Depends(require_operator_api_key)])
async def get_payments_observability() -> Dict[str, Any]:
    return get_payment_store().snapshot().as_dict()
