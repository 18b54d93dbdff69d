from fastapi import APIRouter

from .endpoints import checkout, entitlements, observability, orders, webhooks

router = APIRouter()
router.include_router(checkout.router)
router.include_router(entitlements.router)
router.include_router(webhooks.router)
router.include_router(orders.router)
router.include_router(observability.router)
