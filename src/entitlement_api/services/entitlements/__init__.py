from .gate import (
    EntitlementDecision,
    EntitlementGate,
    OrderStatusView,
    PendingSettlement,
    load_buyer_order,
    read_order_status,
)

__all__ = [
    "EntitlementDecision",
    "EntitlementGate",
    "OrderStatusView",
    "PendingSettlement",
    "load_buyer_order",
    "read_order_status",
]
