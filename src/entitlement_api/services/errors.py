"""Error taxonomy shared by the order, payment and entitlement services."""

from __future__ import annotations


class EntitlementError(RuntimeError):
    """Base exception for entitlement engine failures."""


class EntitlementValidationError(EntitlementError):
    """Raised when a buyer identity or order id is missing or malformed."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class OrderNotFoundError(EntitlementError):
    """Raised when no order matches the supplied identifiers."""


class UpstreamUnavailableError(EntitlementError):
    """Raised when a collaborating service failed or timed out. Retryable."""

    upstream: str = "upstream"


class PaymentProviderError(UpstreamUnavailableError):
    """Raised when the payment provider cannot be reached or answers garbage."""

    upstream = "payment_provider"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AssetStoreError(UpstreamUnavailableError):
    """Raised when the asset store cannot mint an access grant."""

    upstream = "asset_store"


class OrderStoreError(UpstreamUnavailableError):
    """Raised when the order database cannot be reached."""

    upstream = "order_store"


class InternalInconsistencyError(EntitlementError):
    """Raised when persisted order state violates the entitlement invariants."""

    def __init__(self, message: str, *, order_id: str | None = None) -> None:
        super().__init__(message)
        self.order_id = order_id


class PendingOrderConflictError(EntitlementError):
    """Raised when the store refuses a second pending order for the same buyer."""

    def __init__(self, buyer_identity: str) -> None:
        super().__init__(f"Buyer already has a pending order: {buyer_identity}")
        self.buyer_identity = buyer_identity


__all__ = [
    "AssetStoreError",
    "EntitlementError",
    "EntitlementValidationError",
    "InternalInconsistencyError",
    "OrderNotFoundError",
    "OrderStoreError",
    "PaymentProviderError",
    "PendingOrderConflictError",
    "UpstreamUnavailableError",
]
