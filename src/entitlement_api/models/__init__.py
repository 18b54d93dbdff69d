"""SQLAlchemy models package."""

from .order import LifecycleStatusEnum, Order  # noqa: F401
from .payment_notification import NotificationOutcomeEnum, PaymentNotificationRecord  # noqa: F401

__all__ = [
    "LifecycleStatusEnum",
    "NotificationOutcomeEnum",
    "Order",
    "PaymentNotificationRecord",
]
