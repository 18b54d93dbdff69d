"""Ledger of inbound payment push notifications."""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from entitlement_api.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationOutcomeEnum(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    UNMATCHED = "unmatched"
    IGNORED = "ignored"
    FAILED = "failed"


class PaymentNotificationRecord(Base):
    """One row per push delivery, whatever happened to it."""

    __tablename__ = "payment_notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    provider = Column(String(32), nullable=False)
    topic = Column(String(64), nullable=True)
    provider_payment_id = Column(String(128), nullable=True)
    external_reference = Column(String(128), nullable=True)
    order_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    provider_status = Column(String(64), nullable=True)
    outcome = Column(
        SqlEnum(
            NotificationOutcomeEnum,
            name="payment_notification_outcome_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    error = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
