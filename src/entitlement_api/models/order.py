from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    Index,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID

from entitlement_api.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleStatusEnum(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CANCELED = "canceled"


_PENDING_ONLY = text("lifecycle_status = 'pending'")


class Order(Base):
    """Purchase intent and the entitlement it unlocks once payment settles."""

    __tablename__ = "orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    buyer_identity = Column(String(320), nullable=False)
    buyer_name = Column(String(255), nullable=True)
    lifecycle_status = Column(
        SqlEnum(
            LifecycleStatusEnum,
            name="order_lifecycle_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=LifecycleStatusEnum.PENDING,
        server_default=LifecycleStatusEnum.PENDING.value,
    )
    provider_status = Column(String(64), nullable=False, default="init", server_default="init")
    entitlement_granted = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    provider_payment_id = Column(String(128), nullable=True)
    provider_raw_payload = Column(JSON, nullable=True)
    provider_checkout_id = Column(String(255), nullable=True)
    checkout_url = Column(Text, nullable=True)
    checkout_payment_method = Column(String(16), nullable=True)
    last_reconciled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_orders_buyer_identity_created_at", "buyer_identity", "created_at"),
        Index(
            "uq_orders_pending_buyer",
            "buyer_identity",
            unique=True,
            postgresql_where=_PENDING_ONLY,
            sqlite_where=_PENDING_ONLY,
        ),
        CheckConstraint(
            "entitlement_granted = (lifecycle_status = 'approved')",
            name="ck_orders_entitlement_matches_status",
        ),
    )
