"""Orders and payment notification ledger.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


lifecycle_status_enum = sa.Enum("pending", "approved", "canceled", name="order_lifecycle_status_enum")
notification_outcome_enum = sa.Enum(
    "applied",
    "unchanged",
    "unmatched",
    "ignored",
    "failed",
    name="payment_notification_outcome_enum",
)

_PENDING_ONLY = sa.text("lifecycle_status = 'pending'")


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("buyer_identity", sa.String(length=320), nullable=False),
        sa.Column("buyer_name", sa.String(length=255), nullable=True),
        sa.Column("lifecycle_status", lifecycle_status_enum, nullable=False, server_default="pending"),
        sa.Column("provider_status", sa.String(length=64), nullable=False, server_default="init"),
        sa.Column("entitlement_granted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("provider_payment_id", sa.String(length=128), nullable=True),
        sa.Column("provider_raw_payload", sa.JSON(), nullable=True),
        sa.Column("provider_checkout_id", sa.String(length=255), nullable=True),
        sa.Column("checkout_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "entitlement_granted = (lifecycle_status = 'approved')",
            name="ck_orders_entitlement_matches_status",
        ),
    )
    op.create_index("ix_orders_buyer_identity_created_at", "orders", ["buyer_identity", "created_at"])
    op.create_index(
        "uq_orders_pending_buyer",
        "orders",
        ["buyer_identity"],
        unique=True,
        postgresql_where=_PENDING_ONLY,
        sqlite_where=_PENDING_ONLY,
    )

    op.create_table(
        "payment_notifications",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("topic", sa.String(length=64), nullable=True),
        sa.Column("provider_payment_id", sa.String(length=128), nullable=True),
        sa.Column("external_reference", sa.String(length=128), nullable=True),
        sa.Column("order_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("provider_status", sa.String(length=64), nullable=True),
        sa.Column("outcome", notification_outcome_enum, nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_payment_notifications_order_id", "payment_notifications", ["order_id"])


def downgrade() -> None:
    op.drop_index("ix_payment_notifications_order_id", table_name="payment_notifications")
    op.drop_table("payment_notifications")
    op.drop_index("uq_orders_pending_buyer", table_name="orders")
    op.drop_index("ix_orders_buyer_identity_created_at", table_name="orders")
    op.drop_table("orders")
    notification_outcome_enum.drop(op.get_bind(), checkfirst=True)
    lifecycle_status_enum.drop(op.get_bind(), checkfirst=True)
