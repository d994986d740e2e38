"""add shipping approval handshake fields to orders

Revision ID: 8d54e0b6c2a3
Revises: 3f1c9a2e7b10
Create Date: 2026-09-28 16:40:02.503771
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "8d54e0b6c2a3"
down_revision = "3f1c9a2e7b10"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("orders") as batch_op:
        batch_op.add_column(sa.Column("delivery_option", sa.String(length=16), nullable=False, server_default="vault"))
        batch_op.add_column(sa.Column("shipping_requested_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.add_column(
            sa.Column(
                "shipping_requested_by",
                sa.Integer,
                sa.ForeignKey("users.id", name="fk_orders_shipping_requested_by_users"),
                nullable=True,
            )
        )
        batch_op.add_column(
            sa.Column("buyer_approved_shipping", sa.Boolean, nullable=False, server_default=sa.false())
        )
        batch_op.add_column(
            sa.Column("seller_approved_shipping", sa.Boolean, nullable=False, server_default=sa.false())
        )
        batch_op.add_column(sa.Column("buyer_shipping_approved_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.add_column(sa.Column("seller_shipping_approved_at", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("orders") as batch_op:
        batch_op.drop_column("seller_shipping_approved_at")
        batch_op.drop_column("buyer_shipping_approved_at")
        batch_op.drop_column("seller_approved_shipping")
        batch_op.drop_column("buyer_approved_shipping")
        batch_op.drop_column("shipping_requested_by")
        batch_op.drop_column("shipping_requested_at")
        batch_op.drop_column("delivery_option")
