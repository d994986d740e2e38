"""Order model: the unit of escrow."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


def _enum_values(enum_cls) -> list[str]:
    return [item.value for item in enum_cls]


class OrderStatus(str, PyEnum):
    """Lifecycle of an order.

    ``completed`` and ``refunded`` are terminal; an order under dispute keeps
    its ``shipped``/``delivered`` status while ``escrow_status`` is ``disputed``.
    """

    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class EscrowStatus(str, PyEnum):
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class DeliveryOption(str, PyEnum):
    VAULT = "vault"
    SHIP = "ship"


CONFIRMABLE_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED})
TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.REFUNDED})


class Order(Base):
    """A buyer/seller transaction whose funds are held until both sides confirm."""

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("price > 0", name="price_positive"),
        CheckConstraint("buyer_id <> seller_id", name="distinct_parties"),
        Index("ix_orders_escrow_deadline", "escrow_status", "confirmation_deadline"),
    )

    buyer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    seller_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    status: Mapped[OrderStatus] = mapped_column(
        SqlEnum(OrderStatus, values_callable=_enum_values, native_enum=False, length=32),
        default=OrderStatus.PENDING_PAYMENT,
        nullable=False,
    )
    escrow_status: Mapped[EscrowStatus] = mapped_column(
        SqlEnum(EscrowStatus, values_callable=_enum_values, native_enum=False, length=32),
        default=EscrowStatus.HELD,
        nullable=False,
    )

    buyer_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    seller_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmation_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    admin_escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    delivery_option: Mapped[DeliveryOption] = mapped_column(
        SqlEnum(DeliveryOption, values_callable=_enum_values, native_enum=False, length=16),
        default=DeliveryOption.VAULT,
        nullable=False,
    )
    shipping_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    shipping_requested_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    buyer_approved_shipping: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    seller_approved_shipping: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    buyer_shipping_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    seller_shipping_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Bumped on every flush; a stale UPDATE matches zero rows and raises StaleDataError.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    escalations = relationship(
        "OrderEscalation",
        back_populates="order",
        order_by="OrderEscalation.id",
    )

    __mapper_args__ = {"version_id_col": version}

    def party_role(self, user_id: int) -> str | None:
        """Return ``"buyer"``/``"seller"`` for a party of this order, else ``None``."""

        if user_id == self.buyer_id:
            return "buyer"
        if user_id == self.seller_id:
            return "seller"
        return None

    def counterparty_id(self, user_id: int) -> int:
        return self.seller_id if user_id == self.buyer_id else self.buyer_id

    @property
    def both_confirmed(self) -> bool:
        return self.buyer_confirmed_at is not None and self.seller_confirmed_at is not None

    @property
    def is_resolved(self) -> bool:
        return self.status in TERMINAL_STATUSES
