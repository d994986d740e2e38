"""Escalation model: an order that needs human arbitration."""
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Enum as SqlEnum, ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class EscalationType(str, PyEnum):
    BUYER_NO_CONFIRM = "buyer_no_confirm"
    SELLER_NO_CONFIRM = "seller_no_confirm"
    BUYER_DISPUTE = "buyer_dispute"
    SELLER_DISPUTE = "seller_dispute"
    TIMEOUT = "timeout"


class ResolutionAction(str, PyEnum):
    RELEASED = "released"
    REFUNDED = "refunded"


OPEN_ESCALATION_PREDICATE = "resolved_at IS NULL"


class OrderEscalation(Base):
    """A dispute or overdue-confirmation case; kept forever as an audit trail."""

    __tablename__ = "order_escalations"
    __table_args__ = (
        # At most one unresolved escalation per order.
        Index(
            "uq_order_escalations_open_order",
            "order_id",
            unique=True,
            sqlite_where=text(OPEN_ESCALATION_PREDICATE),
            postgresql_where=text(OPEN_ESCALATION_PREDICATE),
        ),
    )

    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    escalation_type: Mapped[EscalationType] = mapped_column(
        SqlEnum(
            EscalationType,
            values_callable=lambda enum: [item.value for item in enum],
            native_enum=False,
            length=32,
        ),
        nullable=False,
    )
    escalated_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")

    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    resolution_action: Mapped[ResolutionAction | None] = mapped_column(
        SqlEnum(
            ResolutionAction,
            values_callable=lambda enum: [item.value for item in enum],
            native_enum=False,
            length=16,
        ),
        nullable=True,
    )
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    order = relationship("Order", back_populates="escalations")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None
