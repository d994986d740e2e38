"""Order store access and the inbound fulfillment signals."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db import acquire_write_lock
from app.models.order import CONFIRMABLE_STATUSES, TERMINAL_STATUSES, Order, OrderStatus
from app.models.user import User
from app.schemas.order import OrderCreate
from app.services.notifications import Notifier
from app.services.transitions import Outbox, run_transition
from app.utils.audit import log_audit
from app.utils.errors import OrderNotFound, PreconditionFailed, UserNotFound
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

FULFILLMENT_ACTOR = "system:fulfillment"


def audit_order(db: Session, order: Order, *, actor: str, action: str, data: dict | None = None) -> None:
    payload = {"status": order.status.value, "escrow_status": order.escrow_status.value}
    payload.update(data or {})
    log_audit(db, actor=actor, action=action, entity="Order", entity_id=order.id, data=payload)


def default_confirmation_deadline(delivered_at: datetime) -> datetime:
    """Deadline applied when none was set: delivery time plus the grace period."""

    return ensure_utc(delivered_at) + timedelta(days=get_settings().CONFIRMATION_GRACE_DAYS)


def create_order(db: Session, payload: OrderCreate, *, actor: str = "system") -> Order:
    for user_id in (payload.buyer_id, payload.seller_id):
        if db.get(User, user_id) is None:
            raise UserNotFound("Order party not found.", details={"user_id": user_id})

    order = Order(
        buyer_id=payload.buyer_id,
        seller_id=payload.seller_id,
        price=Decimal(payload.price).quantize(Decimal("0.01")),
        currency=payload.currency,
        delivery_option=payload.delivery_option,
        confirmation_deadline=ensure_utc(payload.confirmation_deadline),
        status=OrderStatus.PENDING_PAYMENT,
    )
    db.add(order)
    db.flush()
    audit_order(db, order, actor=actor, action="ORDER_CREATED", data={"price": str(order.price)})
    db.commit()
    db.refresh(order)
    logger.info("Order created", extra={"order_id": order.id})
    return order


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise OrderNotFound("Order not found.", details={"order_id": order_id})
    return order


def lock_order(db: Session, order_id: int) -> Order:
    """Load the order with a row lock, refreshing any stale identity-map copy."""

    acquire_write_lock(db)
    stmt = (
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = db.execute(stmt).scalar_one_or_none()
    if order is None:
        raise OrderNotFound("Order not found.", details={"order_id": order_id})
    return order


def mark_paid(db: Session, order_id: int, *, actor: str = FULFILLMENT_ACTOR, notifier: Notifier | None = None) -> Order:
    def _apply(outbox: Outbox) -> Order:
        order = lock_order(db, order_id)
        if order.status != OrderStatus.PENDING_PAYMENT:
            if order.status in TERMINAL_STATUSES:
                raise PreconditionFailed("Order is already closed.", details={"status": order.status.value})
            return order
        order.status = OrderStatus.PAID
        audit_order(db, order, actor=actor, action="ORDER_PAID")
        return order

    order = run_transition(db, _apply, notifier=notifier, name="mark_paid")
    logger.info("Order paid", extra={"order_id": order_id})
    return order


def mark_shipped(
    db: Session,
    order_id: int,
    *,
    shipped_at: datetime | None = None,
    actor: str = FULFILLMENT_ACTOR,
    notifier: Notifier | None = None,
) -> Order:
    def _apply(outbox: Outbox) -> Order:
        order = lock_order(db, order_id)
        if order.status in CONFIRMABLE_STATUSES:
            return order
        if order.status != OrderStatus.PAID:
            raise PreconditionFailed(
                "Only paid orders can be shipped.", details={"status": order.status.value}
            )
        order.status = OrderStatus.SHIPPED
        order.shipped_at = ensure_utc(shipped_at) or utcnow()
        audit_order(db, order, actor=actor, action="ORDER_SHIPPED")
        return order

    order = run_transition(db, _apply, notifier=notifier, name="mark_shipped")
    logger.info("Order shipped", extra={"order_id": order_id})
    return order


def order_delivered(
    db: Session,
    order_id: int,
    timestamp: datetime | None = None,
    *,
    actor: str = FULFILLMENT_ACTOR,
    notifier: Notifier | None = None,
) -> Order:
    """Consume the fulfillment delivery signal.

    Sets ``delivered_at`` and, when no deadline was agreed up front, the
    default confirmation deadline. Re-delivery of a delivered order is a no-op.
    """

    delivered_at = ensure_utc(timestamp) or utcnow()

    def _apply(outbox: Outbox) -> Order:
        order = lock_order(db, order_id)
        if order.status == OrderStatus.DELIVERED:
            return order
        if order.status not in {OrderStatus.PAID, OrderStatus.SHIPPED}:
            raise PreconditionFailed(
                "Only paid or shipped orders can be delivered.", details={"status": order.status.value}
            )
        order.status = OrderStatus.DELIVERED
        order.delivered_at = delivered_at
        if order.confirmation_deadline is None:
            order.confirmation_deadline = default_confirmation_deadline(delivered_at)
        audit_order(
            db,
            order,
            actor=actor,
            action="ORDER_DELIVERED",
            data={"confirmation_deadline": ensure_utc(order.confirmation_deadline).isoformat()},
        )
        return order

    order = run_transition(db, _apply, notifier=notifier, name="order_delivered")
    logger.info("Order delivered", extra={"order_id": order_id})
    return order


__all__ = [
    "FULFILLMENT_ACTOR",
    "audit_order",
    "create_order",
    "default_confirmation_deadline",
    "get_order",
    "lock_order",
    "mark_paid",
    "mark_shipped",
    "order_delivered",
]
