"""Two-party shipping approval handshake: switch an order from vault storage to shipping."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.models.order import DeliveryOption, Order, OrderStatus
from app.services.notifications import Notifier, OutboundNotification
from app.services.orders import audit_order, lock_order
from app.services.transitions import Outbox, run_transition
from app.utils.audit import actor_label
from app.utils.errors import NotAParty, PreconditionFailed
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

_CLOSED_STATUSES = frozenset({OrderStatus.PENDING_PAYMENT, OrderStatus.REFUNDED})


def _approved(order: Order, role: str) -> bool:
    return bool(getattr(order, f"{role}_approved_shipping"))


def _record_approval(order: Order, role: str) -> None:
    setattr(order, f"{role}_approved_shipping", True)
    setattr(order, f"{role}_shipping_approved_at", utcnow())


def _party_role(order: Order, actor_id: int) -> str:
    role = order.party_role(actor_id)
    if role is None:
        raise NotAParty("Only the buyer or seller can change delivery.", details={"order_id": order.id})
    return role


def _apply_approval(db: Session, order: Order, actor_id: int, role: str, outbox: Outbox) -> None:
    """Record ``role``'s approval; switch to shipping when both sides agreed."""

    _record_approval(order, role)
    counterparty_id = order.counterparty_id(actor_id)
    data = {"order_id": order.id}
    if order.buyer_approved_shipping and order.seller_approved_shipping:
        order.delivery_option = DeliveryOption.SHIP
        audit_order(db, order, actor=actor_label(actor_id), action="SHIPPING_APPROVED", data={"approved_by": role})
        for recipient in (counterparty_id, actor_id):
            outbox.append(
                OutboundNotification(
                    recipient_id=recipient,
                    event_type="shipping_approved",
                    title="Shipping Approved",
                    body="Both parties have approved shipping. The order will now be shipped.",
                    data=data,
                )
            )
        return

    audit_order(db, order, actor=actor_label(actor_id), action="SHIPPING_APPROVAL_RECORDED", data={"approved_by": role})
    outbox.append(
        OutboundNotification(
            recipient_id=counterparty_id,
            event_type="shipping_approval_required",
            title="Shipping Approval Pending",
            body=f"The {role} has approved shipping. Your approval is still needed.",
            data=data,
        )
    )


def request_shipping(db: Session, order_id: int, actor_id: int, *, notifier: Notifier | None = None) -> Order:
    """Ask to ship a vault-stored order; the requester approves implicitly."""

    def _apply(outbox: Outbox) -> Order:
        order = lock_order(db, order_id)
        role = _party_role(order, actor_id)
        if order.delivery_option == DeliveryOption.SHIP:
            raise PreconditionFailed("Order is already set to ship.", details={"order_id": order_id})
        if order.status in _CLOSED_STATUSES:
            raise PreconditionFailed(
                "Shipping cannot be requested for this order.", details={"status": order.status.value}
            )
        if _approved(order, role):
            return order
        if order.shipping_requested_at is not None:
            # The counterparty asked first; asking back is agreeing.
            _apply_approval(db, order, actor_id, role, outbox)
            return order

        order.shipping_requested_at = utcnow()
        order.shipping_requested_by = actor_id
        _record_approval(order, role)
        audit_order(db, order, actor=actor_label(actor_id), action="SHIPPING_REQUESTED", data={"requested_by": role})
        outbox.append(
            OutboundNotification(
                recipient_id=order.counterparty_id(actor_id),
                event_type="shipping_approval_required",
                title="Shipping Request",
                body=f"The {role} has requested shipping for your order. Please review and approve.",
                data={"order_id": order.id},
            )
        )
        return order

    order = run_transition(db, _apply, notifier=notifier, name="request_shipping")
    logger.info("Shipping requested", extra={"order_id": order_id, "actor": actor_id})
    return order


def approve_shipping(db: Session, order_id: int, actor_id: int, *, notifier: Notifier | None = None) -> Order:
    """Approve a pending shipping request; repeat approvals are no-ops."""

    def _apply(outbox: Outbox) -> Order:
        order = lock_order(db, order_id)
        role = _party_role(order, actor_id)
        if order.delivery_option == DeliveryOption.SHIP or _approved(order, role):
            return order
        if order.shipping_requested_at is None:
            raise PreconditionFailed("No shipping request to approve.", details={"order_id": order_id})
        _apply_approval(db, order, actor_id, role, outbox)
        return order

    order = run_transition(db, _apply, notifier=notifier, name="approve_shipping")
    logger.info(
        "Shipping approval processed",
        extra={"order_id": order_id, "actor": actor_id, "delivery_option": order.delivery_option.value},
    )
    return order


__all__ = ["request_shipping", "approve_shipping"]
