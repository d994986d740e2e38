"""Two-party confirmation handshake that releases escrowed funds."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.models.order import CONFIRMABLE_STATUSES, EscrowStatus, Order, OrderStatus
from app.services.notifications import Notifier, OutboundNotification
from app.services.orders import audit_order, lock_order
from app.services.transitions import Outbox, run_transition
from app.utils.audit import actor_label
from app.utils.errors import NotAParty, PreconditionFailed
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

_WAITING_MESSAGES = {
    "buyer": ("Buyer Confirmed Receipt", "The buyer has confirmed they received the item."),
    "seller": ("Seller Confirmed Payment", "The seller has confirmed they received payment."),
}


def _confirmation_attr(role: str) -> str:
    return f"{role}_confirmed_at"


def confirm(db: Session, order_id: int, actor_id: int, *, notifier: Notifier | None = None) -> Order:
    """Record ``actor_id``'s attestation that their side of the order completed.

    Repeat calls, and calls on an order that is already completed or refunded,
    return the current state unchanged. The call that supplies the second
    confirmation completes the order and releases escrow.
    """

    def _apply(outbox: Outbox) -> Order:
        order = lock_order(db, order_id)
        role = order.party_role(actor_id)
        if role is None:
            raise NotAParty("Only the buyer or seller can confirm this order.", details={"order_id": order_id})
        if order.is_resolved:
            logger.info("Confirmation ignored on resolved order", extra={"order_id": order_id, "actor": actor_id})
            return order
        if getattr(order, _confirmation_attr(role)) is not None:
            return order
        if order.escrow_status == EscrowStatus.DISPUTED:
            raise PreconditionFailed(
                "Order is under arbitration; confirmations are closed.", details={"order_id": order_id}
            )
        if order.status not in CONFIRMABLE_STATUSES:
            raise PreconditionFailed(
                "Order must be shipped or delivered before it can be confirmed.",
                details={"status": order.status.value},
            )

        now = utcnow()
        setattr(order, _confirmation_attr(role), now)
        counterparty_id = order.counterparty_id(actor_id)
        data = {"order_id": order.id}

        if order.both_confirmed:
            order.status = OrderStatus.COMPLETED
            order.escrow_status = EscrowStatus.RELEASED
            audit_order(db, order, actor=actor_label(actor_id), action="ESCROW_RELEASED", data={"confirmed_by": role})
            for recipient in (order.buyer_id, order.seller_id):
                outbox.append(
                    OutboundNotification(
                        recipient_id=recipient,
                        event_type="order_completed",
                        title="Transaction Complete",
                        body="Both parties have confirmed. Escrowed funds have been released to the seller.",
                        data=data,
                    )
                )
        else:
            audit_order(db, order, actor=actor_label(actor_id), action="ORDER_CONFIRMED", data={"confirmed_by": role})
            title, body = _WAITING_MESSAGES[role]
            outbox.append(
                OutboundNotification(
                    recipient_id=counterparty_id,
                    event_type="order_confirmed",
                    title=title,
                    body=f"{body} Your confirmation is still needed.",
                    data=data,
                )
            )
        return order

    order = run_transition(db, _apply, notifier=notifier, name="confirm")
    logger.info(
        "Order confirmation processed",
        extra={"order_id": order.id, "actor": actor_id, "status": order.status.value},
    )
    return order


__all__ = ["confirm"]
