"""Escalation records: manual disputes, system escalations and arbitration.

This is the only module allowed to move an order into a terminal resolved
state outside the two-party happy path. Every order mutation here is written
in the same transaction as the escalation record it belongs to.
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db import acquire_write_lock
from app.models.escalation import EscalationType, OrderEscalation, ResolutionAction
from app.models.order import CONFIRMABLE_STATUSES, EscrowStatus, Order, OrderStatus
from app.services.escalation_types import describe_escalation_type
from app.services.notifications import Notifier, OutboundNotification
from app.services.orders import audit_order, lock_order
from app.services.transitions import Outbox, run_transition
from app.services.users import admin_ids, is_admin
from app.utils.audit import actor_label, log_audit
from app.utils.errors import (
    AlreadyResolved,
    EscalationNotFound,
    InvalidInput,
    NotAParty,
    NotAuthorized,
    PreconditionFailed,
)
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 2000

_DISPUTE_TYPES = {
    "buyer": EscalationType.BUYER_DISPUTE,
    "seller": EscalationType.SELLER_DISPUTE,
}


def find_open_escalation(db: Session, order_id: int) -> OrderEscalation | None:
    stmt = select(OrderEscalation).where(
        OrderEscalation.order_id == order_id,
        OrderEscalation.resolved_at.is_(None),
    )
    return db.scalars(stmt).first()


def open_escalation(
    db: Session,
    order: Order,
    outbox: Outbox,
    *,
    escalation_type: EscalationType,
    escalated_by: int | None,
    reason: str,
    actor: str,
    now: datetime | None = None,
) -> OrderEscalation:
    """Stage a new escalation and put the order's escrow into dispute.

    Caller holds the order lock. The flush surfaces a duplicate open escalation
    as ``IntegrityError`` from the partial unique index.
    """

    stamp = now or utcnow()
    escalation = OrderEscalation(
        order_id=order.id,
        escalation_type=escalation_type,
        escalated_by=escalated_by,
        reason=reason,
    )
    db.add(escalation)
    order.escrow_status = EscrowStatus.DISPUTED
    order.admin_escalated_at = stamp
    order.escalation_reason = reason
    db.flush()

    audit_order(
        db,
        order,
        actor=actor,
        action="ESCROW_DISPUTED",
        data={"escalation_id": escalation.id, "escalation_type": escalation_type.value},
    )
    label = describe_escalation_type(escalation_type).label
    for admin_id in admin_ids(db):
        outbox.append(
            OutboundNotification(
                recipient_id=admin_id,
                event_type="admin_escalation",
                title="Order Escalation Required",
                body=f"Order #{order.id} has been escalated ({label}): {reason}",
                data={"order_id": order.id, "escalation_id": escalation.id, "escalated_by": escalated_by},
            )
        )
    return escalation


def escalate(
    db: Session,
    order_id: int,
    actor_id: int,
    reason: str,
    *,
    notifier: Notifier | None = None,
) -> OrderEscalation:
    """Open a manual dispute on behalf of the buyer or seller."""

    cleaned = (reason or "").strip()
    if not cleaned:
        raise InvalidInput("A reason is required to escalate an order.")
    if len(cleaned) > MAX_REASON_LENGTH:
        raise InvalidInput(
            f"Reason must be at most {MAX_REASON_LENGTH} characters.", details={"length": len(cleaned)}
        )

    def _apply(outbox: Outbox) -> OrderEscalation:
        order = lock_order(db, order_id)
        role = order.party_role(actor_id)
        if role is None:
            raise NotAParty("Only the buyer or seller can escalate this order.", details={"order_id": order_id})
        if order.is_resolved:
            raise AlreadyResolved("Order is already resolved.", details={"status": order.status.value})
        if order.status not in CONFIRMABLE_STATUSES:
            raise PreconditionFailed(
                "Order must be shipped or delivered before it can be escalated.",
                details={"status": order.status.value},
            )
        if order.escrow_status != EscrowStatus.HELD or find_open_escalation(db, order.id) is not None:
            raise PreconditionFailed("Order already has an open escalation.", details={"order_id": order_id})

        return open_escalation(
            db,
            order,
            outbox,
            escalation_type=_DISPUTE_TYPES[role],
            escalated_by=actor_id,
            reason=cleaned,
            actor=actor_label(actor_id),
        )

    try:
        escalation = run_transition(db, _apply, notifier=notifier, name="escalate")
    except IntegrityError as exc:
        # Lost the race against another escalation for the same order.
        raise PreconditionFailed("Order already has an open escalation.", details={"order_id": order_id}) from exc
    logger.info(
        "Order escalated",
        extra={"order_id": order_id, "escalation_id": escalation.id, "actor": actor_id},
    )
    return escalation


def _lock_escalation(db: Session, escalation_id: int) -> OrderEscalation:
    acquire_write_lock(db)
    stmt = (
        select(OrderEscalation)
        .where(OrderEscalation.id == escalation_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    escalation = db.execute(stmt).scalar_one_or_none()
    if escalation is None:
        raise EscalationNotFound("Escalation not found.", details={"escalation_id": escalation_id})
    return escalation


def resolve(
    db: Session,
    escalation_id: int,
    admin_id: int,
    action: ResolutionAction | str,
    notes: str = "",
    *,
    notifier: Notifier | None = None,
) -> OrderEscalation:
    """Apply an admin's binding decision to release or refund escrowed funds.

    Resolving twice is rejected: the first resolution already triggered an
    irreversible fund movement.
    """

    try:
        resolution = ResolutionAction(action)
    except ValueError as exc:
        raise InvalidInput(
            "Action must be 'released' or 'refunded'.", details={"action": str(action)}
        ) from exc

    def _apply(outbox: Outbox) -> OrderEscalation:
        escalation = _lock_escalation(db, escalation_id)
        if not is_admin(db, admin_id):
            raise NotAuthorized("Only admins can resolve escalations.", details={"actor": admin_id})
        if escalation.resolved_at is not None:
            raise AlreadyResolved(
                "Escalation is already resolved.",
                details={"escalation_id": escalation_id, "resolved_at": escalation.resolved_at.isoformat()},
            )
        order = lock_order(db, escalation.order_id)
        now = utcnow()

        if resolution == ResolutionAction.RELEASED:
            if order.buyer_confirmed_at is None:
                order.buyer_confirmed_at = now
            if order.seller_confirmed_at is None:
                order.seller_confirmed_at = now
            order.status = OrderStatus.COMPLETED
            order.escrow_status = EscrowStatus.RELEASED
        else:
            order.status = OrderStatus.REFUNDED
            order.escrow_status = EscrowStatus.REFUNDED

        escalation.resolved_at = now
        escalation.resolved_by = admin_id
        escalation.resolution_action = resolution
        escalation.resolution_notes = notes

        actor = actor_label(admin_id)
        log_audit(
            db,
            actor=actor,
            action="ESCALATION_RESOLVED",
            entity="OrderEscalation",
            entity_id=escalation.id,
            data={"action": resolution.value, "order_id": order.id},
        )
        audit_order(
            db,
            order,
            actor=actor,
            action="ESCROW_RELEASED" if resolution == ResolutionAction.RELEASED else "ESCROW_REFUNDED",
            data={"escalation_id": escalation.id},
        )
        for recipient in (order.buyer_id, order.seller_id):
            outbox.append(
                OutboundNotification(
                    recipient_id=recipient,
                    event_type="escalation_resolved",
                    title="Order Dispute Resolved",
                    body=f"Admin has resolved the dispute: {resolution.value}",
                    data={"order_id": order.id, "escalation_id": escalation.id, "action": resolution.value},
                )
            )
        return escalation

    escalation = run_transition(db, _apply, notifier=notifier, name="resolve")
    logger.info(
        "Escalation resolved",
        extra={"escalation_id": escalation.id, "order_id": escalation.order_id, "action": resolution.value},
    )
    return escalation


def get_escalation(db: Session, escalation_id: int) -> OrderEscalation:
    escalation = db.get(OrderEscalation, escalation_id)
    if escalation is None:
        raise EscalationNotFound("Escalation not found.", details={"escalation_id": escalation_id})
    return escalation


def list_open_escalations(db: Session) -> list[OrderEscalation]:
    """Unresolved escalations, oldest first."""

    stmt = (
        select(OrderEscalation)
        .where(OrderEscalation.resolved_at.is_(None))
        .order_by(OrderEscalation.created_at, OrderEscalation.id)
    )
    return list(db.scalars(stmt))


def escalation_stats(db: Session) -> dict[str, int]:
    """Counts of open escalations by category, as shown on the admin queue."""

    stmt = (
        select(OrderEscalation.escalation_type, func.count(OrderEscalation.id))
        .where(OrderEscalation.resolved_at.is_(None))
        .group_by(OrderEscalation.escalation_type)
    )
    stats = {"pending": 0, "no_confirmations": 0, "disputes": 0, "timeouts": 0}
    buckets = {"no_confirm": "no_confirmations", "dispute": "disputes", "timeout": "timeouts"}
    for escalation_type, count in db.execute(stmt):
        stats["pending"] += count
        bucket = buckets.get(describe_escalation_type(escalation_type).category)
        if bucket:
            stats[bucket] += count
    return stats


__all__ = [
    "MAX_REASON_LENGTH",
    "escalate",
    "escalation_stats",
    "find_open_escalation",
    "get_escalation",
    "list_open_escalations",
    "open_escalation",
    "resolve",
]
