"""Periodic sweep escalating orders whose confirmation deadline has passed.

Each overdue order is handled in its own session on a bounded worker pool,
so a slow or failing order never holds up the rest of the batch. Duplicate
escalations across repeated or concurrent sweeps are prevented by the
database (row lock plus the partial unique index on open escalations), not
by in-memory bookkeeping.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app import db as database
from app.config import get_settings
from app.core.runtime_state import record_sweep
from app.models.escalation import EscalationType, OrderEscalation
from app.models.order import CONFIRMABLE_STATUSES, EscrowStatus, Order
from app.services.escalations import find_open_escalation, open_escalation
from app.services.notifications import Notifier
from app.services.orders import lock_order
from app.services.transitions import Outbox, run_transition
from app.utils.audit import SYSTEM_SWEEP_ACTOR
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    started_at: datetime
    scanned: int = 0
    escalated: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat()
        return payload


def classify_overdue(order: Order) -> EscalationType:
    """Name the party that failed to confirm, or ``timeout`` when neither did."""

    buyer_done = order.buyer_confirmed_at is not None
    seller_done = order.seller_confirmed_at is not None
    if buyer_done and not seller_done:
        return EscalationType.SELLER_NO_CONFIRM
    if seller_done and not buyer_done:
        return EscalationType.BUYER_NO_CONFIRM
    return EscalationType.TIMEOUT


def is_overdue(order: Order, now: datetime) -> bool:
    deadline = ensure_utc(order.confirmation_deadline)
    return (
        order.escrow_status == EscrowStatus.HELD
        and order.status in CONFIRMABLE_STATUSES
        and deadline is not None
        and now > deadline
    )


_REASONS = {
    EscalationType.TIMEOUT: "Confirmation deadline passed without confirmation from either party.",
    EscalationType.SELLER_NO_CONFIRM: "Seller did not confirm before the confirmation deadline.",
    EscalationType.BUYER_NO_CONFIRM: "Buyer did not confirm before the confirmation deadline.",
}


def find_overdue_order_ids(db: Session, now: datetime) -> list[int]:
    open_escalation_exists = exists().where(
        OrderEscalation.order_id == Order.id,
        OrderEscalation.resolved_at.is_(None),
    )
    stmt = (
        select(Order.id)
        .where(
            Order.escrow_status == EscrowStatus.HELD,
            Order.status.in_(sorted(CONFIRMABLE_STATUSES)),
            Order.confirmation_deadline.is_not(None),
            Order.confirmation_deadline < now,
            ~open_escalation_exists,
        )
        .order_by(Order.confirmation_deadline, Order.id)
    )
    return list(db.scalars(stmt))


def escalate_overdue_order(
    session_factory: sessionmaker[Session],
    order_id: int,
    *,
    now: datetime,
    notifier: Notifier | None = None,
) -> OrderEscalation | None:
    """Escalate one order if it is still overdue; ``None`` when nothing was done."""

    with session_factory() as db:

        def _apply(outbox: Outbox) -> OrderEscalation | None:
            order = lock_order(db, order_id)
            if not is_overdue(order, now) or find_open_escalation(db, order.id) is not None:
                return None
            escalation_type = classify_overdue(order)
            return open_escalation(
                db,
                order,
                outbox,
                escalation_type=escalation_type,
                escalated_by=None,
                reason=_REASONS[escalation_type],
                actor=SYSTEM_SWEEP_ACTOR,
                now=now,
            )

        try:
            escalation = run_transition(db, _apply, notifier=notifier, name="sweep_overdue")
        except IntegrityError:
            logger.info("Order escalated concurrently, skipping", extra={"order_id": order_id})
            return None

    if escalation is not None:
        logger.info(
            "Overdue order escalated",
            extra={
                "order_id": order_id,
                "escalation_id": escalation.id,
                "escalation_type": escalation.escalation_type.value,
            },
        )
    return escalation


def sweep_overdue(
    session_factory: sessionmaker[Session] | None = None,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
    max_workers: int | None = None,
) -> SweepResult:
    """Escalate every order past its confirmation deadline without a unanimous confirmation."""

    factory = session_factory or database.get_sessionmaker()
    started_at = ensure_utc(now) or utcnow()
    result = SweepResult(started_at=started_at)

    with factory() as db:
        order_ids = find_overdue_order_ids(db, started_at)
    result.scanned = len(order_ids)

    if order_ids:
        workers = max_workers or get_settings().SWEEP_MAX_WORKERS
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="deadline-sweep") as pool:
            futures = {
                pool.submit(escalate_overdue_order, factory, order_id, now=started_at, notifier=notifier): order_id
                for order_id in order_ids
            }
            for future in as_completed(futures):
                order_id = futures[future]
                try:
                    escalation = future.result()
                except Exception:  # noqa: BLE001 - one bad order must not abort the sweep
                    logger.exception("Overdue escalation failed", extra={"order_id": order_id})
                    result.failed.append(order_id)
                    continue
                (result.escalated if escalation is not None else result.skipped).append(order_id)

    for bucket in (result.escalated, result.skipped, result.failed):
        bucket.sort()
    record_sweep(result.as_dict())
    logger.info(
        "Deadline sweep finished",
        extra={
            "scanned": result.scanned,
            "escalated": len(result.escalated),
            "skipped": len(result.skipped),
            "failed": len(result.failed),
        },
    )
    return result


__all__ = [
    "SweepResult",
    "classify_overdue",
    "escalate_overdue_order",
    "find_overdue_order_ids",
    "is_overdue",
    "sweep_overdue",
]
