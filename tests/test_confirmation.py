import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import select

from app.models import AuditLog, EscrowStatus, Order, OrderStatus
from app.services import confirmation as confirmation_service
from app.services import escalations as escalation_service
from app.utils.errors import NotAParty, OrderNotFound, PreconditionFailed
from app.utils.time import ensure_utc


def _reload(db_session, order_id: int) -> Order:
    return db_session.get(Order, order_id, populate_existing=True)


def test_first_confirmation_notifies_counterparty(db_session, make_order, notifier):
    order = make_order()

    result = confirmation_service.confirm(db_session, order.id, order.buyer_id, notifier=notifier)

    assert result.buyer_confirmed_at is not None
    assert result.seller_confirmed_at is None
    assert result.status == OrderStatus.DELIVERED
    assert result.escrow_status == EscrowStatus.HELD
    assert notifier.recipients("order_confirmed") == [order.seller_id]
    assert notifier.events("order_completed") == []


def test_second_confirmation_completes_and_releases(db_session, make_order, notifier):
    order = make_order()

    confirmation_service.confirm(db_session, order.id, order.seller_id, notifier=notifier)
    result = confirmation_service.confirm(db_session, order.id, order.buyer_id, notifier=notifier)

    assert result.status == OrderStatus.COMPLETED
    assert result.escrow_status == EscrowStatus.RELEASED
    assert notifier.recipients("order_completed") == sorted([order.buyer_id, order.seller_id])

    actions = db_session.scalars(
        select(AuditLog.action).where(AuditLog.entity == "Order", AuditLog.entity_id == order.id)
    ).all()
    assert "ESCROW_RELEASED" in actions


def test_shipped_order_can_be_confirmed(db_session, make_order, notifier):
    order = make_order(status="shipped")

    result = confirmation_service.confirm(db_session, order.id, order.buyer_id, notifier=notifier)

    assert result.buyer_confirmed_at is not None
    assert result.status == OrderStatus.SHIPPED


def test_repeat_confirmation_is_a_noop(db_session, make_order, notifier):
    order = make_order()

    first = confirmation_service.confirm(db_session, order.id, order.buyer_id, notifier=notifier)
    stamp = ensure_utc(first.buyer_confirmed_at)
    second = confirmation_service.confirm(db_session, order.id, order.buyer_id, notifier=notifier)

    assert ensure_utc(second.buyer_confirmed_at) == stamp
    assert second.status == OrderStatus.DELIVERED
    assert len(notifier.events("order_confirmed")) == 1


def test_confirmation_on_completed_order_returns_state(db_session, make_order, notifier):
    order = make_order()
    confirmation_service.confirm(db_session, order.id, order.buyer_id, notifier=notifier)
    confirmation_service.confirm(db_session, order.id, order.seller_id, notifier=notifier)
    sent = len(notifier.sent)

    result = confirmation_service.confirm(db_session, order.id, order.seller_id, notifier=notifier)

    assert result.status == OrderStatus.COMPLETED
    assert len(notifier.sent) == sent


def test_outsider_cannot_confirm(db_session, make_order, make_user, notifier):
    order = make_order()
    outsider = make_user(name="outsider")

    with pytest.raises(NotAParty):
        confirmation_service.confirm(db_session, order.id, outsider.id, notifier=notifier)

    fresh = _reload(db_session, order.id)
    assert fresh.buyer_confirmed_at is None
    assert fresh.seller_confirmed_at is None
    assert notifier.sent == []


@pytest.mark.parametrize("status", ["pending_payment", "paid"])
def test_confirmation_requires_shipment(db_session, make_order, notifier, status):
    order = make_order(status=status)

    with pytest.raises(PreconditionFailed):
        confirmation_service.confirm(db_session, order.id, order.buyer_id, notifier=notifier)

    assert _reload(db_session, order.id).buyer_confirmed_at is None


def test_confirmation_closed_while_disputed(db_session, make_order, notifier):
    order = make_order()
    escalation_service.escalate(db_session, order.id, order.buyer_id, "Item is damaged", notifier=notifier)

    with pytest.raises(PreconditionFailed):
        confirmation_service.confirm(db_session, order.id, order.seller_id, notifier=notifier)

    fresh = _reload(db_session, order.id)
    assert fresh.seller_confirmed_at is None
    assert fresh.escrow_status == EscrowStatus.DISPUTED


def test_unknown_order(db_session, make_user, notifier):
    user = make_user()

    with pytest.raises(OrderNotFound):
        confirmation_service.confirm(db_session, 999_999, user.id, notifier=notifier)


def test_confirmation_without_notifier(db_session, make_order):
    order = make_order()

    result = confirmation_service.confirm(db_session, order.id, order.buyer_id)

    assert result.buyer_confirmed_at is not None


def test_racing_confirmations_complete_exactly_once(session_factory, make_order, notifier):
    order = make_order()
    barrier = threading.Barrier(2)

    def _confirm(actor_id: int) -> OrderStatus:
        with session_factory() as session:
            barrier.wait()
            return confirmation_service.confirm(session, order.id, actor_id, notifier=notifier).status

    with ThreadPoolExecutor(max_workers=2) as pool:
        statuses = list(pool.map(_confirm, [order.buyer_id, order.seller_id]))

    assert OrderStatus.COMPLETED in statuses
    with session_factory() as session:
        fresh = session.get(Order, order.id)
        assert fresh.status == OrderStatus.COMPLETED
        assert fresh.escrow_status == EscrowStatus.RELEASED
        released = session.scalars(
            select(AuditLog).where(
                AuditLog.entity == "Order",
                AuditLog.entity_id == order.id,
                AuditLog.action == "ESCROW_RELEASED",
            )
        ).all()
    assert len(released) == 1
    assert notifier.recipients("order_completed") == sorted([order.buyer_id, order.seller_id])
    assert len(notifier.events("order_confirmed")) == 1
