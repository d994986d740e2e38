import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.models import (
    AuditLog,
    EscalationType,
    EscrowStatus,
    Order,
    OrderEscalation,
    OrderStatus,
    ResolutionAction,
    UserRole,
)
from app.services import confirmation as confirmation_service
from app.services import escalations as escalation_service
from app.services.escalation_types import describe_escalation_type
from app.utils.errors import (
    AlreadyResolved,
    EscalationNotFound,
    InvalidInput,
    NotAParty,
    NotAuthorized,
    PreconditionFailed,
)
from app.utils.time import utcnow


def _reload(db_session, order_id: int) -> Order:
    return db_session.get(Order, order_id, populate_existing=True)


def test_buyer_dispute_opens_escalation(db_session, make_order, admin, notifier):
    order = make_order()

    escalation = escalation_service.escalate(
        db_session, order.id, order.buyer_id, "  Item arrived damaged  ", notifier=notifier
    )

    assert escalation.escalation_type == EscalationType.BUYER_DISPUTE
    assert escalation.escalated_by == order.buyer_id
    assert escalation.reason == "Item arrived damaged"
    assert escalation.resolved_at is None

    fresh = _reload(db_session, order.id)
    assert fresh.escrow_status == EscrowStatus.DISPUTED
    assert fresh.status == OrderStatus.DELIVERED
    assert fresh.admin_escalated_at is not None
    assert fresh.escalation_reason == "Item arrived damaged"

    alerts = notifier.events("admin_escalation")
    assert [recipient for recipient, _, _ in alerts] == [admin.id]
    assert alerts[0][2]["escalation_id"] == escalation.id


def test_seller_dispute_type(db_session, make_order, notifier):
    order = make_order(status="shipped")

    escalation = escalation_service.escalate(db_session, order.id, order.seller_id, "No payment", notifier=notifier)

    assert escalation.escalation_type == EscalationType.SELLER_DISPUTE


def test_escalation_alerts_every_active_admin(db_session, make_order, make_user, notifier):
    admin = make_user(UserRole.ADMIN)
    moderator = make_user(UserRole.MODERATOR)
    make_user(UserRole.ADMIN, is_active=False)
    order = make_order()

    escalation_service.escalate(db_session, order.id, order.buyer_id, "Wrong item", notifier=notifier)

    assert notifier.recipients("admin_escalation") == sorted([admin.id, moderator.id])


@pytest.mark.parametrize("reason", ["", "   ", "x" * (escalation_service.MAX_REASON_LENGTH + 1)])
def test_escalation_reason_is_validated(db_session, make_order, notifier, reason):
    order = make_order()

    with pytest.raises(InvalidInput):
        escalation_service.escalate(db_session, order.id, order.buyer_id, reason, notifier=notifier)

    assert _reload(db_session, order.id).escrow_status == EscrowStatus.HELD


def test_outsider_cannot_escalate(db_session, make_order, make_user, notifier):
    order = make_order()
    outsider = make_user()

    with pytest.raises(NotAParty):
        escalation_service.escalate(db_session, order.id, outsider.id, "Let me in", notifier=notifier)


def test_escalation_requires_shipment(db_session, make_order, notifier):
    order = make_order(status="paid")

    with pytest.raises(PreconditionFailed):
        escalation_service.escalate(db_session, order.id, order.buyer_id, "Too slow", notifier=notifier)


def test_second_escalation_is_rejected(db_session, make_order, notifier):
    order = make_order()
    escalation_service.escalate(db_session, order.id, order.buyer_id, "Damaged", notifier=notifier)

    with pytest.raises(PreconditionFailed):
        escalation_service.escalate(db_session, order.id, order.seller_id, "Buyer is lying", notifier=notifier)

    count = db_session.scalars(select(OrderEscalation).where(OrderEscalation.order_id == order.id)).all()
    assert len(count) == 1


def test_store_allows_one_open_escalation_per_order(db_session, make_order):
    order = make_order()
    db_session.add_all(
        [
            OrderEscalation(order_id=order.id, escalation_type=EscalationType.TIMEOUT, reason="first"),
            OrderEscalation(order_id=order.id, escalation_type=EscalationType.BUYER_DISPUTE, reason="second"),
        ]
    )

    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()

    db_session.add_all(
        [
            OrderEscalation(
                order_id=order.id,
                escalation_type=EscalationType.TIMEOUT,
                reason="closed",
                resolved_at=utcnow(),
                resolution_action=ResolutionAction.REFUNDED,
            ),
            OrderEscalation(order_id=order.id, escalation_type=EscalationType.BUYER_DISPUTE, reason="open"),
        ]
    )
    db_session.commit()
    assert len(db_session.scalars(select(OrderEscalation).where(OrderEscalation.order_id == order.id)).all()) == 2


def test_escalation_on_completed_order(db_session, make_order, notifier):
    order = make_order()
    confirmation_service.confirm(db_session, order.id, order.buyer_id)
    confirmation_service.confirm(db_session, order.id, order.seller_id)

    with pytest.raises(AlreadyResolved):
        escalation_service.escalate(db_session, order.id, order.buyer_id, "Changed my mind", notifier=notifier)

    assert _reload(db_session, order.id).escrow_status == EscrowStatus.RELEASED


def test_refund_resolution(db_session, make_order, admin, notifier):
    order = make_order()
    escalation = escalation_service.escalate(db_session, order.id, order.buyer_id, "Never arrived", notifier=notifier)

    resolved = escalation_service.resolve(
        db_session, escalation.id, admin.id, "refunded", "Carrier lost the parcel", notifier=notifier
    )

    assert resolved.resolved_by == admin.id
    assert resolved.resolved_at is not None
    assert resolved.resolution_action == ResolutionAction.REFUNDED
    assert resolved.resolution_notes == "Carrier lost the parcel"

    fresh = _reload(db_session, order.id)
    assert fresh.escrow_status == EscrowStatus.REFUNDED
    assert fresh.status == OrderStatus.REFUNDED
    assert notifier.recipients("escalation_resolved") == sorted([order.buyer_id, order.seller_id])

    actions = db_session.scalars(select(AuditLog.action).where(AuditLog.actor == f"user:{admin.id}")).all()
    assert set(actions) >= {"ESCALATION_RESOLVED", "ESCROW_REFUNDED"}


def test_release_resolution_fills_missing_confirmations(db_session, make_order, admin, notifier):
    order = make_order()
    confirmation_service.confirm(db_session, order.id, order.buyer_id)
    buyer_stamp = _reload(db_session, order.id).buyer_confirmed_at
    escalation = escalation_service.escalate(db_session, order.id, order.seller_id, "Dispute", notifier=notifier)

    escalation_service.resolve(db_session, escalation.id, admin.id, ResolutionAction.RELEASED, notifier=notifier)

    fresh = _reload(db_session, order.id)
    assert fresh.status == OrderStatus.COMPLETED
    assert fresh.escrow_status == EscrowStatus.RELEASED
    assert fresh.buyer_confirmed_at == buyer_stamp
    assert fresh.seller_confirmed_at is not None


def test_resolving_twice_is_rejected(db_session, make_order, make_user, admin, notifier):
    other_admin = make_user(UserRole.ADMIN)
    order = make_order()
    escalation = escalation_service.escalate(db_session, order.id, order.buyer_id, "Broken", notifier=notifier)
    escalation_service.resolve(db_session, escalation.id, admin.id, "released", notifier=notifier)
    sent = len(notifier.sent)

    with pytest.raises(AlreadyResolved):
        escalation_service.resolve(db_session, escalation.id, other_admin.id, "refunded", notifier=notifier)

    fresh = _reload(db_session, order.id)
    assert fresh.escrow_status == EscrowStatus.RELEASED
    stored = db_session.get(OrderEscalation, escalation.id, populate_existing=True)
    assert stored.resolved_by == admin.id
    assert stored.resolution_action == ResolutionAction.RELEASED
    assert len(notifier.sent) == sent


def test_non_admin_cannot_resolve(db_session, make_order, notifier):
    order = make_order()
    escalation = escalation_service.escalate(db_session, order.id, order.buyer_id, "Broken", notifier=notifier)

    with pytest.raises(NotAuthorized):
        escalation_service.resolve(db_session, escalation.id, order.buyer_id, "refunded", notifier=notifier)

    assert _reload(db_session, order.id).escrow_status == EscrowStatus.DISPUTED


def test_invalid_resolution_action(db_session, make_order, admin, notifier):
    order = make_order()
    escalation = escalation_service.escalate(db_session, order.id, order.buyer_id, "Broken", notifier=notifier)

    with pytest.raises(InvalidInput):
        escalation_service.resolve(db_session, escalation.id, admin.id, "split", notifier=notifier)


def test_unknown_escalation(db_session, admin, notifier):
    with pytest.raises(EscalationNotFound):
        escalation_service.resolve(db_session, 424242, admin.id, "released", notifier=notifier)


def test_no_new_escalation_after_refund(db_session, make_order, admin, notifier):
    order = make_order()
    escalation = escalation_service.escalate(db_session, order.id, order.buyer_id, "Broken", notifier=notifier)
    escalation_service.resolve(db_session, escalation.id, admin.id, "refunded", notifier=notifier)

    with pytest.raises(AlreadyResolved):
        escalation_service.escalate(db_session, order.id, order.seller_id, "Again", notifier=notifier)


def test_queue_lists_open_escalations_with_stats(db_session, make_order, admin, notifier):
    first = make_order()
    second = make_order()
    third = make_order()
    escalation_service.escalate(db_session, first.id, first.buyer_id, "Damaged", notifier=notifier)
    done = escalation_service.escalate(db_session, second.id, second.seller_id, "Unpaid", notifier=notifier)
    escalation_service.escalate(db_session, third.id, third.seller_id, "Unpaid", notifier=notifier)
    escalation_service.resolve(db_session, done.id, admin.id, "released", notifier=notifier)

    queue = escalation_service.list_open_escalations(db_session)
    assert [item.order_id for item in queue] == [first.id, third.id]

    stats = escalation_service.escalation_stats(db_session)
    assert stats == {"pending": 2, "no_confirmations": 0, "disputes": 2, "timeouts": 0}


def test_describe_escalation_type():
    assert describe_escalation_type("buyer_dispute").label == "Buyer Dispute"
    assert describe_escalation_type(EscalationType.TIMEOUT).category == "timeout"
    unknown = describe_escalation_type("fraud_review")
    assert unknown.label == "fraud_review"
    assert unknown.tone == "neutral"
