import logging

import pytest
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from app.models import Notification, Order, OrderStatus
from app.services import confirmation as confirmation_service
from app.services.notifications import DatabaseNotifier, LoggingNotifier, OutboundNotification, dispatch
from app.services.transitions import run_transition
from app.utils.errors import PreconditionFailed
from app.utils.time import utcnow


class ExplodingNotifier:
    def __init__(self) -> None:
        self.calls = 0

    def notify(self, recipient_id, event_type, payload):
        self.calls += 1
        raise ConnectionError("mail relay down")


def test_stale_write_is_detected(session_factory, make_order):
    order = make_order()

    with session_factory() as stale, session_factory() as winner:
        stale_copy = stale.get(Order, order.id)
        confirmation_service.confirm(winner, order.id, order.buyer_id)

        stale_copy.seller_confirmed_at = utcnow()
        with pytest.raises(StaleDataError):
            stale.commit()
        stale.rollback()


def test_lost_race_is_retried(db_session):
    calls = []

    def _operation(outbox):
        calls.append(len(calls))
        if len(calls) == 1:
            raise StaleDataError("simulated concurrent update")
        return "done"

    assert run_transition(db_session, _operation, notifier=None, name="test") == "done"
    assert len(calls) == 2


def test_retries_are_bounded(db_session):
    calls = []

    def _operation(outbox):
        calls.append(1)
        raise StaleDataError("always stale")

    with pytest.raises(StaleDataError):
        run_transition(db_session, _operation, notifier=None, name="test", attempts=3)
    assert len(calls) == 3


def test_failed_transition_sends_nothing(db_session, notifier):
    def _operation(outbox):
        outbox.append(OutboundNotification(1, "order_confirmed", "t", "b"))
        raise PreconditionFailed("nope")

    with pytest.raises(PreconditionFailed):
        run_transition(db_session, _operation, notifier=notifier, name="test")
    assert notifier.sent == []


def test_notifier_failure_does_not_undo_confirmation(db_session, make_order, caplog):
    order = make_order()
    broken = ExplodingNotifier()

    with caplog.at_level(logging.ERROR, logger="app.services.notifications"):
        confirmation_service.confirm(db_session, order.id, order.buyer_id, notifier=broken)
        result = confirmation_service.confirm(db_session, order.id, order.seller_id, notifier=broken)

    assert result.status == OrderStatus.COMPLETED
    assert db_session.get(Order, order.id, populate_existing=True).status == OrderStatus.COMPLETED
    assert broken.calls == 3
    assert "Notification delivery failed" in caplog.text


def test_dispatch_continues_after_a_failure():
    class FlakyNotifier:
        def __init__(self):
            self.delivered = []

        def notify(self, recipient_id, event_type, payload):
            if recipient_id == 1:
                raise RuntimeError("boom")
            self.delivered.append(recipient_id)

    flaky = FlakyNotifier()
    items = [OutboundNotification(user_id, "order_completed", "t", "b") for user_id in (1, 2)]

    assert dispatch(flaky, items) == 1
    assert flaky.delivered == [2]
    assert dispatch(None, items) == 0


def test_database_notifier_writes_outbox_rows(session_factory, make_user):
    user = make_user()
    notifier = DatabaseNotifier(session_factory)

    notifier.notify(user.id, "order_confirmed", {"title": "Hello", "body": "World", "order_id": 7})

    with session_factory() as session:
        row = session.scalars(select(Notification).where(Notification.user_id == user.id)).one()
        assert row.type == "order_confirmed"
        assert row.title == "Hello"
        assert row.body == "World"
        assert row.data_json == {"order_id": 7}
        assert row.read_at is None


def test_logging_notifier(caplog):
    with caplog.at_level(logging.INFO, logger="app.services.notifications"):
        LoggingNotifier().notify(3, "admin_escalation", {"order_id": 9})

    assert "Notification" in caplog.text
