"""Best-effort notification dispatch for escrow state changes.

Notifications are collected while a transition runs and handed to the
notifier only after the transition committed. A failing notifier is logged
and never rolls back or fails the escrow decision that triggered it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from sqlalchemy.orm import Session, sessionmaker

from app import db
from app.models.notification import Notification

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, recipient_id: int, event_type: str, payload: dict[str, Any]) -> None:
        ...


@dataclass(frozen=True)
class OutboundNotification:
    recipient_id: int
    event_type: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        return {"title": self.title, "body": self.body, **self.data}


class DatabaseNotifier:
    """Writes each notification to the ``notifications`` outbox in its own session."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def notify(self, recipient_id: int, event_type: str, payload: dict[str, Any]) -> None:
        data = dict(payload)
        title = str(data.pop("title", event_type))
        body = str(data.pop("body", ""))
        with self._session_factory() as session:
            db.acquire_write_lock(session)
            session.add(
                Notification(
                    user_id=recipient_id,
                    type=event_type,
                    title=title,
                    body=body,
                    data_json=data,
                )
            )
            session.commit()


class LoggingNotifier:
    """Notifier for dry runs and scripts: emits a log line per notification."""

    def notify(self, recipient_id: int, event_type: str, payload: dict[str, Any]) -> None:
        logger.info(
            "Notification",
            extra={"recipient_id": recipient_id, "event_type": event_type, "order_id": payload.get("order_id")},
        )


def dispatch(notifier: Notifier | None, notifications: Iterable[OutboundNotification]) -> int:
    """Send ``notifications``; return how many were delivered to the notifier."""

    if notifier is None:
        return 0
    delivered = 0
    for item in notifications:
        try:
            notifier.notify(item.recipient_id, item.event_type, item.payload())
        except Exception:  # noqa: BLE001 - notification is best-effort
            logger.exception(
                "Notification delivery failed",
                extra={"recipient_id": item.recipient_id, "event_type": item.event_type},
            )
            continue
        delivered += 1
    return delivered


def get_notifier() -> Notifier:
    """FastAPI dependency returning the default database-backed notifier."""

    return DatabaseNotifier(db.get_sessionmaker())


__all__ = [
    "Notifier",
    "OutboundNotification",
    "DatabaseNotifier",
    "LoggingNotifier",
    "dispatch",
    "get_notifier",
]
