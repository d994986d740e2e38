"""Background jobs run by the in-process scheduler or an external cron."""
from __future__ import annotations

import logging

from app import db
from app.services.deadline_scanner import SweepResult, sweep_overdue
from app.services.notifications import DatabaseNotifier

logger = logging.getLogger(__name__)


def sweep_overdue_once() -> SweepResult | None:
    """Run one deadline sweep against the configured database."""

    session_factory = db.get_sessionmaker()
    try:
        return sweep_overdue(session_factory, notifier=DatabaseNotifier(session_factory))
    except Exception:  # noqa: BLE001 - keep the scheduler alive; next tick retries
        logger.exception("Deadline sweep aborted")
        return None
