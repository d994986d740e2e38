"""Atomic execution of a single escrow state transition.

Each transition reads the order under a row lock, decides, and writes through
the ORM. The ``version`` column turns every UPDATE into a compare-and-swap, so
a writer that lost a race gets ``StaleDataError`` at flush time; the whole
unit of work is then rolled back and the decision re-evaluated on fresh state.
"""
from __future__ import annotations

import logging
from typing import Callable, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.config import get_settings
from app.services.notifications import Notifier, OutboundNotification, dispatch

logger = logging.getLogger(__name__)

T = TypeVar("T")

Outbox = list[OutboundNotification]


def run_transition(
    db: Session,
    operation: Callable[[Outbox], T],
    *,
    notifier: Notifier | None,
    name: str,
    attempts: int | None = None,
) -> T:
    """Run ``operation`` in one transaction, retrying lost compare-and-swap races.

    ``operation`` stages its writes on ``db`` and appends the notifications it
    wants sent to the outbox it receives. Nothing is sent unless the commit
    succeeds. Domain errors and store failures roll back and propagate unchanged.
    """

    max_attempts = attempts or get_settings().TRANSITION_MAX_ATTEMPTS
    for attempt in range(1, max_attempts + 1):
        outbox: Outbox = []
        try:
            result = operation(outbox)
            db.commit()
        except StaleDataError:
            db.rollback()
            if attempt >= max_attempts:
                logger.warning(
                    "Transition lost every compare-and-swap attempt",
                    extra={"transition": name, "attempts": attempt},
                )
                raise
            logger.info("Concurrent update detected, retrying", extra={"transition": name, "attempt": attempt})
            continue
        except Exception:
            db.rollback()
            raise
        dispatch(notifier, outbox)
        return result
    raise RuntimeError(f"transition {name!r} configured with no attempts")  # pragma: no cover


__all__ = ["Outbox", "run_transition"]
