"""Run one deadline sweep; meant to be invoked by an external cron.

    python -m scripts.sweep_overdue [--workers N] [--dry-run]
"""
from __future__ import annotations

import argparse
import json
import sys

from dotenv import load_dotenv

load_dotenv()

from app import db  # noqa: E402
from app.config import get_settings  # noqa: E402
from app.core.logging import setup_logging  # noqa: E402
from app.services.deadline_scanner import find_overdue_order_ids, sweep_overdue  # noqa: E402
from app.services.notifications import DatabaseNotifier  # noqa: E402
from app.utils.time import utcnow  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Escalate orders past their confirmation deadline.")
    parser.add_argument("--workers", type=int, default=None, help="worker threads (default: SWEEP_MAX_WORKERS)")
    parser.add_argument("--dry-run", action="store_true", help="list overdue orders without escalating them")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    session_factory = db.get_sessionmaker()

    if args.dry_run:
        with session_factory() as session:
            order_ids = find_overdue_order_ids(session, utcnow())
        print(json.dumps({"overdue": order_ids}))
        return 0

    result = sweep_overdue(
        session_factory,
        notifier=DatabaseNotifier(session_factory),
        max_workers=args.workers,
    )
    print(json.dumps(result.as_dict()))
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
