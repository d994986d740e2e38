"""Seed sample data for local development."""
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

from app import db, models  # noqa: E402
from app.config import get_settings  # noqa: E402
from app.schemas.order import OrderCreate  # noqa: E402
from app.services import orders as order_service  # noqa: E402
from app.utils.time import utcnow  # noqa: E402


def main() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")

    db.create_all()
    session = db.get_sessionmaker()()

    try:
        alice = models.User(username="alice", email="alice@example.com")
        bob = models.User(username="bob", email="bob@example.com")
        admin = models.User(username="arbiter", email="arbiter@example.com", role=models.UserRole.ADMIN)
        session.add_all([alice, bob, admin])
        session.commit()

        fresh = order_service.create_order(
            session, OrderCreate(buyer_id=alice.id, seller_id=bob.id, price=Decimal("120.00"))
        )
        order_service.mark_paid(session, fresh.id)
        order_service.mark_shipped(session, fresh.id)

        overdue = order_service.create_order(
            session, OrderCreate(buyer_id=bob.id, seller_id=alice.id, price=Decimal("45.50"))
        )
        order_service.mark_paid(session, overdue.id)
        order_service.order_delivered(session, overdue.id, utcnow() - timedelta(days=10))
        print("Seed data inserted.")
    finally:
        session.close()


if __name__ == "__main__":
    main()
