"""Test configuration."""
import os
import threading
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session, sessionmaker

# --- Default environment
os.environ.setdefault("DATABASE_URL", "sqlite:///./order_escrow_test.db")
os.environ.setdefault("ESCROW_ENV", "test")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from app import db  # noqa: E402
from app.core import runtime_state  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Order, User, UserRole  # noqa: E402
from app.models.base import Base  # noqa: E402
from app.schemas.order import OrderCreate  # noqa: E402
from app.services import orders as order_service  # noqa: E402
from app.services.notifications import get_notifier  # noqa: E402

ROOT = Path(__file__).resolve().parents[1]
DB_PATH = Path("./order_escrow_test.db")


def _run_migrations() -> None:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file for the session
if DB_PATH.exists():
    DB_PATH.unlink()

# --- (2) Schema comes from Alembic only
_run_migrations()


class RecordingNotifier:
    """Collects notifications instead of delivering them; safe across threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sent: list[tuple[int, str, dict[str, Any]]] = []

    def notify(self, recipient_id: int, event_type: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.sent.append((recipient_id, event_type, dict(payload)))

    def events(self, event_type: str) -> list[tuple[int, str, dict[str, Any]]]:
        with self._lock:
            return [item for item in self.sent if item[1] == event_type]

    def recipients(self, event_type: str) -> list[int]:
        return sorted(recipient for recipient, _, _ in self.events(event_type))


@pytest.fixture
def session_factory() -> sessionmaker[Session]:
    return db.get_sessionmaker()


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def clean_database(session_factory: sessionmaker[Session]) -> Iterator[None]:
    yield
    with session_factory() as session:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
    runtime_state._last_sweep = None


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture(autouse=True)
def override_notifier(notifier: RecordingNotifier) -> Iterator[None]:
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield
    app.dependency_overrides.pop(get_notifier, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _factory(role: UserRole = UserRole.USER, *, name: str | None = None, is_active: bool = True) -> User:
        prefix = name or role.value
        suffix = uuid4().hex[:8]
        user = User(
            username=f"{prefix}-{suffix}",
            email=f"{prefix}-{suffix}@example.com",
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _factory


@pytest.fixture
def admin(make_user: Callable[..., User]) -> User:
    return make_user(UserRole.ADMIN, name="admin")


@pytest.fixture
def make_order(db_session: Session, make_user: Callable[..., User]) -> Callable[..., Order]:
    """Factory creating an order and walking it through the fulfillment signals.

    ``status`` is the last fulfillment state to reach: ``pending_payment``,
    ``paid``, ``shipped`` or ``delivered``.
    """

    def _factory(
        *,
        status: str = "delivered",
        buyer: User | None = None,
        seller: User | None = None,
        delivered_at: datetime | None = None,
        confirmation_deadline: datetime | None = None,
        delivery_option: str = "vault",
        price: str = "250.00",
    ) -> Order:
        buyer = buyer or make_user(name="buyer")
        seller = seller or make_user(name="seller")
        order = order_service.create_order(
            db_session,
            OrderCreate(
                buyer_id=buyer.id,
                seller_id=seller.id,
                price=Decimal(price),
                delivery_option=delivery_option,
                confirmation_deadline=confirmation_deadline,
            ),
        )
        steps = ["pending_payment", "paid", "shipped", "delivered"]
        target = steps.index(status)
        if target >= 1:
            order = order_service.mark_paid(db_session, order.id)
        if target >= 2:
            order = order_service.mark_shipped(db_session, order.id)
        if target >= 3:
            order = order_service.order_delivered(db_session, order.id, delivered_at)
        return order

    return _factory


@pytest.fixture
def headers() -> Callable[[User], dict[str, str]]:
    def _headers(user: User) -> dict[str, str]:
        return {"X-User-Id": str(user.id)}

    return _headers
