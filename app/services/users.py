"""User lookups and the admin identity check used for arbitration."""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import ADMIN_ROLES
from app.models.user import User, UserRole
from app.schemas.user import UserCreate
from app.utils.audit import log_audit
from app.utils.errors import InvalidInput, UserNotFound

logger = logging.getLogger(__name__)


def create_user(db: Session, payload: UserCreate, *, actor: str = "system") -> User:
    user = User(**payload.model_dump())
    db.add(user)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise InvalidInput("Username or email already in use.") from exc

    log_audit(
        db,
        actor=actor,
        action="USER_CREATED",
        entity="User",
        entity_id=user.id,
        data={"username": user.username, "email": user.email, "role": user.role.value},
    )
    db.commit()
    db.refresh(user)
    logger.info("User created", extra={"user_id": user.id, "role": user.role.value})
    return user


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise UserNotFound("User not found.", details={"user_id": user_id})
    return user


def is_admin(db: Session, user_id: int | None) -> bool:
    """Return True when ``user_id`` is an active admin or moderator."""

    if user_id is None:
        return False
    user = db.get(User, user_id)
    return bool(user and user.is_active and user.role.value in ADMIN_ROLES)


def admin_ids(db: Session) -> list[int]:
    """Identities that receive escalation alerts."""

    stmt = (
        select(User.id)
        .where(User.is_active.is_(True), User.role.in_([UserRole(role) for role in sorted(ADMIN_ROLES)]))
        .order_by(User.id)
    )
    return list(db.scalars(stmt))


__all__ = ["create_user", "get_user", "is_admin", "admin_ids"]
