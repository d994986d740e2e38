# app/security.py
"""Request identity dependencies.

Authentication happens upstream; the gateway forwards the authenticated user
id in the ``X-User-Id`` header. These dependencies only resolve that id to an
active user and enforce the admin role where arbitration requires it.
"""
from __future__ import annotations

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.config import ACTOR_HEADER
from app.db import get_db
from app.models.user import User
from app.services.users import is_admin
from app.utils.errors import error_response


def _extract_actor_id(x_user_id: str | None = Header(default=None, alias=ACTOR_HEADER)) -> int | None:
    """Read the acting identity from the gateway header."""
    if x_user_id is None or not x_user_id.strip():
        return None
    try:
        return int(x_user_id.strip())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("INVALID_ACTOR", f"{ACTOR_HEADER} must be an integer user id."),
        ) from None


def require_actor(
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(_extract_actor_id),
) -> User:
    """Return the active user behind the request."""
    if actor_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_ACTOR", f"{ACTOR_HEADER} header required."),
        )
    user = db.get(User, actor_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNKNOWN_ACTOR", "Unknown or inactive user."),
        )
    return user


def require_admin(
    db: Session = Depends(get_db),
    user: User = Depends(require_actor),
) -> User:
    """Allow only admin/moderator identities."""
    if not is_admin(db, user.id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("INSUFFICIENT_ROLE", "Admin role required."),
        )
    return user


__all__ = ["require_actor", "require_admin"]
