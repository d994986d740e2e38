"""User endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.user import User
from app.schemas.user import UserCreate, UserRead
from app.security import require_actor, require_admin
from app.services import users as user_service
from app.utils.audit import actor_label

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
) -> User:
    """Create a new user."""

    return user_service.create_user(db, payload, actor=actor_label(admin.id))


@router.get("/{user_id}", response_model=UserRead, dependencies=[Depends(require_actor)])
def get_user(user_id: int, db: Session = Depends(get_db)) -> User:
    """Retrieve a user by identifier."""

    return user_service.get_user(db, user_id)
