"""Admin escalation queue and arbitration endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app import db as database
from app.db import get_db
from app.models.escalation import OrderEscalation
from app.models.user import User
from app.schemas.escalation import EscalationRead, EscalationStats, ResolveRequest, SweepRead
from app.security import require_admin
from app.services import escalations as escalation_service
from app.services.deadline_scanner import sweep_overdue
from app.services.notifications import Notifier, get_notifier

router = APIRouter(prefix="/escalations", tags=["escalations"], dependencies=[Depends(require_admin)])


@router.get("", response_model=list[EscalationRead])
def list_escalations(db: Session = Depends(get_db)) -> list[OrderEscalation]:
    """Unresolved escalations, oldest first."""

    return escalation_service.list_open_escalations(db)


@router.get("/stats", response_model=EscalationStats)
def escalation_stats(db: Session = Depends(get_db)) -> EscalationStats:
    return EscalationStats(**escalation_service.escalation_stats(db))


@router.get("/{escalation_id}", response_model=EscalationRead)
def read_escalation(escalation_id: int, db: Session = Depends(get_db)) -> OrderEscalation:
    return escalation_service.get_escalation(db, escalation_id)


@router.post("/{escalation_id}/resolve", response_model=EscalationRead)
def resolve_escalation(
    escalation_id: int,
    payload: ResolveRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    notifier: Notifier = Depends(get_notifier),
) -> OrderEscalation:
    return escalation_service.resolve(
        db, escalation_id, admin.id, payload.action, payload.notes, notifier=notifier
    )


@router.post("/sweep", response_model=SweepRead, status_code=status.HTTP_200_OK)
def sweep_overdue_orders(notifier: Notifier = Depends(get_notifier)) -> SweepRead:
    """Escalate overdue orders now instead of waiting for the scheduled sweep."""

    result = sweep_overdue(database.get_sessionmaker(), notifier=notifier)
    return SweepRead(**result.as_dict())
