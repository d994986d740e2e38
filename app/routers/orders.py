"""Order endpoints: fulfillment signals, confirmations, disputes and shipping approval."""
from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.escalation import OrderEscalation
from app.models.order import Order
from app.models.user import User
from app.schemas.escalation import EscalateRequest, EscalationRead
from app.schemas.order import DeliverySignal, OrderCreate, OrderRead
from app.security import require_actor, require_admin
from app.services import confirmation as confirmation_service
from app.services import escalations as escalation_service
from app.services import orders as order_service
from app.services import shipping as shipping_service
from app.services.notifications import Notifier, get_notifier
from app.services.users import is_admin
from app.utils.audit import actor_label
from app.utils.errors import NotAParty

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
) -> Order:
    return order_service.create_order(db, payload, actor=actor_label(admin.id))


@router.get("/{order_id}", response_model=OrderRead)
def read_order(
    order_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_actor),
) -> Order:
    order = order_service.get_order(db, order_id)
    if order.party_role(user.id) is None and not is_admin(db, user.id):
        raise NotAParty("Only the parties of an order can view it.", details={"order_id": order_id})
    return order


# --- Fulfillment signals (called by the fulfillment integration) ------------


@router.post("/{order_id}/paid", response_model=OrderRead)
def mark_paid(
    order_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
) -> Order:
    return order_service.mark_paid(db, order_id, actor=actor_label(admin.id))


@router.post("/{order_id}/shipped", response_model=OrderRead)
def mark_shipped(
    order_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
) -> Order:
    return order_service.mark_shipped(db, order_id, actor=actor_label(admin.id))


@router.post("/{order_id}/delivered", response_model=OrderRead)
def mark_delivered(
    order_id: int,
    payload: DeliverySignal | None = Body(default=None),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
) -> Order:
    timestamp = payload.delivered_at if payload else None
    return order_service.order_delivered(db, order_id, timestamp, actor=actor_label(admin.id))


# --- Two-party workflow -------------------------------------------------------


@router.post("/{order_id}/confirm", response_model=OrderRead)
def confirm_order(
    order_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_actor),
    notifier: Notifier = Depends(get_notifier),
) -> Order:
    return confirmation_service.confirm(db, order_id, user.id, notifier=notifier)


@router.post("/{order_id}/escalate", response_model=EscalationRead, status_code=status.HTTP_201_CREATED)
def escalate_order(
    order_id: int,
    payload: EscalateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_actor),
    notifier: Notifier = Depends(get_notifier),
) -> OrderEscalation:
    return escalation_service.escalate(db, order_id, user.id, payload.reason, notifier=notifier)


@router.post("/{order_id}/shipping/request", response_model=OrderRead)
def request_shipping(
    order_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_actor),
    notifier: Notifier = Depends(get_notifier),
) -> Order:
    return shipping_service.request_shipping(db, order_id, user.id, notifier=notifier)


@router.post("/{order_id}/shipping/approve", response_model=OrderRead)
def approve_shipping(
    order_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_actor),
    notifier: Notifier = Depends(get_notifier),
) -> Order:
    return shipping_service.approve_shipping(db, order_id, user.id, notifier=notifier)
