"""ORM models package."""
from .audit import AuditLog
from .base import Base
from .escalation import EscalationType, OrderEscalation, ResolutionAction
from .notification import Notification
from .order import DeliveryOption, EscrowStatus, Order, OrderStatus
from .user import User, UserRole

__all__ = [
    "AuditLog",
    "Base",
    "DeliveryOption",
    "EscalationType",
    "EscrowStatus",
    "Notification",
    "Order",
    "OrderEscalation",
    "OrderStatus",
    "ResolutionAction",
    "User",
    "UserRole",
]
