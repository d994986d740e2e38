"""Schema package exports."""
from .escalation import EscalateRequest, EscalationRead, EscalationStats, ResolveRequest, SweepRead
from .order import DeliverySignal, OrderCreate, OrderRead
from .user import UserCreate, UserRead

__all__ = [
    "DeliverySignal",
    "EscalateRequest",
    "EscalationRead",
    "EscalationStats",
    "OrderCreate",
    "OrderRead",
    "ResolveRequest",
    "SweepRead",
    "UserCreate",
    "UserRead",
]
