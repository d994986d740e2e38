"""Display metadata for escalation types (pure lookup, no business rules)."""
from __future__ import annotations

from typing import NamedTuple

from app.models.escalation import EscalationType


class EscalationTypeInfo(NamedTuple):
    label: str
    tone: str  # "warning" | "danger" | "caution" | "neutral"
    category: str  # "no_confirm" | "dispute" | "timeout" | "other"


ESCALATION_TYPES: dict[EscalationType, EscalationTypeInfo] = {
    EscalationType.BUYER_NO_CONFIRM: EscalationTypeInfo("Buyer No Confirm", "warning", "no_confirm"),
    EscalationType.SELLER_NO_CONFIRM: EscalationTypeInfo("Seller No Confirm", "warning", "no_confirm"),
    EscalationType.BUYER_DISPUTE: EscalationTypeInfo("Buyer Dispute", "danger", "dispute"),
    EscalationType.SELLER_DISPUTE: EscalationTypeInfo("Seller Dispute", "danger", "dispute"),
    EscalationType.TIMEOUT: EscalationTypeInfo("Timeout", "caution", "timeout"),
}


def describe_escalation_type(value: EscalationType | str) -> EscalationTypeInfo:
    """Return display metadata; unknown types fall back to their raw value."""

    try:
        return ESCALATION_TYPES[EscalationType(value)]
    except ValueError:
        return EscalationTypeInfo(str(value), "neutral", "other")
