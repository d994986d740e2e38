"""Escalation schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field

from app.models.escalation import EscalationType, ResolutionAction
from app.services.escalation_types import describe_escalation_type


class EscalateRequest(BaseModel):
    reason: str = ""


class ResolveRequest(BaseModel):
    action: ResolutionAction
    notes: str = ""


class EscalationRead(BaseModel):
    id: int
    order_id: int
    escalation_type: EscalationType
    escalated_by: int | None = None
    reason: str
    created_at: datetime
    resolved_at: datetime | None = None
    resolved_by: int | None = None
    resolution_action: ResolutionAction | None = None
    resolution_notes: str | None = None

    model_config = ConfigDict(from_attributes=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def type_label(self) -> str:
        return describe_escalation_type(self.escalation_type).label

    @computed_field  # type: ignore[prop-decorator]
    @property
    def type_tone(self) -> str:
        return describe_escalation_type(self.escalation_type).tone


class EscalationStats(BaseModel):
    pending: int = 0
    no_confirmations: int = 0
    disputes: int = 0
    timeouts: int = 0


class SweepRead(BaseModel):
    started_at: datetime
    scanned: int
    escalated: list[int] = Field(default_factory=list)
    skipped: list[int] = Field(default_factory=list)
    failed: list[int] = Field(default_factory=list)
