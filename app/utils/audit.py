"""Audit logging helper utilities."""
from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.orm import Session

from app.models.audit import AuditLog
from app.utils.time import utcnow

SYSTEM_SWEEP_ACTOR = "system:deadline-sweep"


def _mask_email(value: Any) -> str:
    text = str(value)
    if "@" in text:
        _, domain = text.split("@", 1)
        return f"***@{domain}"
    return "***"


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with e-mail addresses masked."""

    if isinstance(data, Mapping):
        return {
            key: _mask_email(value) if key == "email" and value is not None else sanitize_payload_for_audit(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize_payload_for_audit(item) for item in data]
    return data


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: int | None,
    data: dict | None = None,
) -> None:
    """Stage an audit entry in the caller's unit of work (committed with it)."""

    db.add(
        AuditLog(
            actor=actor,
            action=action,
            entity=entity,
            entity_id=entity_id if entity_id is not None else 0,
            data_json=sanitize_payload_for_audit(data or {}),
            at=utcnow(),
        )
    )


def actor_label(user_id: int | None, fallback: str = "system") -> str:
    """Return the canonical actor string for an identity."""

    if user_id is None:
        return fallback
    return f"user:{user_id}"


__all__ = ["SYSTEM_SWEEP_ACTOR", "sanitize_payload_for_audit", "log_audit", "actor_label"]
