"""Standardized error payloads and the escrow workflow error taxonomy."""
from typing import Any

from fastapi import status


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class EscrowError(Exception):
    """Base class for typed failures returned by the escrow workflow."""

    code = "ESCROW_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details or None)


class NotAParty(EscrowError):
    """The acting identity is neither the buyer nor the seller of the order."""

    code = "NOT_A_PARTY"
    status_code = status.HTTP_403_FORBIDDEN


class NotAuthorized(EscrowError):
    """The acting identity lacks the admin role required for arbitration."""

    code = "NOT_AUTHORIZED"
    status_code = status.HTTP_403_FORBIDDEN


class PreconditionFailed(EscrowError):
    """The order is in the wrong lifecycle state for the requested transition."""

    code = "PRECONDITION_FAILED"
    status_code = status.HTTP_409_CONFLICT


class AlreadyResolved(EscrowError):
    code = "ALREADY_RESOLVED"
    status_code = status.HTTP_409_CONFLICT


class OrderNotFound(EscrowError):
    code = "ORDER_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class EscalationNotFound(EscrowError):
    code = "ESCALATION_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class UserNotFound(EscrowError):
    code = "USER_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidInput(EscrowError):
    code = "INVALID_INPUT"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


__all__ = [
    "error_response",
    "EscrowError",
    "NotAParty",
    "NotAuthorized",
    "PreconditionFailed",
    "AlreadyResolved",
    "OrderNotFound",
    "EscalationNotFound",
    "UserNotFound",
    "InvalidInput",
]
