"""Structured error types raised by the decision and prediction engine."""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class EngineError(Exception):
    """Base class for every error surfaced to the HTTP layer.

    Each error carries a machine readable ``kind``, a human readable message and
    an optional ``detail`` payload so callers can map it consistently.
    """

    kind = "EngineError"
    status_code = 500

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail: Dict[str, Any] = dict(detail or {})

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.detail:
            payload["detail"] = dict(self.detail)
        return payload


class NotFoundError(EngineError):
    """A referenced narrative, character, decision, prediction or option is missing."""

    kind = "NotFound"
    status_code = 404


class ForbiddenError(EngineError):
    """The caller does not own the entity being acted on."""

    kind = "Forbidden"
    status_code = 403


class InvalidStateError(EngineError):
    """The entity's current status does not permit the operation."""

    kind = "InvalidState"
    status_code = 409


class ExpiredError(EngineError):
    """The deadline has passed; the expired status is persisted before raising."""

    kind = "Expired"
    status_code = 409


class IneligibleError(EngineError):
    """The character does not meet an option's requirements."""

    kind = "Ineligible"
    status_code = 422

    def __init__(self, message: str, reasons: List[str]) -> None:
        super().__init__(message, {"reasons": list(reasons)})
        self.reasons = list(reasons)


class InvalidInputError(EngineError):
    """Malformed request data."""

    kind = "InvalidInput"
    status_code = 400


class ResolutionUnavailableError(EngineError):
    """Automatic resolution could not obtain an answer; safe to retry."""

    kind = "ResolutionUnavailable"
    status_code = 503


__all__ = [
    "EngineError",
    "NotFoundError",
    "ForbiddenError",
    "InvalidStateError",
    "ExpiredError",
    "IneligibleError",
    "InvalidInputError",
    "ResolutionUnavailableError",
]
