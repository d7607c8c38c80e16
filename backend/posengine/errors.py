# Overview: Engine error taxonomy shared by every component and the HTTP error handler.

from __future__ import annotations


class EngineError(Exception):
    """Base class for errors surfaced to the calling layer."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(EngineError):
    """400-level input problem or failed business invariant."""

    status_code = 400


class ConflictError(ValidationError):
    """
    409-level state-machine guard violation (stale state, not bad input).

    Subclasses ValidationError: a caller that only distinguishes "rejected"
    still catches it, a caller that cares about races can catch it first.
    """

    status_code = 409


class NotFoundError(EngineError):
    """404-level: referenced sale/shift/order/location does not exist."""

    status_code = 404

    def __init__(self, entity: str, details: dict | None = None):
        super().__init__(f"{entity} not found", details)
        self.entity = entity


class ForbiddenError(EngineError):
    """403-level: a manager-gated operation was invoked without approver authority."""

    status_code = 403
