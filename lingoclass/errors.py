"""Domain errors raised by the service layer.

Routers never catch these; the handlers registered in ``lingoclass.main``
turn them into ``{"error": ...}`` JSON responses with the matching status.
"""
from __future__ import annotations

from typing import Any


class DomainError(Exception):
    status_code = 400
    default_message = "Bad request"

    def __init__(self, message: str | None = None, **detail: Any):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, **self.detail}


class NotFound(DomainError):
    status_code = 404
    default_message = "Not found"


class Forbidden(DomainError):
    status_code = 403
    default_message = "Permission denied"


class InvalidState(DomainError):
    default_message = "Operation not allowed in the current state"


class SlotUnavailable(InvalidState):
    default_message = "The teacher already has a class in this time slot"


class OutsideClassWindow(InvalidState):
    default_message = "Outside the class schedule"

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "outside_schedule": True}


class InsufficientCredits(DomainError):
    default_message = "Not enough credits"


class ValidationFailed(DomainError):
    default_message = "Invalid input"
