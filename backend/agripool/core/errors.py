"""
Domain error taxonomy for the booking engine.

Every error is an HTTPException so services can raise it directly and FastAPI
renders it with the right status code. The detail is always a dict carrying a
stable machine-readable `code` plus a human `message`, and any extra context
the caller needs to render a specific message (e.g. conflicting dates).
"""

from typing import Any, Iterable, Optional

from fastapi import HTTPException, status


class DomainError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "domain_error"
    default_message = "Request could not be completed"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(
            status_code=self.status_code,
            detail={"code": self.code, "message": self.message, **context},
        )


class ValidationError(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    default_message = "Invalid request"


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Resource not found"


class Forbidden(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "You are not allowed to perform this action"


class ScheduleConflict(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "schedule_conflict"
    default_message = "Equipment is already booked for the selected dates"

    def __init__(self, conflicts: Iterable[Any], message: Optional[str] = None):
        self.conflicts = list(conflicts)
        super().__init__(
            message,
            conflicting_dates=[c.as_dict() for c in self.conflicts],
        )


class InvalidStateTransition(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_state_transition"
    default_message = "This action is not allowed in the current state"


class CapacityExceeded(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "capacity_exceeded"
    default_message = "This group booking is full"


class AlreadyJoined(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_joined"
    default_message = "You have already joined this group booking"


class GroupExpired(DomainError):
    status_code = status.HTTP_410_GONE
    code = "group_expired"
    default_message = "This group booking has expired"


class QuorumNotMet(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "quorum_not_met"
    default_message = "Minimum number of participants not reached"


class NotAllPaid(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "not_all_paid"
    default_message = "All participants must complete payment before confirmation"


class AlreadyPaid(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_paid"
    default_message = "Payment has already been completed"


class ConcurrentModification(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "concurrent_modification"
    default_message = "Request failed due to high demand. Please try again."


class PaymentGateUnavailable(DomainError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "payment_gateway_unavailable"
    default_message = "Payment provider is unavailable. Please try again."
