# backend/tutorbook/core/exceptions.py
"""
Domain-specific exceptions for the booking engine.

Services raise these; request handlers translate them with
``to_http_exception()``. A rejected request never leaves partial state
behind, so callers may simply re-query availability and retry.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when input is malformed (bad duration, unknown medium, ...)."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a tutor or booking does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenException(DomainException):
    """Raised when the actor may not touch the resource."""

    status_code = status.HTTP_403_FORBIDDEN


class ConflictException(DomainException):
    """Raised when the request collides with current availability state."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails for infrastructure reasons."""


# Booking conflicts


class SlotUnavailableException(ConflictException):
    """The tutor does not offer one of the requested units."""

    def __init__(self, unit_date: str, start_time: str, medium: str):
        super().__init__(
            message=f"Tutor is not available on {unit_date} at {start_time} for {medium}",
            code="SLOT_UNAVAILABLE",
            details={"date": unit_date, "start_time": start_time, "medium": medium},
        )


class BookingConflictException(ConflictException):
    """The requested range overlaps an incompatible booking."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="occupied",
            details=details or {},
        )


class GroupFullException(ConflictException):
    """A unit of the requested group session is already at capacity."""

    def __init__(self, unit_date: str, start_time: str, max_group_size: int):
        super().__init__(
            message=f"Group session on {unit_date} at {start_time} is full",
            code="group_full",
            details={
                "date": unit_date,
                "start_time": start_time,
                "max_group_size": max_group_size,
            },
        )


class TutorLockTimeoutException(ConflictException):
    """Another request held the tutor's availability lock for too long."""

    def __init__(self, tutor_id: str, waited_seconds: float):
        super().__init__(
            message="The tutor's calendar is busy, please retry",
            code="TUTOR_LOCK_TIMEOUT",
            details={"tutor_id": tutor_id, "waited_seconds": waited_seconds},
        )


class TutorLockLostException(ConflictException):
    """The distributed tutor lock expired while its holder was still working."""

    def __init__(self, tutor_id: str):
        super().__init__(
            message="Lost the tutor's availability lock before the work finished",
            code="TUTOR_LOCK_LOST",
            details={"tutor_id": tutor_id},
        )


class PaymentFailureException(DomainException):
    """Raised when the payment provider rejects or times out a call."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        retryable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = {"operation": operation, "retryable": retryable}
        merged.update(details or {})
        super().__init__(message=message, code="PAYMENT_FAILURE", details=merged)
        self.operation = operation
        self.retryable = retryable


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as connection issues,
    query failures, or constraint violations.
    """
