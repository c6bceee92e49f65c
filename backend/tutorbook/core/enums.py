# backend/tutorbook/core/enums.py
"""
Core enums for the booking engine.

All enums subclass ``str`` so they compare equal to the raw values stored
in the database and accepted from request payloads.
"""

from enum import Enum


class SessionMedium(str, Enum):
    """How a session is delivered."""

    VIDEO = "VIDEO"
    IN_PERSON = "IN_PERSON"
    GROUP = "GROUP"

    @property
    def is_group(self) -> bool:
        return self is SessionMedium.GROUP


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"  # awaiting immediate payment capture
    RESERVED = "RESERVED"  # group seat held, card authorized, waiting for quorum
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.COMPLETED, BookingStatus.CANCELLED)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    PAID = "paid"
    VOIDED = "voided"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    FAILED = "failed"


class RefundStatus(str, Enum):
    NONE = "none"
    FULL = "full"
    PARTIAL = "partial"
    FAILED = "failed"


class CancelledBy(str, Enum):
    TUTOR = "tutor"
    PARTICIPANT = "participant"
    SYSTEM = "system"


class GroupBookingPath(str, Enum):
    """
    Which payment path a GROUP booking takes.

    QUORUM holds the seat (authorize only) until the quorum scheduler decides;
    IMMEDIATE charges up front like a one-to-one booking.
    """

    QUORUM = "QUORUM"
    IMMEDIATE = "IMMEDIATE"


class PaymentEventType(str, Enum):
    AUTHORIZED = "authorized"
    AUTHORIZATION_FAILED = "authorization_failed"
    CAPTURED = "captured"
    CAPTURE_FAILED = "capture_failed"
    VOIDED = "voided"
    VOID_FAILED = "void_failed"
    REFUNDED = "refunded"
    REFUND_FAILED = "refund_failed"


class NotificationEvent(str, Enum):
    BOOKING_CREATED = "booking_created"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    GROUP_SESSION_CONFIRMED = "group_session_confirmed"
    GROUP_SESSION_CANCELLED = "group_session_cancelled"
