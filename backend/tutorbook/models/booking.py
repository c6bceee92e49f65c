# backend/tutorbook/models/booking.py
"""
Booking model.

A booking is a self-contained commitment between a student and a tutor:
start and end instants (UTC), duration, medium and a price snapshot taken
at booking time. Bookings are never deleted; CANCELLED and COMPLETED are
terminal.

Group bookings sharing (tutor, scheduled_at, duration_mins) form a slot
group, the unit the quorum scheduler resolves.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
import ulid

from ..core.enums import BookingStatus, CancelledBy, PaymentStatus, RefundStatus, SessionMedium
from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)

MAX_DURATION_MINS = 480


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    tutor_id = Column(String(26), ForeignKey("tutors.id"), nullable=False)
    student_id = Column(String(26), nullable=False, index=True)

    subject = Column(String(120), nullable=False)
    level = Column(String(60), nullable=False)
    medium = Column(String(20), nullable=False)

    scheduled_at = Column(UTCDateTime, nullable=False)
    ends_at = Column(UTCDateTime, nullable=False)
    duration_mins = Column(Integer, nullable=False)

    # Price snapshot
    hourly_rate = Column(Numeric(10, 2), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)

    payment_status = Column(String(30), nullable=False, default=PaymentStatus.PENDING.value)
    payment_reference = Column(String(255), nullable=True, comment="Stripe payment intent id")

    # Cancellation tracking
    cancelled_by = Column(String(20), nullable=True)
    cancelled_by_user_id = Column(String(26), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    refund_percent = Column(Integer, nullable=True, comment="Policy (nominal) refund percent")
    realized_refund_percent = Column(Integer, nullable=True, comment="Refund actually issued")
    refund_amount = Column(Numeric(10, 2), nullable=True)
    refund_status = Column(String(20), nullable=False, default=RefundStatus.NONE.value)

    # Timestamps
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=_utcnow)
    confirmed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)

    tutor = relationship("Tutor")
    payment_events = relationship(
        "BookingPaymentEvent",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingPaymentEvent.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'RESERVED', 'CONFIRMED', 'COMPLETED', 'CANCELLED')",
            name="ck_bookings_status",
        ),
        CheckConstraint("medium IN ('VIDEO', 'IN_PERSON', 'GROUP')", name="ck_bookings_medium"),
        CheckConstraint(
            "duration_mins > 0 AND duration_mins <= 480 AND duration_mins % 30 = 0",
            name="ck_bookings_duration",
        ),
        CheckConstraint("price >= 0", name="ck_bookings_price_non_negative"),
        CheckConstraint("ends_at > scheduled_at", name="ck_bookings_time_order"),
        Index("ix_bookings_tutor_window", "tutor_id", "scheduled_at", "ends_at"),
        Index("ix_bookings_status_medium_start", "status", "medium", "scheduled_at"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = BookingStatus.PENDING.value
        if not self.payment_status:
            self.payment_status = PaymentStatus.PENDING.value
        if not self.refund_status:
            self.refund_status = RefundStatus.NONE.value

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: tutor={self.tutor_id}, student={self.student_id}, "
            f"{self.medium} {self.scheduled_at}+{self.duration_mins}m, status={self.status}>"
        )

    @property
    def status_enum(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def is_group(self) -> bool:
        return self.medium == SessionMedium.GROUP.value

    @property
    def is_terminal(self) -> bool:
        return self.status_enum.is_terminal

    @property
    def slot_group_key(self) -> tuple[str, datetime, int]:
        return (self.tutor_id, self.scheduled_at, self.duration_mins)

    def confirm(self, at: datetime) -> None:
        self.status = BookingStatus.CONFIRMED.value
        self.payment_status = PaymentStatus.PAID.value
        self.confirmed_at = at

    def cancel(
        self,
        *,
        at: datetime,
        cancelled_by: CancelledBy,
        user_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        """Move to CANCELLED; refund bookkeeping is left to the caller."""
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = at
        self.cancelled_by = cancelled_by.value
        self.cancelled_by_user_id = user_id
        self.cancellation_reason = reason
        logger.info(
            "Booking %s cancelled by %s", self.id, cancelled_by.value, extra={"booking_id": self.id}
        )
