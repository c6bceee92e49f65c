# backend/tutorbook/models/booking_payment.py
"""Append-only audit trail of payment provider calls per booking."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, ForeignKey, Index, String
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime


class BookingPaymentEvent(Base):
    __tablename__ = "booking_payment_events"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    event_type = Column(String(40), nullable=False)
    event_data = Column(JSON, nullable=False, default=dict)
    created_at = Column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    booking = relationship("Booking", back_populates="payment_events")

    __table_args__ = (Index("ix_booking_payment_events_booking_type", "booking_id", "event_type"),)

    def __repr__(self) -> str:
        return f"<BookingPaymentEvent {self.booking_id} {self.event_type}>"
