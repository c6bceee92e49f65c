# backend/tutorbook/schemas/booking.py
import datetime
from decimal import Decimal
from typing import Optional

from pydantic import ConfigDict, Field

from ..core.enums import BookingStatus, CancelledBy, PaymentStatus, RefundStatus, SessionMedium
from .base import StandardizedModel, StrictRequestModel


class BookingRequest(StrictRequestModel):
    tutor_id: str
    student_id: str
    medium: SessionMedium
    start: datetime.datetime
    duration_mins: int = Field(default=60)
    subject: str = Field(min_length=1, max_length=120)
    level: str = Field(min_length=1, max_length=60)


class BookingView(StandardizedModel):
    model_config = ConfigDict(use_enum_values=True, from_attributes=True)

    id: str
    tutor_id: str
    student_id: str
    medium: SessionMedium
    scheduled_at: datetime.datetime
    ends_at: datetime.datetime
    duration_mins: int
    price: Decimal
    platform_fee: Decimal
    status: BookingStatus
    payment_status: PaymentStatus


class PaymentHandoff(StandardizedModel):
    """What the caller needs to finish payment out of band."""

    reference: str
    client_secret: Optional[str] = None
    capture: bool


class CancellationView(StandardizedModel):
    booking_id: str
    cancelled_by: CancelledBy
    refund_percent: int
    realized_refund_percent: int
    refund_amount: Optional[Decimal] = None
    refund_status: RefundStatus
