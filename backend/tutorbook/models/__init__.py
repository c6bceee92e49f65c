"""
Database models for the booking engine.

- Tutor: booking-relevant tutor profile (rates, group sizes, refund policy)
- WeeklyTemplateEntry / DateOverride: availability
- Booking / BookingPaymentEvent: commitments and their payment audit trail
"""

from .availability import DateOverride, WeeklyTemplateEntry
from .booking import Booking
from .booking_payment import BookingPaymentEvent
from .tutor import Tutor

__all__ = [
    "Booking",
    "BookingPaymentEvent",
    "DateOverride",
    "Tutor",
    "WeeklyTemplateEntry",
]
