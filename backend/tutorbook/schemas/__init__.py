from .availability import (
    AvailabilityStatus,
    DateOverrideInput,
    DateOverrideView,
    SlotView,
    TemplateReplaceResult,
    WeeklySlotInput,
    WeeklySlotView,
)
from .booking import BookingRequest, BookingView, CancellationView, PaymentHandoff

__all__ = [
    "AvailabilityStatus",
    "BookingRequest",
    "BookingView",
    "CancellationView",
    "DateOverrideInput",
    "DateOverrideView",
    "PaymentHandoff",
    "SlotView",
    "TemplateReplaceResult",
    "WeeklySlotInput",
    "WeeklySlotView",
]
