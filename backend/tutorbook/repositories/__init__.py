"""
Repository layer for the booking engine.

Usage:
    from tutorbook.repositories import RepositoryFactory

    bookings = RepositoryFactory.create_booking_repository(db)
    overlapping = bookings.get_overlapping(tutor_id, start, end)
"""

from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .factory import RepositoryFactory
from .payment_event_repository import PaymentEventRepository
from .tutor_repository import TutorRepository

__all__ = [
    "AvailabilityRepository",
    "BaseRepository",
    "BookingRepository",
    "PaymentEventRepository",
    "RepositoryFactory",
    "TutorRepository",
]
