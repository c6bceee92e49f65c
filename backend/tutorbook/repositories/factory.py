# backend/tutorbook/repositories/factory.py
"""
Repository Factory

Central place services get their repositories from, so tests can patch a
single seam.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from .availability_repository import AvailabilityRepository
    from .booking_repository import BookingRepository
    from .payment_event_repository import PaymentEventRepository
    from .tutor_repository import TutorRepository


class RepositoryFactory:
    @staticmethod
    def create_tutor_repository(db: Session) -> "TutorRepository":
        from .tutor_repository import TutorRepository

        return TutorRepository(db)

    @staticmethod
    def create_availability_repository(db: Session) -> "AvailabilityRepository":
        from .availability_repository import AvailabilityRepository

        return AvailabilityRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_payment_event_repository(db: Session) -> "PaymentEventRepository":
        from .payment_event_repository import PaymentEventRepository

        return PaymentEventRepository(db)
