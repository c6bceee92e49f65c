# backend/tutorbook/repositories/booking_repository.py
"""
Booking Repository

Interval queries for conflict checks and availability, plus the selections
the group quorum scheduler runs on every tick.

Intervals are half-open: two bookings overlap when
``a.scheduled_at < b.ends_at AND a.ends_at > b.scheduled_at``.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import BookingStatus, PaymentStatus, SessionMedium
from ..core.exceptions import RepositoryException
from ..models.booking import Booking
from .base_repository import BaseRepository


class BookingRepository(BaseRepository[Booking]):
    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def get_for_update(self, booking_id: str) -> Optional[Booking]:
        try:
            query = self.db.query(Booking).filter(Booking.id == booking_id).populate_existing()
            if self.dialect_name != "sqlite":
                query = query.with_for_update()
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load booking: {str(e)}")

    def get_overlapping(self, tutor_id: str, start: datetime, end: datetime) -> List[Booking]:
        """Non-cancelled bookings of the tutor intersecting ``[start, end)``, any medium."""
        try:
            return (
                self.db.query(Booking)
                .filter(
                    Booking.tutor_id == tutor_id,
                    Booking.status != BookingStatus.CANCELLED.value,
                    Booking.scheduled_at < end,
                    Booking.ends_at > start,
                )
                .order_by(Booking.scheduled_at, Booking.created_at)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading overlapping bookings for {tutor_id}: {str(e)}")
            raise RepositoryException(f"Failed to load overlapping bookings: {str(e)}")

    def get_reserved_group_bookings_due(self, cutoff: datetime) -> List[Booking]:
        """RESERVED group bookings starting at or before ``cutoff``."""
        try:
            return (
                self.db.query(Booking)
                .filter(
                    Booking.status == BookingStatus.RESERVED.value,
                    Booking.medium == SessionMedium.GROUP.value,
                    Booking.scheduled_at <= cutoff,
                )
                .order_by(Booking.tutor_id, Booking.scheduled_at, Booking.created_at)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error selecting reserved group bookings: {str(e)}")
            raise RepositoryException(f"Failed to select reserved group bookings: {str(e)}")

    def get_group_refunds_pending(self) -> List[Booking]:
        """Group bookings whose quorum-failure refund has not gone through yet."""
        try:
            return (
                self.db.query(Booking)
                .filter(
                    Booking.status == BookingStatus.CONFIRMED.value,
                    Booking.medium == SessionMedium.GROUP.value,
                    Booking.payment_status == PaymentStatus.REFUND_PENDING.value,
                )
                .order_by(Booking.tutor_id, Booking.scheduled_at, Booking.created_at)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error selecting pending group refunds: {str(e)}")
            raise RepositoryException(f"Failed to select pending group refunds: {str(e)}")

    def get_slot_group(
        self, tutor_id: str, scheduled_at: datetime, duration_mins: int
    ) -> List[Booking]:
        """Current non-cancelled members of a slot group, read fresh from the database."""
        try:
            return (
                self.db.query(Booking)
                .filter(
                    Booking.tutor_id == tutor_id,
                    Booking.medium == SessionMedium.GROUP.value,
                    Booking.scheduled_at == scheduled_at,
                    Booking.duration_mins == duration_mins,
                    Booking.status != BookingStatus.CANCELLED.value,
                )
                .order_by(Booking.created_at)
                .populate_existing()
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading slot group for {tutor_id}: {str(e)}")
            raise RepositoryException(f"Failed to load slot group: {str(e)}")
