# backend/tutorbook/repositories/payment_event_repository.py
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import PaymentEventType
from ..core.exceptions import RepositoryException
from ..models.booking_payment import BookingPaymentEvent
from .base_repository import BaseRepository


class PaymentEventRepository(BaseRepository[BookingPaymentEvent]):
    def __init__(self, db: Session):
        super().__init__(db, BookingPaymentEvent)

    def record(
        self,
        booking_id: str,
        event_type: PaymentEventType,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> BookingPaymentEvent:
        return self.create(
            booking_id=booking_id,
            event_type=event_type.value,
            event_data=event_data or {},
        )

    def list_for_booking(self, booking_id: str) -> List[BookingPaymentEvent]:
        try:
            return (
                self.db.query(BookingPaymentEvent)
                .filter(BookingPaymentEvent.booking_id == booking_id)
                .order_by(BookingPaymentEvent.created_at)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading payment events for {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load payment events: {str(e)}")

    def count_for_booking(self, booking_id: str, event_type: PaymentEventType) -> int:
        return self.count(booking_id=booking_id, event_type=event_type.value)
