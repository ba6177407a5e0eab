from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from src.domain.cancellation_fee import CancellationOutcome, calculate_for_booking
from src.domain.exceptions import BookingNotFoundError
from src.domain.state_machine import BookingStateMachine, BookingStatus
from src.infrastructure.repositories.booking_repository import BookingRepository


@dataclass(frozen=True)
class CancellationQuote:
    booking_id: str
    status: BookingStatus
    outcome: CancellationOutcome


class BookingService:
    """Application service for couple-initiated booking queries."""

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.booking_repository = BookingRepository(db)
        self.clock = clock

    def quote_cancellation(self, booking_id: str) -> CancellationQuote:
        booking = self.booking_repository.get_by_id(booking_id)

        if not booking:
            raise BookingNotFoundError(booking_id)

        BookingStateMachine.validate_transition(booking.status, BookingStatus.CANCELLED_BY_COUPLE)

        # The fee schedule comes from the booking's primary (first) service.
        listing = booking.selected_services[0].service_listing if booking.selected_services else None
        now = self.clock() if self.clock else None
        return CancellationQuote(
            booking_id=booking.id,
            status=booking.status,
            outcome=calculate_for_booking(booking, listing, now=now),
        )
