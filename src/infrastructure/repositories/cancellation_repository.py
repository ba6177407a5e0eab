# src/infrastructure/repositories/cancellation_repository.py

from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import update

from src.infrastructure.db.models import (
    Booking,
    Cancellation,
    PlacedElement,
    ProjectService,
)
from src.domain.state_machine import BookingStateMachine, BookingStatus, RefundStatus


class CancellationRepository:
    """
    Writes the terminal side of a booking. Every call is expected to run
    inside the caller's transaction; nothing here commits.
    """

    def __init__(self, db: Session):
        self.db = db

    def cancel_booking(
        self,
        booking: Booking,
        *,
        new_status: BookingStatus,
        cancelled_by: str,
        reason: str,
        refund_amount: Decimal | None = None,
    ) -> Cancellation:

        BookingStateMachine.validate_transition(booking.status, new_status)

        refund_required = refund_amount is not None and refund_amount > 0
        cancellation = Cancellation(
            booking_id=booking.id,
            cancelled_by=cancelled_by,
            cancellation_reason=reason,
            cancellation_fee=None,
            cancellation_fee_payment_id=None,
            refund_required=refund_required,
            refund_amount=refund_amount if refund_required else None,
            refund_status=RefundStatus.PENDING if refund_required else RefundStatus.NOT_APPLICABLE,
            refund_method=None,
            refund_notes=None,
        )
        self.db.add(cancellation)

        booking.status = new_status
        booking.is_pending_venue_replacement = False
        self.db.flush()

        self.release_design_items(booking.id)
        return cancellation

    def release_design_items(self, booking_id: str) -> None:
        """Unlinks 3D placements and project services from a booking."""

        for model in (PlacedElement, ProjectService):
            self.db.execute(
                update(model)
                .where(model.booking_id == booking_id)
                .values(booking_id=None, is_booked=False)
                .execution_options(synchronize_session=False)
            )
