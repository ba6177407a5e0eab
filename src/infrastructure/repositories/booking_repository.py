# src/infrastructure/repositories/booking_repository.py

from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func, select

from src.infrastructure.db.models import (
    Booking,
    Payment,
    SelectedService,
    ServiceListing,
)
from src.domain.state_machine import (
    ACTIVE_VENUE_STATUSES,
    CANCELLED_STATUSES,
    TERMINAL_STATUSES,
    BookingStateMachine,
    BookingStatus,
    PaymentType,
)

VENUE_CATEGORY = "Venue"

def _is_venue_booking():
    return Booking.selected_services.any(
        SelectedService.service_listing.has(ServiceListing.category == VENUE_CATEGORY)
    )

# Relations a notification needs once the session is gone.
_NOTICE_LOADS = (
    selectinload(Booking.couple),
    selectinload(Booking.vendor),
    selectinload(Booking.selected_services),
    selectinload(Booking.payments),
)


def _lacks_payment(payment_type: PaymentType):
    return ~Booking.payments.any(Payment.payment_type == payment_type)


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_by_id(self, booking_id: str) -> Booking | None:
        """
        SELECT ... FOR UPDATE
        Re-reads the row so a predicate can be re-checked inside the transaction.
        """

        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .options(*_NOTICE_LOADS)
            .with_for_update(of=Booking)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def has_payment(self, booking_id: str, payment_type: PaymentType) -> bool:
        stmt = (
            select(Payment.id)
            .where(Payment.booking_id == booking_id)
            .where(Payment.payment_type == payment_type)
            .limit(1)
        )
        return self.db.execute(stmt).first() is not None

    def total_paid(self, booking_id: str) -> Decimal:
        stmt = select(func.coalesce(func.sum(Payment.amount), 0)).where(
            Payment.booking_id == booking_id
        )
        return Decimal(str(self.db.execute(stmt).scalar_one()))

    def find_due_without_payment(
        self,
        status: BookingStatus,
        due_column,
        payment_type: PaymentType,
        due_before: datetime,
        due_after: datetime | None = None,
    ) -> list[Booking]:
        """
        Bookings in ``status`` whose ``due_column`` is at or before
        ``due_before`` (and at or after ``due_after`` when given) with no
        payment of ``payment_type`` recorded.
        """

        stmt = (
            select(Booking)
            .where(Booking.status == status)
            .where(due_column.is_not(None))
            .where(due_column <= due_before)
            .where(_lacks_payment(payment_type))
            .options(*_NOTICE_LOADS)
            .order_by(due_column, Booking.id)
        )
        if due_after is not None:
            stmt = stmt.where(due_column >= due_after)
        return list(self.db.execute(stmt).scalars().all())

    def find_confirmed_reserved_between(
        self,
        start: datetime,
        end: datetime,
    ) -> list[Booking]:

        stmt = (
            select(Booking)
            .where(Booking.status == BookingStatus.CONFIRMED)
            .where(Booking.reserved_date >= start)
            .where(Booking.reserved_date <= end)
            .where(_lacks_payment(PaymentType.FINAL))
            .order_by(Booking.reserved_date, Booking.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def find_cancelled_venue_bookings(self) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.status.in_(list(CANCELLED_STATUSES)))
            .where(_is_venue_booking())
            .where(Booking.cancellation.has())
            .options(
                selectinload(Booking.cancellation),
                selectinload(Booking.project),
            )
            .order_by(Booking.reserved_date, Booking.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def find_replacement_venue(self, cancelled_venue: Booking) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.project_id == cancelled_venue.project_id)
            .where(Booking.reserved_date == cancelled_venue.reserved_date)
            .where(Booking.status.in_(list(ACTIVE_VENUE_STATUSES)))
            .where(_is_venue_booking())
            .where(Booking.id != cancelled_venue.id)
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def find_pending_dependents(self, venue_booking_id: str) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.depends_on_venue_booking_id == venue_booking_id)
            .where(Booking.is_pending_venue_replacement.is_(True))
            .where(Booking.status.not_in(list(TERMINAL_STATUSES)))
            .order_by(Booking.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        BookingStateMachine.validate_transition(booking.status, new_status)
        booking.status = new_status
