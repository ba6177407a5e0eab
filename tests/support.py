"""Shared builders for the test suite."""

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import (
    Booking,
    Cancellation,
    Couple,
    Payment,
    PlacedElement,
    ProjectService,
    SelectedService,
    ServiceListing,
    Vendor,
    WeddingProject,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)

VENUE_TIERS = {">90": 0.0, "30-90": 0.10, "7-30": 0.25, "<7": 0.50}


class RecordingSink:
    """Notification sink that remembers what it was asked to send."""

    def __init__(self):
        self.calls = []
        self.fail_for = set()
        self._lock = threading.Lock()

    def send_auto_cancellation_notification(self, notice, reason):
        self._record("auto_cancellation", notice, reason)

    def send_deposit_due_date_reminder(self, notice):
        self._record("deposit_reminder", notice)

    def send_final_payment_due_date_reminder(self, notice):
        self._record("final_payment_reminder", notice)

    def booking_ids(self, kind):
        return [call[1] for call in self.calls if call[0] == kind]

    def _record(self, kind, notice, *args):
        if notice.booking_id in self.fail_for:
            raise RuntimeError("mail server unavailable")
        with self._lock:
            self.calls.append((kind, notice.booking_id, *args))


class WeddingBuilder:
    """Creates one couple, one wedding project and a few vendor listings."""

    def __init__(self, session_factory, wedding_date=None):
        self.session_factory = session_factory
        with session_factory() as db:
            couple = Couple(name="Aina & Farid", email="aina.farid@couples.example")
            vendor = Vendor(name="Rosewood Hall", email="hello@rosewood.example")
            db.add_all([couple, vendor])
            db.flush()
            project = WeddingProject(
                couple_id=couple.id,
                name="Garden Wedding",
                wedding_date=wedding_date or NOW + timedelta(days=30),
            )
            venue = ServiceListing(
                vendor_id=vendor.id,
                name="Main Hall",
                category="Venue",
                cancellation_fee_tiers=VENUE_TIERS,
            )
            florist = ServiceListing(vendor_id=vendor.id, name="Bouquets", category="Florist")
            db.add_all([project, venue, florist])
            db.flush()
            self.couple_id = couple.id
            self.vendor_id = vendor.id
            self.project_id = project.id
            self.listings = {"venue": venue.id, "florist": florist.id}
            db.commit()

    def booking(
        self,
        status,
        reserved_date=None,
        listing="florist",
        price="1000.00",
        payments=(),
        **fields,
    ) -> str:
        with self.session_factory() as db:
            booking = Booking(
                couple_id=self.couple_id,
                vendor_id=self.vendor_id,
                project_id=fields.pop("project_id", self.project_id),
                status=status,
                reserved_date=reserved_date or NOW + timedelta(days=30),
                **fields,
            )
            booking.selected_services.append(
                SelectedService(service_listing_id=self.listings[listing], total_price=Decimal(price))
            )
            for payment_type, amount in payments:
                booking.payments.append(Payment(payment_type=payment_type, amount=Decimal(amount)))
            db.add(booking)
            db.flush()
            booking_id = booking.id
            db.commit()
        return booking_id

    def cancelled_venue(self, reason="Venue double-booked", **fields) -> str:
        booking_id = self.booking(
            BookingStatus.CANCELLED_BY_VENDOR,
            listing="venue",
            **fields,
        )
        with self.session_factory() as db:
            db.add(Cancellation(booking_id=booking_id, cancelled_by=self.vendor_id, cancellation_reason=reason))
            db.commit()
        return booking_id

    def link_design_items(self, booking_id: str) -> None:
        with self.session_factory() as db:
            listing = ServiceListing(vendor_id=self.vendor_id, name=f"Item {booking_id}", category="Decor")
            db.add(listing)
            db.flush()
            db.add_all([
                PlacedElement(project_id=self.project_id, service_listing_id=listing.id,
                              booking_id=booking_id, is_booked=True),
                ProjectService(project_id=self.project_id, service_listing_id=listing.id,
                               booking_id=booking_id, is_booked=True),
            ])
            db.commit()

    def load(self, booking_id: str) -> Booking:
        with self.session_factory() as db:
            return db.execute(
                select(Booking)
                .where(Booking.id == booking_id)
                .options(selectinload(Booking.cancellation))
            ).scalar_one()

    def design_links(self, booking_id: str):
        with self.session_factory() as db:
            placed = db.execute(
                select(PlacedElement).where(PlacedElement.booking_id == booking_id)
            ).scalars().all()
            services = db.execute(
                select(ProjectService).where(ProjectService.booking_id == booking_id)
            ).scalars().all()
            booked = db.execute(
                select(PlacedElement.is_booked).union_all(select(ProjectService.is_booked))
            ).scalars().all()
        return len(placed), len(services), booked

    def cancellation_count(self) -> int:
        with self.session_factory() as db:
            return len(db.execute(select(Cancellation)).scalars().all())

