from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from src.domain.state_machine import BookingStatus, PaymentType
from src.infrastructure.db.models import (
    Base,
    Booking,
    Cancellation,
    Couple,
    Payment,
    PlacedElement,
    SelectedService,
    ServiceListing,
    Vendor,
    WeddingProject,
)
from src.infrastructure.db.session import SessionLocal, engine

DEMO_PROJECT_NAME = "Aina & Farid - Garden Wedding"


def _dt(days_from_now: int, hour: int = 10) -> datetime:
    now = datetime.now(timezone.utc)
    target = now + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=0, second=0, microsecond=0)


def _vendor_with_listing(db, name: str, category: str, price: str, tiers=None):
    vendor = Vendor(name=name, email=f"{name.lower().replace(' ', '.')}@vendors.example")
    db.add(vendor)
    db.flush()
    listing = ServiceListing(
        vendor_id=vendor.id,
        name=f"{name} {category} package",
        category=category,
        cancellation_fee_tiers=tiers,
    )
    db.add(listing)
    db.flush()
    return vendor, listing, Decimal(price)


def _book(db, couple, project, vendor, listing, price, **fields) -> Booking:
    booking = Booking(
        couple_id=couple.id,
        vendor_id=vendor.id,
        project_id=project.id,
        **fields,
    )
    booking.selected_services.append(
        SelectedService(service_listing_id=listing.id, total_price=price)
    )
    db.add(booking)
    db.flush()
    return booking


def seed_wedding(db) -> None:
    existing = db.execute(
        select(WeddingProject).where(WeddingProject.name == DEMO_PROJECT_NAME)
    ).scalar_one_or_none()
    if existing:
        print("Demo wedding already seeded, nothing to do.")
        return

    wedding_day = _dt(days_from_now=12)

    couple = Couple(name="Aina & Farid", email="aina.farid@couples.example")
    db.add(couple)
    db.flush()
    project = WeddingProject(couple_id=couple.id, name=DEMO_PROJECT_NAME, wedding_date=wedding_day)
    db.add(project)
    db.flush()

    venue_vendor, venue_listing, venue_price = _vendor_with_listing(
        db,
        "Rosewood Hall",
        "Venue",
        "15000.00",
        tiers={">90": 0.0, "30-90": 0.10, "7-30": 0.25, "<7": 0.50},
    )
    florist, florist_listing, florist_price = _vendor_with_listing(db, "Petal Studio", "Florist", "2400.00")
    caterer, caterer_listing, caterer_price = _vendor_with_listing(db, "Saffron Table", "Catering", "8000.00")
    dj, dj_listing, dj_price = _vendor_with_listing(db, "Night Owl Sound", "DJ", "1800.00")

    # Confirmed venue inside the final-payment window.
    venue = _book(
        db, couple, project, venue_vendor, venue_listing, venue_price,
        status=BookingStatus.CONFIRMED,
        reserved_date=wedding_day,
    )
    db.add(Payment(booking_id=venue.id, payment_type=PaymentType.DEPOSIT, amount=venue_price * Decimal("0.30")))

    # Deposit already overdue.
    florist_booking = _book(
        db, couple, project, florist, florist_listing, florist_price,
        status=BookingStatus.PENDING_DEPOSIT_PAYMENT,
        reserved_date=wedding_day,
        deposit_due_date=_dt(days_from_now=-1),
    )
    db.add(PlacedElement(project_id=project.id, service_listing_id=florist_listing.id,
                         booking_id=florist_booking.id, is_booked=True))

    # Deposit due in two days: reminder.
    _book(
        db, couple, project, caterer, caterer_listing, caterer_price,
        status=BookingStatus.PENDING_DEPOSIT_PAYMENT,
        reserved_date=wedding_day,
        deposit_due_date=_dt(days_from_now=2),
    )

    # Rehearsal dinner venue, cancelled by the vendor.
    rehearsal_day = wedding_day - timedelta(days=1)
    pavilion, pavilion_listing, pavilion_price = _vendor_with_listing(db, "Lakeside Pavilion", "Venue", "6000.00")
    rehearsal_venue = _book(
        db, couple, project, pavilion, pavilion_listing, pavilion_price,
        status=BookingStatus.CANCELLED_BY_VENDOR,
        reserved_date=rehearsal_day,
    )
    db.add(Cancellation(
        booking_id=rehearsal_venue.id,
        cancelled_by=pavilion.id,
        cancellation_reason="Pavilion closed for renovation",
    ))

    # DJ for the rehearsal dinner, grace period already over with no replacement venue.
    _book(
        db, couple, project, dj, dj_listing, dj_price,
        status=BookingStatus.PENDING_DEPOSIT_PAYMENT,
        reserved_date=rehearsal_day,
        deposit_due_date=_dt(days_from_now=5),
        depends_on_venue_booking_id=rehearsal_venue.id,
        is_pending_venue_replacement=True,
        venue_cancellation_date=_dt(days_from_now=-10),
        grace_period_end_date=_dt(days_from_now=-3),
    )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_wedding(db)
        db.commit()
        print("Seed complete: one wedding project with venue, florist, caterer, DJ and rehearsal venue bookings.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
