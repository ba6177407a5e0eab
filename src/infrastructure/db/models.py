# src/infrastructure/db/models.py

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    DateTime,
    Enum,
    JSON,
    Numeric,
    Text,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from src.infrastructure.db.session import Base
from src.domain.state_machine import BookingStatus, PaymentType, RefundStatus


def _uuid() -> str:
    return str(uuid4())


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamps on every backend.
    SQLite drops tzinfo on the way out, so naive values are read back as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Couple(Base):
    __tablename__ = "couples"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Vendor(Base):
    __tablename__ = "vendors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)


class ServiceListing(Base):
    __tablename__ = "service_listings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    vendor_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("vendors.id"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # e.g. {">90": 0.0, "30-90": 0.10, "7-30": 0.25, "<7": 0.50}
    cancellation_fee_tiers: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    cancellation_policy: Mapped[str | None] = mapped_column(Text, nullable=True)

    vendor: Mapped[Vendor] = relationship()


class WeddingProject(Base):
    __tablename__ = "wedding_projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    couple_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("couples.id"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    wedding_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class Booking(Base):
    """
    Booking table reflecting domain state.
    Domain controls transitions.
    DB stores current state safely.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    couple_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("couples.id"),
        nullable=False,
        index=True,
    )
    vendor_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("vendors.id"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("wedding_projects.id"),
        nullable=True,
        index=True,
    )
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.PENDING_VENDOR_CONFIRMATION,
        index=True,
    )
    booking_date: Mapped[datetime] = mapped_column(
        UTCDateTime,
        server_default=func.now(),
        nullable=False,
    )
    reserved_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    deposit_due_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    final_due_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    depends_on_venue_booking_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_pending_venue_replacement: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    grace_period_end_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    venue_cancellation_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    couple: Mapped[Couple] = relationship()
    vendor: Mapped[Vendor] = relationship()
    project: Mapped[WeddingProject | None] = relationship()
    selected_services: Mapped[list["SelectedService"]] = relationship(
        back_populates="booking",
        order_by="SelectedService.position",
        cascade="all, delete-orphan",
    )
    payments: Mapped[list["Payment"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
    )
    cancellation: Mapped[Optional["Cancellation"]] = relationship(back_populates="booking")
    depends_on_venue_booking: Mapped[Optional["Booking"]] = relationship(remote_side=[id])


class SelectedService(Base):
    __tablename__ = "selected_services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_listing_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("service_listings.id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    booking: Mapped[Booking] = relationship(back_populates="selected_services")
    service_listing: Mapped[ServiceListing] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_selected_service_quantity_positive"),
        CheckConstraint("total_price >= 0", name="ck_selected_service_price_nonnegative"),
    )


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payment_type: Mapped[PaymentType] = mapped_column(
        Enum(PaymentType, name="payment_type", values_callable=_enum_values),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, default="card")
    payment_date: Mapped[datetime] = mapped_column(
        UTCDateTime,
        server_default=func.now(),
        nullable=False,
    )

    booking: Mapped[Booking] = relationship(back_populates="payments")


class Cancellation(Base):
    __tablename__ = "cancellations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
    )
    cancelled_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        server_default=func.now(),
        nullable=False,
    )
    cancelled_by: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_fee: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    cancellation_fee_payment_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    refund_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    refund_status: Mapped[RefundStatus] = mapped_column(
        Enum(RefundStatus, name="refund_status", values_callable=_enum_values),
        nullable=False,
        default=RefundStatus.NOT_APPLICABLE,
        index=True,
    )
    refund_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    refund_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    booking: Mapped[Booking] = relationship(back_populates="cancellation")

    __table_args__ = (
        UniqueConstraint("booking_id", name="uq_cancellation_booking_id"),
    )


class PlacedElement(Base):
    """A 3D-design placement; linked to the booking that paid for it."""

    __tablename__ = "placed_elements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("wedding_projects.id"),
        nullable=False,
    )
    service_listing_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("service_listings.id"),
        nullable=True,
    )
    booking_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_booked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class ProjectService(Base):
    __tablename__ = "project_services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("wedding_projects.id"),
        nullable=False,
    )
    service_listing_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("service_listings.id"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    booking_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_booked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint(
            "project_id",
            "service_listing_id",
            name="uq_project_service_listing",
        ),
    )
