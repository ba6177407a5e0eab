# src/application/reconciliation_service.py
"""Time-driven booking reconciliation.

Every check re-derives its work from what is persisted right now: it scans
for candidates in one short read session, then handles each candidate in its
own transaction, re-reading the row under a lock and re-checking the
predicate before writing. Nothing is remembered between runs, so running a
check twice in a row only acts on what became due in between.

Notifications go out after commit through the dispatcher and never affect
booking state.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from functools import partial
from typing import Callable, Collection, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.domain.exceptions import WeddingPlatformError
from src.domain.state_machine import BookingStateMachine, BookingStatus, PaymentType
from src.infrastructure.db.models import Booking
from src.infrastructure.db.session import SessionLocal, get_db_session
from src.infrastructure.notifications.notification_service import (
    BookingNotice,
    EmailNotificationService,
    NotificationDispatcher,
)
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.cancellation_repository import CancellationRepository

logger = logging.getLogger(__name__)

FINAL_PAYMENT_WINDOW = timedelta(days=14)
FINAL_DUE_BEFORE_RESERVED = timedelta(days=7)
REMINDER_WINDOW = timedelta(days=3)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconciliationReport:
    started_at: datetime
    counts: dict[str, int] = field(default_factory=dict)
    failed_checks: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_checks


@dataclass(frozen=True)
class _DependentCancellation:
    booking_id: str
    venue_booking_id: str
    wedding_date: datetime
    venue_reason: str


class ReconciliationService:

    def __init__(
        self,
        session_factory=None,
        notifications: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory or SessionLocal
        self.notifications = notifications or NotificationDispatcher(EmailNotificationService())
        self.clock = clock

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------
    def run_cycle(self) -> ReconciliationReport:
        """
        Runs every check once, in order. A check that raises is logged and
        recorded in the report; the remaining checks still run.
        """
        now = self.clock()
        report = ReconciliationReport(started_at=now)
        logger.info("Running reconciliation cycle at %s", now.isoformat())

        # Bookings opened for final payment in this cycle wait for the next one.
        opened: set[str] = set()

        def open_final_payments(now: datetime) -> int:
            opened.update(self._open_final_payments(now))
            return len(opened)

        checks = (
            ("transition_to_pending_final_payment", open_final_payments),
            ("overdue_deposit_payments", self.check_overdue_deposit_payments),
            ("overdue_final_payments", partial(self.check_overdue_final_payments, exclude=opened)),
            ("venue_cancellation_dependents", self.check_venue_cancellation_dependent_bookings),
            ("deposit_due_date_reminders", self.check_deposit_due_date_reminders),
            (
                "final_payment_due_date_reminders",
                partial(self.check_final_payment_due_date_reminders, exclude=opened),
            ),
        )
        for name, check in checks:
            try:
                report.counts[name] = check(now)
            except Exception:
                logger.exception("Reconciliation check %s failed", name)
                report.failed_checks.append(name)

        if report.ok:
            logger.info("Reconciliation cycle completed: %s", report.counts)
        else:
            logger.warning(
                "Reconciliation cycle completed with failures in %s: %s",
                report.failed_checks,
                report.counts,
            )
        return report

    # ------------------------------------------------------------------
    # confirmed -> pending_final_payment
    # ------------------------------------------------------------------
    def transition_to_pending_final_payment(self, now: Optional[datetime] = None) -> int:
        return len(self._open_final_payments(now or self.clock()))

    def _open_final_payments(self, now: datetime) -> list[str]:
        """Moves due confirmed bookings to pending_final_payment; returns their ids."""
        with get_db_session(self.session_factory) as db:
            candidate_ids = [
                booking.id
                for booking in BookingRepository(db).find_confirmed_reserved_between(
                    now, now + FINAL_PAYMENT_WINDOW
                )
            ]

        transitioned = [
            booking_id
            for booking_id in candidate_ids
            if self._in_transaction(booking_id, partial(self._open_final_payment, booking_id=booking_id, now=now))
        ]

        if transitioned:
            logger.info("Transitioned %s booking(s) to pending_final_payment", len(transitioned))
        return transitioned

    def _open_final_payment(self, db: Session, booking_id: str, now: datetime) -> bool:
        repository = BookingRepository(db)
        booking = repository.lock_by_id(booking_id)
        if booking is None or booking.status != BookingStatus.CONFIRMED:
            return False
        if repository.has_payment(booking.id, PaymentType.FINAL):
            return False

        final_due_date = booking.final_due_date or booking.reserved_date - FINAL_DUE_BEFORE_RESERVED
        if final_due_date < now:
            logger.warning(
                "Skipping booking %s - final due date has already passed (%s)",
                booking.id,
                final_due_date.isoformat(),
            )
            return False

        repository.update_status(booking, BookingStatus.PENDING_FINAL_PAYMENT)
        booking.final_due_date = final_due_date
        logger.info(
            "Transitioned booking %s to pending_final_payment (reserved date: %s, final due date: %s)",
            booking.id,
            booking.reserved_date.isoformat(),
            final_due_date.isoformat(),
        )
        return True

    # ------------------------------------------------------------------
    # Overdue payments
    # ------------------------------------------------------------------
    def check_overdue_deposit_payments(self, now: Optional[datetime] = None) -> int:
        return self._cancel_overdue(
            BookingStatus.PENDING_DEPOSIT_PAYMENT,
            Booking.deposit_due_date,
            PaymentType.DEPOSIT,
            "Deposit payment overdue",
            now,
        )

    def check_overdue_final_payments(
        self,
        now: Optional[datetime] = None,
        exclude: Collection[str] = (),
    ) -> int:
        return self._cancel_overdue(
            BookingStatus.PENDING_FINAL_PAYMENT,
            Booking.final_due_date,
            PaymentType.FINAL,
            "Final payment overdue",
            now,
            exclude,
        )

    def _cancel_overdue(
        self,
        status: BookingStatus,
        due_column,
        payment_type: PaymentType,
        label: str,
        now: Optional[datetime],
        exclude: Collection[str] = (),
    ) -> int:
        now = now or self.clock()
        with get_db_session(self.session_factory) as db:
            candidate_ids = [
                booking.id
                for booking in BookingRepository(db).find_due_without_payment(
                    status, due_column, payment_type, due_before=now
                )
                if booking.id not in exclude
            ]

        cancelled = 0
        for booking_id in candidate_ids:
            result = self._in_transaction(
                booking_id,
                partial(
                    self._cancel_if_overdue,
                    booking_id=booking_id,
                    status=status,
                    due_attribute=due_column.key,
                    payment_type=payment_type,
                    label=label,
                    now=now,
                ),
            )
            if result:
                notice, reason = result
                logger.info("Auto-cancelled booking %s: %s", booking_id, reason)
                self.notifications.auto_cancellation(notice, reason)
                cancelled += 1

        if cancelled:
            logger.info("Auto-cancelled %s booking(s): %s", cancelled, label.lower())
        return cancelled

    def _cancel_if_overdue(
        self,
        db: Session,
        booking_id: str,
        status: BookingStatus,
        due_attribute: str,
        payment_type: PaymentType,
        label: str,
        now: datetime,
    ) -> Optional[tuple[BookingNotice, str]]:
        repository = BookingRepository(db)
        booking = repository.lock_by_id(booking_id)
        if booking is None or booking.status != status:
            return None

        due_date = getattr(booking, due_attribute)
        if due_date is None or due_date > now:
            return None
        if repository.has_payment(booking.id, payment_type):
            return None

        reason = f"{label} (due date: {due_date.isoformat()})"
        notice = BookingNotice.from_booking(booking)
        CancellationRepository(db).cancel_booking(
            booking,
            new_status=BookingStatus.CANCELLED_BY_COUPLE,
            cancelled_by=booking.couple_id,
            reason=reason,
        )
        return notice, reason

    # ------------------------------------------------------------------
    # Venue cancellation -> dependent bookings
    # ------------------------------------------------------------------
    def check_venue_cancellation_dependent_bookings(self, now: Optional[datetime] = None) -> int:
        """
        Cancels bookings that were waiting on a venue which has since been
        cancelled, once their grace period has run out and no replacement
        venue exists for the same project and date.
        """
        now = now or self.clock()
        today = now.astimezone(timezone.utc).date()

        plans = []
        with get_db_session(self.session_factory) as db:
            repository = BookingRepository(db)
            for venue in repository.find_cancelled_venue_bookings():
                if repository.find_replacement_venue(venue) is not None:
                    logger.info(
                        "Replacement venue found for cancelled venue %s, skipping auto-cancel",
                        venue.id,
                    )
                    continue

                wedding_date = _wedding_date(venue)
                venue_reason = venue.cancellation.cancellation_reason or "Venue unavailable"
                for dependent in repository.find_pending_dependents(venue.id):
                    grace_end = dependent.grace_period_end_date or wedding_date
                    if grace_end.date() > today:
                        continue
                    plans.append(
                        _DependentCancellation(
                            booking_id=dependent.id,
                            venue_booking_id=venue.id,
                            wedding_date=wedding_date,
                            venue_reason=venue_reason,
                        )
                    )

        cancelled = 0
        for plan in plans:
            result = self._in_transaction(
                plan.booking_id,
                partial(self._cancel_dependent, plan=plan, today=today),
            )
            if result:
                notice, reason = result
                logger.info(
                    "Auto-cancelled dependent booking %s (venue %s cancelled, no replacement)",
                    plan.booking_id,
                    plan.venue_booking_id,
                )
                self.notifications.auto_cancellation(notice, reason)
                cancelled += 1

        if cancelled:
            logger.info(
                "Auto-cancelled %s dependent booking(s) due to venue cancellation",
                cancelled,
            )
        return cancelled

    def _cancel_dependent(
        self,
        db: Session,
        plan: _DependentCancellation,
        today,
    ) -> Optional[tuple[BookingNotice, str]]:
        repository = BookingRepository(db)
        booking = repository.lock_by_id(plan.booking_id)
        if booking is None or BookingStateMachine.is_terminal(booking.status):
            return None
        if not booking.is_pending_venue_replacement:
            return None
        if booking.depends_on_venue_booking_id != plan.venue_booking_id:
            return None

        grace_end = booking.grace_period_end_date or plan.wedding_date
        if grace_end.date() > today:
            return None

        venue = repository.get_by_id(plan.venue_booking_id)
        if venue is not None and repository.find_replacement_venue(venue) is not None:
            return None

        total_paid = repository.total_paid(booking.id)
        reason = (
            "Auto-cancelled: No replacement venue selected by grace period end date "
            f"({grace_end.date().isoformat()}). Original venue booking was cancelled: "
            f"{plan.venue_reason}"
        )
        notice = BookingNotice.from_booking(booking)
        CancellationRepository(db).cancel_booking(
            booking,
            # Vendor-side root cause; drives refund handling downstream.
            new_status=BookingStatus.CANCELLED_BY_VENDOR,
            cancelled_by=booking.couple_id,
            reason=reason,
            refund_amount=total_paid if total_paid > Decimal("0") else None,
        )
        return notice, reason

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------
    def check_deposit_due_date_reminders(self, now: Optional[datetime] = None) -> int:
        return self._send_reminders(
            BookingStatus.PENDING_DEPOSIT_PAYMENT,
            Booking.deposit_due_date,
            PaymentType.DEPOSIT,
            self.notifications.deposit_reminder,
            "deposit",
            now,
        )

    def check_final_payment_due_date_reminders(
        self,
        now: Optional[datetime] = None,
        exclude: Collection[str] = (),
    ) -> int:
        return self._send_reminders(
            BookingStatus.PENDING_FINAL_PAYMENT,
            Booking.final_due_date,
            PaymentType.FINAL,
            self.notifications.final_payment_reminder,
            "final payment",
            now,
            exclude,
        )

    def _send_reminders(
        self,
        status: BookingStatus,
        due_column,
        payment_type: PaymentType,
        send: Callable[[BookingNotice], object],
        label: str,
        now: Optional[datetime],
        exclude: Collection[str] = (),
    ) -> int:
        now = now or self.clock()
        with get_db_session(self.session_factory) as db:
            notices = [
                BookingNotice.from_booking(booking)
                for booking in BookingRepository(db).find_due_without_payment(
                    status,
                    due_column,
                    payment_type,
                    due_before=now + REMINDER_WINDOW,
                    due_after=now,
                )
                if booking.id not in exclude
            ]

        for notice in notices:
            send(notice)

        if notices:
            logger.info("Sent %s %s due date reminder(s)", len(notices), label)
        return len(notices)

    # ------------------------------------------------------------------
    def _in_transaction(self, booking_id: str, action):
        """
        Runs ``action(db)`` in its own transaction. A store or domain error
        rolls that booking back and is logged; the caller moves on.
        """
        try:
            with get_db_session(self.session_factory) as db:
                return action(db)
        except (SQLAlchemyError, WeddingPlatformError):
            logger.exception("Error reconciling booking %s; changes rolled back", booking_id)
            return None


def _wedding_date(venue: Booking) -> datetime:
    if venue.project is not None and venue.project.wedding_date is not None:
        return venue.project.wedding_date
    return venue.reserved_date
