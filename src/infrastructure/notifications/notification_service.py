# src/infrastructure/notifications/notification_service.py
"""Couple-facing booking notifications.

``EmailNotificationService`` is the sink: it turns a ``BookingNotice`` into an
email. ``NotificationDispatcher`` is what the reconciliation checks talk to;
it hands each send to a worker thread and only ever logs failures, so a
broken mail server never reaches booking state.
"""

import logging
import os
import smtplib
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from email.message import EmailMessage
from typing import Callable, Optional, Protocol

from src.domain.cancellation_fee import sum_amounts
from src.domain.state_machine import PaymentType

logger = logging.getLogger(__name__)

NOTIFICATION_WORKERS = int(os.getenv("NOTIFICATION_WORKERS", "2"))
PLATFORM_NAME = "Weddding Platform"
DEPOSIT_RATE = Decimal("0.10")


@dataclass(frozen=True)
class BookingNotice:
    """Detached snapshot of a booking, safe to read after its session closes."""

    booking_id: str
    couple_id: str
    couple_name: Optional[str]
    couple_email: Optional[str]
    vendor_name: Optional[str]
    reserved_date: datetime
    deposit_due_date: Optional[datetime]
    final_due_date: Optional[datetime]
    total_amount: Decimal
    deposit_paid: Decimal

    @classmethod
    def from_booking(cls, booking) -> "BookingNotice":
        couple = booking.couple
        vendor = booking.vendor
        return cls(
            booking_id=booking.id,
            couple_id=booking.couple_id,
            couple_name=couple.name if couple is not None else None,
            couple_email=couple.email if couple is not None else None,
            vendor_name=vendor.name if vendor is not None else None,
            reserved_date=booking.reserved_date,
            deposit_due_date=booking.deposit_due_date,
            final_due_date=booking.final_due_date,
            total_amount=sum_amounts(s.total_price for s in booking.selected_services),
            deposit_paid=sum_amounts(
                p.amount for p in booking.payments if p.payment_type == PaymentType.DEPOSIT
            ),
        )


class NotificationSink(Protocol):
    def send_auto_cancellation_notification(self, notice: BookingNotice, reason: str) -> None: ...

    def send_deposit_due_date_reminder(self, notice: BookingNotice) -> None: ...

    def send_final_payment_due_date_reminder(self, notice: BookingNotice) -> None: ...


def send_email(recipient: str, subject: str, body: str) -> None:
    host = os.getenv("SMTP_HOST")
    if not host:
        logger.info("SMTP settings missing; skipping email delivery to %s (%s)", recipient, subject)
        return

    port = int(os.getenv("SMTP_PORT", "587"))
    username = os.getenv("SMTP_USER")
    password = os.getenv("SMTP_PASSWORD")

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = os.getenv("NOTIFICATION_FROM_EMAIL") or username or "no-reply@weddding.local"
    message["To"] = recipient
    message.set_content(body)

    with smtplib.SMTP(host, port, timeout=30) as smtp:
        if username and password:
            smtp.starttls()
            smtp.login(username, password)
        smtp.send_message(message)
    logger.info("Email sent to %s (%s)", recipient, subject)


def _money(amount: Decimal) -> str:
    return f"RM {amount:,.2f}"


def _day(moment: Optional[datetime]) -> str:
    return moment.date().isoformat() if moment is not None else "n/a"


class EmailNotificationService:

    def __init__(self, sender: Callable[[str, str, str], None] = send_email):
        self.sender = sender

    def send_auto_cancellation_notification(self, notice: BookingNotice, reason: str) -> None:
        subject = f"Booking Cancelled - {PLATFORM_NAME}"
        body = (
            f"Dear {notice.couple_name or 'Valued Customer'},\n\n"
            "Your booking has been automatically cancelled.\n\n"
            "Booking Details:\n"
            f"- Booking ID: {notice.booking_id}\n"
            f"- Vendor: {notice.vendor_name or 'Vendor'}\n"
            f"- Wedding Date: {_day(notice.reserved_date)}\n"
            f"- Reason: {reason}\n\n"
            "If you believe this is a mistake, please contact support.\n\n"
            f"Best regards,\n{PLATFORM_NAME} Team"
        )
        self._deliver(notice, subject, body)

    def send_deposit_due_date_reminder(self, notice: BookingNotice) -> None:
        if notice.deposit_due_date is None:
            return
        subject = f"Reminder: Deposit Payment Due Soon - {PLATFORM_NAME}"
        body = (
            f"Dear {notice.couple_name or 'Valued Customer'},\n\n"
            "This is a reminder that your deposit payment is due in 3 days.\n\n"
            "Booking Details:\n"
            f"- Booking ID: {notice.booking_id}\n"
            f"- Vendor: {notice.vendor_name or 'Vendor'}\n"
            f"- Wedding Date: {_day(notice.reserved_date)}\n"
            f"- Deposit Due Date: {_day(notice.deposit_due_date)}\n"
            f"- Deposit Amount: {_money(notice.total_amount * DEPOSIT_RATE)}\n"
            f"- Total Booking Amount: {_money(notice.total_amount)}\n\n"
            "If payment is not received by the due date, your booking will be "
            "automatically cancelled.\n\n"
            f"Best regards,\n{PLATFORM_NAME} Team"
        )
        self._deliver(notice, subject, body)

    def send_final_payment_due_date_reminder(self, notice: BookingNotice) -> None:
        if notice.final_due_date is None:
            return
        subject = f"Reminder: Final Payment Due Soon - {PLATFORM_NAME}"
        body = (
            f"Dear {notice.couple_name or 'Valued Customer'},\n\n"
            "This is a reminder that your final payment is due in 3 days.\n\n"
            "Booking Details:\n"
            f"- Booking ID: {notice.booking_id}\n"
            f"- Vendor: {notice.vendor_name or 'Vendor'}\n"
            f"- Wedding Date: {_day(notice.reserved_date)}\n"
            f"- Final Payment Due Date: {_day(notice.final_due_date)}\n"
            f"- Final Payment Amount: {_money(notice.total_amount - notice.deposit_paid)}\n"
            f"- Total Booking Amount: {_money(notice.total_amount)}\n\n"
            "If payment is not received by the due date, your booking will be "
            "automatically cancelled.\n\n"
            f"Best regards,\n{PLATFORM_NAME} Team"
        )
        self._deliver(notice, subject, body)

    def _deliver(self, notice: BookingNotice, subject: str, body: str) -> None:
        if not notice.couple_email:
            logger.warning("No email found for couple %s", notice.couple_id)
            return
        self.sender(notice.couple_email, subject, body)


class NotificationDispatcher:
    """
    Fire-and-forget front for a NotificationSink.
    Every send runs on the executor; errors end up in the log, never in the caller.
    """

    def __init__(
        self,
        sink: NotificationSink,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.sink = sink
        self._executor = executor or ThreadPoolExecutor(
            max_workers=NOTIFICATION_WORKERS,
            thread_name_prefix="booking-notify",
        )

    def auto_cancellation(self, notice: BookingNotice, reason: str) -> Optional[Future]:
        return self._submit("auto-cancellation", notice, self.sink.send_auto_cancellation_notification, reason)

    def deposit_reminder(self, notice: BookingNotice) -> Optional[Future]:
        return self._submit("deposit reminder", notice, self.sink.send_deposit_due_date_reminder)

    def final_payment_reminder(self, notice: BookingNotice) -> Optional[Future]:
        return self._submit("final payment reminder", notice, self.sink.send_final_payment_due_date_reminder)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _submit(self, kind: str, notice: BookingNotice, send, *args) -> Optional[Future]:
        try:
            future = self._executor.submit(send, notice, *args)
        except RuntimeError:
            # Executor already shut down.
            logger.exception("Could not queue %s notification for booking %s", kind, notice.booking_id)
            return None

        def _log_failure(done: Future) -> None:
            exc = done.exception()
            if exc is not None:
                logger.error(
                    "Error sending %s notification for booking %s",
                    kind,
                    notice.booking_id,
                    exc_info=exc,
                )

        future.add_done_callback(_log_failure)
        return future
